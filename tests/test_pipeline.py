"""
Test InvoicePipeline: limite max_step, validazione input, arresto al primo
errore, classificazione unica e scenari sul catalogo completo.
"""
import asyncio

import pandas as pd
import pytest

from core.cancellation import CancellationToken
from core.error_classifier import ErrorCategory
from core.errors import (
    ConfigurationError,
    EmptyDatasetError,
    PipelineCancelledError,
    PipelineOperationError,
    ProcedureError,
)
from core.progress import FAILED_PERCENT, RecordingProgress
from ingest.column_mapping import ColumnMappingProvider
from ingest.gateway import ExternalFileIngestionGateway
from ingest.pipeline import InvoicePipeline
from ingest.stages import StageStatus, build_invoice_stages
from procedures.engine import ProcedureExecutionEngine
from tests.mocks import (
    FakeConfig,
    FakeFileStore,
    FakeProcedureSession,
    FakeRepository,
    RecordingNotifier,
    ScriptedProcedureClient,
    error_set,
    make_stages,
    step_log_set,
    write_artifact,
)

STAGE_COUNT = 21

SOURCE_SETTINGS = dict(
    message_source_path="/송장/메세지",
    product_source_path="/송장/품목",
    merge_packing_source_path="/송장/합포장",
    gamcheon_source_path="/송장/감천",
    talkdeal_source_path="/송장/톡딜",
    gamcheon_loader_procedure="sp_Excel_Proc4",
)


def make_pipeline(count=STAGE_COUNT, failures=None, notifier=None):
    executed = []
    progress = RecordingProgress()
    pipeline = InvoicePipeline(make_stages(count, executed, failures), progress=progress, notifier=notifier)
    return pipeline, executed, progress


class TestMaxStepBound:
    """Esecuzione limitata da max_step."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bound", [1, 2, 7, 20, 21])
    async def test_runs_exactly_bound_stages(self, tmp_path, bound):
        pipeline, executed, progress = make_pipeline()

        result = await pipeline.run(write_artifact(tmp_path), max_step=bound)

        assert result is True
        assert executed == list(range(1, bound + 1))
        assert progress.started_indices == list(range(bound))
        assert progress.completed_indices == list(range(bound))

    @pytest.mark.asyncio
    async def test_none_runs_all_stages(self, tmp_path):
        notifier = RecordingNotifier()
        pipeline, executed, progress = make_pipeline(notifier=notifier)

        assert await pipeline.run(write_artifact(tmp_path)) is True

        assert executed == list(range(1, STAGE_COUNT + 1))
        assert progress.last_percent == 100
        assert progress.last_message.startswith("🎉")
        assert not any(m.startswith("⏹️") for m in progress.messages)
        assert len(notifier.messages) == 1

    @pytest.mark.asyncio
    async def test_stop_at_three_reports_first_three_stages_only(self, tmp_path):
        """max_step=3: tre annunci di avvio e completamento, nessun evento per lo stage 4."""
        pipeline, executed, progress = make_pipeline()

        assert await pipeline.run(write_artifact(tmp_path), max_step=3) is True

        assert executed == [1, 2, 3]
        assert progress.events == [
            ("started", 0), ("completed", 0),
            ("started", 1), ("completed", 1),
            ("started", 2), ("completed", 2),
        ]
        assert not any("[4/21]" in m for m in progress.messages)
        assert progress.last_message.startswith("⏹️")
        assert progress.last_percent == round(3 * 100 / STAGE_COUNT)

        statuses = pipeline.last_run.stage_statuses
        assert [statuses[i] for i in (1, 2, 3)] == [StageStatus.COMPLETED] * 3
        assert all(statuses[i] == StageStatus.SKIPPED_BY_BOUND for i in range(4, STAGE_COUNT + 1))
        assert pipeline.last_run.executed_stages == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_started_precedes_completed_for_each_stage(self, tmp_path):
        pipeline, _, progress = make_pipeline(count=4)

        await pipeline.run(write_artifact(tmp_path))

        for index in range(4):
            assert progress.events.index(("started", index)) < progress.events.index(("completed", index))

    @pytest.mark.asyncio
    async def test_percent_is_monotonic(self, tmp_path):
        pipeline, _, progress = make_pipeline()

        await pipeline.run(write_artifact(tmp_path))

        assert progress.percents[0] == 0
        assert progress.percents == sorted(progress.percents)


class TestInputValidation:
    """Input non validi: nessuno stage eseguito, categoria input_validation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bound", [0, -1, 22, 100, True, 2.0, "3"])
    async def test_invalid_max_step(self, tmp_path, bound):
        pipeline, executed, progress = make_pipeline()

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(write_artifact(tmp_path), max_step=bound)

        assert exc_info.value.category == ErrorCategory.INPUT_VALIDATION
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert executed == []
        assert progress.events == []
        assert progress.last_percent == FAILED_PERCENT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["", "   ", None])
    async def test_empty_artifact_path(self, path):
        pipeline, executed, _ = make_pipeline()

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(path)

        assert exc_info.value.category == ErrorCategory.INPUT_VALIDATION
        assert executed == []

    @pytest.mark.asyncio
    async def test_missing_artifact_is_file_access(self, tmp_path):
        """File ordini inesistente: file_access, zero stage avviati."""
        pipeline, executed, progress = make_pipeline()

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(str(tmp_path / "non_esiste.xlsx"))

        assert exc_info.value.category == ErrorCategory.FILE_ACCESS
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert executed == []
        assert progress.started_indices == []
        assert pipeline.last_run.outcome == "failure"

    def test_non_contiguous_stages_rejected(self):
        stages = make_stages(3, [])
        with pytest.raises(ValueError):
            InvoicePipeline([stages[0], stages[2]])


class TestStageFailure:
    """Arresto al primo stage fallito."""

    @pytest.mark.asyncio
    async def test_failure_stops_later_stages(self, tmp_path):
        pipeline, executed, progress = make_pipeline(failures={4: EmptyDatasetError("nessuna riga salvata")})

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(write_artifact(tmp_path))

        assert executed == [1, 2, 3, 4]
        assert exc_info.value.category == ErrorCategory.SYSTEM_STATE
        assert progress.started_indices == [0, 1, 2, 3]
        assert progress.completed_indices == [0, 1, 2]
        assert progress.last_percent == FAILED_PERCENT
        assert "Categoria: system_state" in progress.last_message

        statuses = pipeline.last_run.stage_statuses
        assert statuses[4] == StageStatus.FAILED
        assert statuses[5] == StageStatus.PENDING

    @pytest.mark.asyncio
    async def test_root_cause_is_innermost_and_chain_preserved(self, tmp_path):
        """La causa radice è l'anello più interno; __cause__ resta l'eccezione originale."""
        inner = ConnectionResetError("connessione chiusa")
        try:
            try:
                raise inner
            except ConnectionResetError as e:
                raise ProcedureError("sp_JejuMarking", "chiamata interrotta") from e
        except ProcedureError as outer:
            failure = outer

        pipeline, _, progress = make_pipeline(failures={10: failure})

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(write_artifact(tmp_path))

        error = exc_info.value
        assert error.__cause__ is failure
        assert error.report.root_cause is inner
        assert error.category == ErrorCategory.GENERAL
        assert "Causa radice: ConnectionResetError: connessione chiusa" in error.composed_message

    @pytest.mark.asyncio
    async def test_failure_is_classified_once(self, tmp_path):
        pipeline, _, _ = make_pipeline(failures={2: ConfigurationError("product_source_path")})

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(write_artifact(tmp_path))

        assert not isinstance(exc_info.value.__cause__, PipelineOperationError)
        assert pipeline.last_run.report is exc_info.value.report

    @pytest.mark.asyncio
    async def test_failure_notifies(self, tmp_path):
        notifier = RecordingNotifier()
        pipeline, _, _ = make_pipeline(failures={1: TimeoutError("lento")}, notifier=notifier)

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(write_artifact(tmp_path))

        assert exc_info.value.category == ErrorCategory.TIMEOUT
        assert len(notifier.messages) == 1
        assert notifier.messages[0].startswith("❌")

    @pytest.mark.asyncio
    async def test_notifier_errors_do_not_change_outcome(self, tmp_path):
        notifier = RecordingNotifier(error=RuntimeError("kakaowork down"))
        pipeline, executed, _ = make_pipeline(count=3, notifier=notifier)

        assert await pipeline.run(write_artifact(tmp_path)) is True
        assert executed == [1, 2, 3]


class TestCancellation:
    """Annullamento tra uno stage e l'altro."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, tmp_path):
        token = CancellationToken()
        token.cancel("stop")
        pipeline, executed, _ = make_pipeline()

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(write_artifact(tmp_path), cancel_token=token)

        assert isinstance(exc_info.value.__cause__, PipelineCancelledError)
        assert executed == []

    @pytest.mark.asyncio
    async def test_cancel_during_stage_stops_next_stage(self, tmp_path):
        token = CancellationToken()
        pipeline, executed, _ = make_pipeline(count=5)
        original = pipeline.stages[1].body

        async def cancelling_body(ctx):
            await original(ctx)
            token.cancel("richiesta utente")

        object.__setattr__(pipeline._stages[1], "body", cancelling_body)

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(write_artifact(tmp_path), cancel_token=token)

        assert isinstance(exc_info.value.__cause__, PipelineCancelledError)
        assert executed == [1, 2]


def make_catalogue_pipeline(mapping_file, config=None, scripts=None, store=None, timeout_sec=5):
    """Pipeline a 21 stage con gateway e motore reali su collaboratori fake."""
    client = ScriptedProcedureClient(scripts)
    engine = ProcedureExecutionEngine(client, timeout_sec=timeout_sec)
    store = store or FakeFileStore()
    repository = FakeRepository()
    gateway = ExternalFileIngestionGateway(
        config=config or FakeConfig(**SOURCE_SETTINGS),
        file_store=store,
        repository=repository,
        mapping_provider=ColumnMappingProvider(mapping_file),
        engine=engine,
        reader=lambda path: pd.DataFrame(),
    )
    progress = RecordingProgress()
    pipeline = InvoicePipeline(build_invoice_stages(gateway, engine), progress=progress)
    return pipeline, client, engine, store, progress


class TestInvoiceCatalogue:
    """Scenari end-to-end sul catalogo completo."""

    @pytest.mark.asyncio
    async def test_split_step_logs_within_bound(self, mapping_file, tmp_path):
        """max_step=7 con InvoiceSplit01 che restituisce tre step: esito positivo."""
        scripts = {
            "InvoiceSplit01": FakeProcedureSession(result_sets=[step_log_set(
                (1, "감천 출고 분리", 12),
                (2, "송장 분할", 30),
                (3, "임시 테이블 정리", 0),
            )])
        }
        pipeline, client, engine, store, progress = make_catalogue_pipeline(mapping_file, scripts=scripts)

        assert await pipeline.run(write_artifact(tmp_path), max_step=7) is True

        assert client.called == ["sp_MergePacking", "InvoiceSplit01"]
        assert len(engine.last_invocation.outcome.splitlines()) == 4
        assert len(store.downloads) == 4
        assert progress.completed_indices == list(range(7))

    @pytest.mark.asyncio
    async def test_error_set_reports_diagnostics(self, mapping_file, tmp_path):
        """Errore da sp_MergePacking: il messaggio finale riporta le righe SHOW ERRORS."""
        scripts = {
            "sp_MergePacking": FakeProcedureSession(
                result_sets=[error_set("제약 조건 위반")],
                diagnostics={"SHOW ERRORS": [("Error", 1452, "Cannot add or update a child row")]},
            )
        }
        pipeline, client, _, _, progress = make_catalogue_pipeline(mapping_file, scripts=scripts)

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(write_artifact(tmp_path))

        error = exc_info.value
        assert isinstance(error.__cause__, ProcedureError)
        assert error.__cause__.error_code == 1452
        assert "제약 조건 위반" in error.composed_message
        assert "[Error] 1452: Cannot add or update a child row" in error.composed_message
        assert client.called == ["sp_MergePacking"]
        assert progress.completed_indices == [0, 1, 2, 3]
        assert progress.last_percent == FAILED_PERCENT

    @pytest.mark.asyncio
    async def test_blank_source_setting_stops_before_download(self, mapping_file, tmp_path):
        """message_source_path vuoto: system_state allo stage 2, nessun download."""
        settings = dict(SOURCE_SETTINGS, message_source_path="  ")
        pipeline, client, _, store, progress = make_catalogue_pipeline(mapping_file, config=FakeConfig(**settings))

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(write_artifact(tmp_path))

        assert exc_info.value.category == ErrorCategory.SYSTEM_STATE
        assert isinstance(exc_info.value.__cause__, ConfigurationError)
        assert store.downloads == []
        assert client.called == []
        assert progress.started_indices == [0, 1]
        assert progress.completed_indices == [0]

    @pytest.mark.asyncio
    async def test_full_run_calls_every_procedure_in_order(self, mapping_file, tmp_path):
        pipeline, client, _, _, progress = make_catalogue_pipeline(mapping_file)

        assert await pipeline.run(write_artifact(tmp_path)) is True

        assert client.called[0] == "sp_MergePacking"
        assert client.called[-1] == "sp_InvoiceFinalProcess"
        assert len(client.called) == 16
        assert progress.last_percent == 100

    @pytest.mark.asyncio
    async def test_procedure_timeout_is_classified(self, mapping_file, tmp_path):
        async def slow():
            await asyncio.sleep(10)

        scripts = {"sp_MergePacking": FakeProcedureSession(call_hook=slow)}
        pipeline, _, _, _, _ = make_catalogue_pipeline(mapping_file, scripts=scripts, timeout_sec=0.05)

        with pytest.raises(PipelineOperationError) as exc_info:
            await pipeline.run(write_artifact(tmp_path))

        assert exc_info.value.category == ErrorCategory.TIMEOUT
