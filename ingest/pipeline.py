"""
Pipeline Orchestratore - esecuzione sequenziale degli stage fatture.

Per ogni stage: annuncio avvio → corpo (gateway e/o procedura) → annuncio
completamento → controllo max_step. Il primo stage fallito interrompe
l'esecuzione; l'errore viene classificato una sola volta, qui, e restituito
al chiamante come PipelineOperationError con la causa originale.
"""
import errno
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from core.cancellation import CancellationToken
from core.config import ProcessorConfig, get_config
from core.error_classifier import ErrorClassifier, ErrorReport, format_report
from core.errors import ArgumentError, PipelineOperationError
from core.logger import get_run_id, log_json, set_run_context, setup_file_sink
from core.progress import FAILED_PERCENT, NullProgress, ProgressChannel
from ingest.stages import Stage, StageContext, StageStatus, build_invoice_stages

logger = logging.getLogger(__name__)


@dataclass
class PipelineRun:
    """Stato di una singola esecuzione della pipeline."""

    artifact_path: str
    started_at: datetime
    run_id: Optional[str] = None
    max_step: Optional[int] = None
    outcome: Optional[str] = None
    elapsed_sec: Optional[float] = None
    stage_statuses: Dict[int, StageStatus] = field(default_factory=dict)
    report: Optional[ErrorReport] = None

    @property
    def executed_stages(self) -> List[int]:
        """Ordinali degli stage avviati (completati o falliti)."""
        return [
            index for index, status in sorted(self.stage_statuses.items())
            if status in (StageStatus.COMPLETED, StageStatus.FAILED, StageStatus.RUNNING)
        ]


class InvoicePipeline:
    """
    Orchestratore degli stage fatture.

    Args:
        stages: Stage ordinati con indici 1..N contigui
        progress: Canale avanzamento (default nessuno)
        classifier: ErrorClassifier (default standard)
        notifier: Oggetto con notify(text) async, best-effort (opzionale)
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        progress: Optional[ProgressChannel] = None,
        classifier: Optional[ErrorClassifier] = None,
        notifier=None
    ):
        indices = [stage.index for stage in stages]
        if not stages or indices != list(range(1, len(stages) + 1)):
            raise ValueError(f"Indici stage non contigui: {indices}")
        self._stages = list(stages)
        self._progress = progress or NullProgress()
        self._classifier = classifier or ErrorClassifier()
        self._notifier = notifier
        self.last_run: Optional[PipelineRun] = None

    @property
    def stage_count(self) -> int:
        return len(self._stages)

    @property
    def stages(self) -> List[Stage]:
        return list(self._stages)

    async def run(
        self,
        artifact_path: str,
        max_step: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> bool:
        """
        Esegue gli stage da 1 a max_step.

        Args:
            artifact_path: File ordini locale (deve esistere)
            max_step: Ultimo stage da eseguire, 1..N (None = tutti)
            cancel_token: Token annullamento

        Returns:
            True se completata o fermata a max_step

        Raises:
            PipelineOperationError: Qualsiasi fallimento, con causa originale in __cause__
        """
        start_time = time.time()
        run_id = get_run_id() or set_run_context()
        run = PipelineRun(artifact_path=artifact_path, started_at=datetime.utcnow(), run_id=run_id)
        run.stage_statuses = {stage.index: StageStatus.PENDING for stage in self._stages}
        self.last_run = run

        try:
            run.max_step = self._validate(artifact_path, max_step)
            return await self._run_stages(run, run.max_step, cancel_token, start_time)
        except Exception as exc:
            run.outcome = "failure"
            run.elapsed_sec = time.time() - start_time
            report = self._classifier.classify(exc)
            run.report = report
            composed = format_report(report, exc)

            logger.error(
                f"[PIPELINE] Run {run_id} failed after {run.elapsed_sec:.2f}s "
                f"({report.category.value}/{report.severity.value}): {report.user_message}"
            )
            log_json(
                level="error",
                message="Pipeline failed",
                elapsed_sec=round(run.elapsed_sec, 3),
                decision="fail",
                category=report.category.value,
                severity=report.severity.value,
                root_cause=type(report.root_cause).__name__
            )
            self._progress.report_message(composed)
            self._progress.report_percent(FAILED_PERCENT)
            await self._notify(f"❌ Elaborazione fatture fallita ({os.path.basename(artifact_path or '')})\n{composed}")

            raise PipelineOperationError(report.category, report.user_message, report, composed) from exc

    def _validate(self, artifact_path: str, max_step: Optional[int]) -> int:
        total = len(self._stages)

        if not isinstance(artifact_path, str) or not artifact_path.strip():
            raise ArgumentError("Percorso file ordini vuoto")

        if max_step is None:
            bound = total
        elif isinstance(max_step, bool) or not isinstance(max_step, int):
            raise ArgumentError(f"max_step deve essere un intero, ricevuto {max_step!r}")
        elif not 1 <= max_step <= total:
            raise ArgumentError(f"max_step={max_step} fuori intervallo [1, {total}]")
        else:
            bound = max_step

        if not os.path.isfile(artifact_path):
            raise FileNotFoundError(errno.ENOENT, "File ordini non trovato", artifact_path)

        return bound

    async def _run_stages(
        self,
        run: PipelineRun,
        bound: int,
        cancel_token: Optional[CancellationToken],
        start_time: float
    ) -> bool:
        total = len(self._stages)
        file_name = os.path.basename(run.artifact_path)
        ctx = StageContext(artifact_path=run.artifact_path, cancel_token=cancel_token)

        self._progress.reset_stages()
        self._progress.report_percent(0)
        self._progress.report_message(f"🚀 Avvio elaborazione fatture: {file_name} (stage 1-{bound} di {total})")
        logger.info(f"[PIPELINE] Run {run.run_id} started: file={run.artifact_path}, max_step={bound}/{total}")
        log_json(level="info", message="Pipeline started", file_name=file_name, max_step=bound)

        for stage in self._stages:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            tag = f"[{stage.index}/{total}]"
            run.stage_statuses[stage.index] = StageStatus.RUNNING
            self._progress.report_message(f"{tag} ▶️ {stage.label}...")
            self._progress.report_stage_started(stage.index - 1)
            logger.info(f"[PIPELINE] Stage {stage.index}: {stage.label} started")
            stage_start = time.time()

            try:
                await stage.body(ctx)
            except Exception as e:
                run.stage_statuses[stage.index] = StageStatus.FAILED
                logger.error(
                    f"[PIPELINE] Stage {stage.index} ({stage.label}) failed: {type(e).__name__}: {e} "
                    f"(cause: {e.__cause__!r})",
                    exc_info=True
                )
                log_json(
                    level="error",
                    message="Stage failed",
                    stage=stage.label,
                    stage_index=stage.index,
                    elapsed_sec=round(time.time() - stage_start, 3),
                    decision="fail"
                )
                self._progress.report_message(f"{tag} ❌ {stage.label} non riuscito: {e}")
                raise

            stage_elapsed = time.time() - stage_start
            run.stage_statuses[stage.index] = StageStatus.COMPLETED
            logger.info(f"[PIPELINE] Stage {stage.index}: {stage.label} completed in {stage_elapsed:.2f}s")
            log_json(
                level="info",
                message="Stage completed",
                stage=stage.label,
                stage_index=stage.index,
                elapsed_sec=round(stage_elapsed, 3),
                decision="continue"
            )
            self._progress.report_message(f"{tag} ✅ {stage.label} completato")
            self._progress.report_percent(stage.progress_weight)
            self._progress.report_stage_completed(stage.index - 1)

            if stage.index == bound and bound < total:
                for later in self._stages[stage.index:]:
                    run.stage_statuses[later.index] = StageStatus.SKIPPED_BY_BOUND
                run.outcome = "success"
                run.elapsed_sec = time.time() - start_time
                self._progress.report_message(
                    f"⏹️ Esecuzione fermata dopo lo stage {stage.index} di {total} (max_step={bound})"
                )
                logger.info(f"[PIPELINE] Run {run.run_id} stopped at max_step={bound} after {run.elapsed_sec:.2f}s")
                log_json(level="info", message="Pipeline stopped at bound", max_step=bound,
                         elapsed_sec=round(run.elapsed_sec, 3), decision="stop")
                return True

        run.outcome = "success"
        run.elapsed_sec = time.time() - start_time
        self._progress.report_message(f"🎉 Elaborazione fatture completata: {total} stage in {run.elapsed_sec:.1f}s")
        logger.info(f"[PIPELINE] Run {run.run_id} completed: {total} stages in {run.elapsed_sec:.2f}s")
        log_json(level="info", message="Pipeline completed", elapsed_sec=round(run.elapsed_sec, 3), decision="done")
        await self._notify(f"✅ Elaborazione fatture completata: {file_name} ({run.elapsed_sec:.1f}s)")
        return True

    async def _notify(self, text: str) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify(text)
        except Exception as e:
            logger.warning(f"[PIPELINE] Notification failed: {e}")


def create_invoice_pipeline(
    config: Optional[ProcessorConfig] = None,
    progress: Optional[ProgressChannel] = None,
    notifier=None
) -> InvoicePipeline:
    """
    Costruisce la pipeline con le dipendenze reali (MySQL, Dropbox, KakaoWork).

    Args:
        config: Configurazione (default singleton)
        progress: Canale avanzamento
        notifier: Notifier alternativo (default KakaoWork)

    Returns:
        InvoicePipeline pronta
    """
    from core.database import StagingRepository
    from ingest.column_mapping import ColumnMappingProvider
    from ingest.gateway import ExternalFileIngestionGateway
    from kakaowork_notifier import KakaoWorkNotifier
    from procedures.client import ProcedureClient
    from procedures.engine import ProcedureExecutionEngine
    from transfer.dropbox_store import DropboxFileStore

    config = config or get_config()
    setup_file_sink(config.log_file_path)

    engine = ProcedureExecutionEngine(ProcedureClient(), timeout_sec=config.procedure_timeout_sec)
    gateway = ExternalFileIngestionGateway(
        config=config,
        file_store=DropboxFileStore(config.dropbox_access_token, config.dropbox_timeout_sec),
        repository=StagingRepository(batch_size=config.db_insert_batch_size),
        mapping_provider=ColumnMappingProvider(config.column_mapping_path),
        engine=engine
    )
    stages = build_invoice_stages(gateway, engine)
    return InvoicePipeline(
        stages,
        progress=progress,
        notifier=notifier if notifier is not None else KakaoWorkNotifier()
    )
