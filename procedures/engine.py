"""
Motore di esecuzione stored procedure.

Invoca una procedura per nome e trasforma il suo output (zero o più result
set senza schema fisso) in un esito definito. Il fallimento viene rilevato a
strati:
1. result set con colonna ErrorMessage (+ SHOW ERRORS / SHOW WARNINGS)
2. eccezione del driver MySQL (codice mappato in descrizione)
3. scansione parole chiave su esito e valori delle celle (mai i nomi colonna)
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

import pymysql
from sqlalchemy.exc import DBAPIError

from core.cancellation import CancellationToken, run_cancellable
from core.config import get_config
from core.errors import (
    PipelineCancelledError,
    ProcedureError,
    ProcedurePermissionError,
    ProcedureTimeoutError,
)
from core.logger import log_json
from procedures.diagnostics import (
    ACCESS_DENIED_CODES,
    DiagnosticRecord,
    collect_diagnostics,
    describe_database_error,
)
from procedures.failure_detection import FailureDetector, looks_like_failure
from procedures.result_sets import (
    ErrorEntry,
    ErrorSet,
    RawResultSet,
    StepLogEntry,
    StepLogSet,
    interpret_result_set,
)

logger = logging.getLogger(__name__)


@dataclass
class ProcedureInvocation:
    """Una chiamata a procedura: input, result set grezzi ed esito."""

    procedure_name: str
    args: Tuple[Any, ...] = ()
    result_sets: List[RawResultSet] = field(default_factory=list)
    outcome: str = ""
    scan_text: str = ""
    succeeded: bool = False


def format_step_outcome(procedure_name: str, steps: Sequence[StepLogEntry]) -> str:
    total = sum(s.affected_rows for s in steps)
    header = f"✅ Procedura {procedure_name} completata: {len(steps)} step eseguiti, {total:,} righe elaborate"
    return "\n".join([header] + [s.format_line() for s in steps])


def format_generic_outcome(procedure_name: str) -> str:
    return f"✅ Procedura {procedure_name} completata (nessun dettaglio restituito)"


def format_failure(
    procedure_name: str,
    errors: Sequence[ErrorEntry],
    diagnostics: Sequence[DiagnosticRecord]
) -> str:
    lines = [f"❌ Procedura {procedure_name} ha restituito un errore:"]
    messages = [e.format_line() for e in errors if e.format_line()]
    if messages:
        lines.extend(f"  - {m}" for m in messages)
    else:
        lines.append("  - (messaggio vuoto)")
    lines.append("Diagnostica MySQL:")
    if diagnostics:
        lines.extend(f"  {d.format_line()}" for d in diagnostics)
    else:
        lines.append("  (nessun record da SHOW ERRORS / SHOW WARNINGS)")
    return "\n".join(lines)


class ProcedureExecutionEngine:
    """
    Esegue stored procedure e interpreta i loro result set.

    Args:
        client: ProcedureClient (fornisce sessioni con call/query)
        timeout_sec: Timeout per chiamata (default da config, minuti non secondi)
        failure_detector: Euristica testuale di ultima istanza
    """

    def __init__(
        self,
        client,
        timeout_sec: Optional[float] = None,
        failure_detector: FailureDetector = looks_like_failure
    ):
        self._client = client
        self._timeout_sec = timeout_sec if timeout_sec is not None else get_config().procedure_timeout_sec
        self._failure_detector = failure_detector
        self.last_invocation: Optional[ProcedureInvocation] = None

    async def execute(
        self,
        procedure_name: str,
        args: Sequence[Any] = (),
        cancel_token: Optional[CancellationToken] = None
    ) -> str:
        """
        Esegue una procedura e restituisce l'esito testuale.

        Args:
            procedure_name: Nome procedura
            args: Argomenti posizionali (di norma nessuno)
            cancel_token: Token annullamento

        Returns:
            Esito leggibile (multi-riga se la procedura restituisce log di step)

        Raises:
            ProcedureError: Errore esplicito, eccezione driver o parole chiave di errore
            ProcedureTimeoutError: Timeout superato
            PipelineCancelledError: Token annullato durante la chiamata
        """
        invocation = ProcedureInvocation(procedure_name=procedure_name, args=tuple(args))
        self.last_invocation = invocation
        start_time = time.time()
        logger.info(f"[PROCEDURE] Calling {procedure_name} (timeout {self._timeout_sec:.0f}s)")

        try:
            outcome = await run_cancellable(
                asyncio.wait_for(self._run(invocation), timeout=self._timeout_sec),
                cancel_token
            )
        except (ProcedureError, PipelineCancelledError):
            raise
        except asyncio.TimeoutError as e:
            message = f"❌ Procedura {procedure_name} interrotta: timeout di {self._timeout_sec:.0f}s superato"
            logger.error(f"[PROCEDURE] {procedure_name} timed out after {self._timeout_sec:.0f}s")
            raise ProcedureTimeoutError(procedure_name, message) from e
        except (pymysql.err.MySQLError, DBAPIError) as e:
            code, description = describe_database_error(e)
            message = f"❌ Procedura {procedure_name} fallita: {description}"
            logger.error(f"[PROCEDURE] {procedure_name} raised database error {code}: {description}")
            error_cls = ProcedurePermissionError if code in ACCESS_DENIED_CODES else ProcedureError
            raise error_cls(procedure_name, message, error_code=code) from e

        if self._failure_detector(invocation.scan_text):
            logger.error(f"[PROCEDURE] {procedure_name} outcome contains failure keywords:\n{outcome}")
            raise ProcedureError(
                procedure_name,
                f"❌ Procedura {procedure_name}: l'esito contiene indicatori di fallimento\n{outcome}"
            )

        invocation.outcome = outcome
        invocation.succeeded = True
        elapsed = time.time() - start_time
        logger.info(f"[PROCEDURE] {procedure_name} completed in {elapsed:.2f}s\n{outcome}")
        log_json(
            level="info",
            message=f"Procedure {procedure_name} completed",
            procedure=procedure_name,
            elapsed_sec=round(elapsed, 3),
            result_sets=len(invocation.result_sets),
            decision="continue"
        )
        return outcome

    async def _run(self, invocation: ProcedureInvocation) -> str:
        name = invocation.procedure_name
        errors: List[ErrorEntry] = []
        steps: List[StepLogEntry] = []
        unclassified_lines: List[str] = []
        cell_texts: List[str] = []
        suspected_failure = False

        async with self._client.session() as session:
            async for raw in session.call(name, invocation.args):
                invocation.result_sets.append(raw)
                interpreted = interpret_result_set(raw)

                if isinstance(interpreted, ErrorSet):
                    # Continua a leggere: altri set possono seguire
                    suspected_failure = True
                    errors.extend(interpreted.entries)
                    for entry in interpreted.entries:
                        logger.warning(f"[PROCEDURE] {name} result set #{raw.index} error: {entry.format_line()}")
                elif isinstance(interpreted, StepLogSet):
                    steps.extend(interpreted.entries)
                    logger.info(
                        f"[PROCEDURE] {name} result set #{raw.index}: {len(interpreted.entries)} steps, "
                        f"{interpreted.total_affected} rows affected"
                    )
                else:
                    lines = interpreted.format_rows()
                    logger.info(
                        f"[PROCEDURE] {name} result set #{raw.index} unclassified "
                        f"(columns={list(interpreted.columns)}, rows={len(lines)})"
                    )
                    for line in lines:
                        logger.info(f"[PROCEDURE] {name} #{raw.index}: {line}")
                    unclassified_lines.extend(lines)
                    cell_texts.extend(interpreted.value_texts())

            if suspected_failure:
                diagnostics = await collect_diagnostics(session)
                message = format_failure(name, errors, diagnostics)
                logger.error(f"[PROCEDURE] {name} reported failure:\n{message}")
                error_code = next((d.code for d in diagnostics if d.code is not None), None)
                raise ProcedureError(name, message, error_code=error_code, diagnostics=diagnostics)

        if steps:
            outcome = format_step_outcome(name, steps)
        else:
            outcome = format_generic_outcome(name)
        invocation.scan_text = "\n".join([outcome] + cell_texts)
        if unclassified_lines:
            outcome = "\n".join([outcome] + unclassified_lines)
        return outcome
