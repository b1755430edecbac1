"""
Router per elaborazione fatture (pipeline stage).

Endpoint:
- POST /api/invoice/process: Avvia una esecuzione in background
- GET /api/invoice/jobs/{job_id}: Stato job
- POST /api/invoice/jobs/{job_id}/cancel: Annulla esecuzione in corso
- GET /api/invoice/stages: Catalogo stage
"""
import asyncio
import logging
import uuid
from typing import Dict, Optional, Set

from fastapi import APIRouter, Form, HTTPException

from core.cancellation import CancellationToken
from core.database import AsyncSessionLocal, get_db
from core.errors import PipelineCancelledError, PipelineOperationError
from core.job_manager import create_job, get_job, job_to_dict, update_job_status
from core.logger import set_run_context
from core.progress import RecordingProgress
from ingest.pipeline import create_invoice_pipeline
from ingest.stages import INVOICE_STAGE_DEFINITIONS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invoice", tags=["invoice"])

# Esecuzioni attive: job_id -> token annullamento (una alla volta)
_active_runs: Dict[str, CancellationToken] = {}


class JobProgress(RecordingProgress):
    """Canale avanzamento che salva lo stato del job su database (best-effort)."""

    def __init__(self, job_id: str):
        super().__init__()
        self.job_id = job_id
        self.current_stage: Optional[int] = None
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    def report_stage_started(self, index: int) -> None:
        super().report_stage_started(index)
        self.current_stage = index + 1
        self._schedule()

    def report_percent(self, value: int) -> None:
        super().report_percent(value)
        self._schedule()

    def _schedule(self) -> None:
        task = asyncio.get_running_loop().create_task(self._persist())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self) -> None:
        async with self._lock:
            async with AsyncSessionLocal() as session:
                await update_job_status(
                    session, self.job_id,
                    status='processing',
                    progress_percent=self.last_percent,
                    current_stage=self.current_stage,
                    last_message=self.last_message
                )

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


async def run_invoice_job(
    job_id: str,
    file_path: str,
    max_step: Optional[int],
    cancel_token: CancellationToken
):
    """
    Esegue la pipeline per un job e ne registra l'esito.

    Args:
        job_id: ID job
        file_path: File ordini locale
        max_step: Ultimo stage da eseguire (None = tutti)
        cancel_token: Token annullamento del job
    """
    set_run_context(job_id=job_id)
    progress = JobProgress(job_id)
    status = 'completed'
    error_category = None
    error_message = None

    try:
        async for db in get_db():
            await update_job_status(db, job_id, status='processing')

        pipeline = create_invoice_pipeline(progress=progress)
        await pipeline.run(file_path, max_step=max_step, cancel_token=cancel_token)
        logger.info(f"[INVOICE_JOB] Job {job_id} completed")

    except PipelineOperationError as e:
        status = 'cancelled' if isinstance(e.__cause__, PipelineCancelledError) else 'error'
        error_category = e.category.value
        error_message = e.composed_message or str(e)
        logger.warning(f"[INVOICE_JOB] Job {job_id} ended with status={status}: {e}")

    except Exception as e:
        status = 'error'
        error_category = 'general'
        error_message = str(e)
        logger.error(f"[INVOICE_JOB] Job {job_id} could not run: {e}", exc_info=True)

    finally:
        _active_runs.pop(job_id, None)

    await progress.drain()
    async for db in get_db():
        await update_job_status(
            db, job_id,
            status=status,
            progress_percent=progress.last_percent,
            last_message=progress.last_message,
            error_category=error_category,
            error_message=error_message
        )


@router.post("/process")
async def process_invoice_endpoint(
    file_path: str = Form(...),
    max_step: Optional[int] = Form(None)
):
    """
    Crea job di elaborazione fatture e ritorna job_id immediatamente.

    La validazione di file_path e max_step avviene nella pipeline: un input
    non valido produce un job in stato 'error' con categoria input_validation.
    """
    if _active_runs:
        running = next(iter(_active_runs))
        raise HTTPException(status_code=409, detail=f"Elaborazione già in corso (job {running})")

    # Slot riservato prima del primo await
    token = CancellationToken()
    reservation = f"pending-{uuid.uuid4().hex[:8]}"
    _active_runs[reservation] = token

    try:
        async for db in get_db():
            job_id = await create_job(db, artifact_path=file_path, max_step=max_step)
            break
    except Exception as e:
        logger.error(f"[INVOICE_API] Error creating job: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating job: {str(e)}")
    finally:
        _active_runs.pop(reservation, None)

    _active_runs[job_id] = token

    # Avvia elaborazione in background
    asyncio.create_task(run_invoice_job(job_id, file_path, max_step, token))

    logger.info(f"[INVOICE_API] Job {job_id} created, starting background processing")
    return {
        "status": "processing",
        "job_id": job_id,
        "message": "Elaborazione avviata. Usa /api/invoice/jobs/{job_id} per verificare lo stato."
    }


@router.get("/jobs/{job_id}")
async def get_invoice_job(job_id: str):
    """Stato di un job di elaborazione."""
    try:
        async for db in get_db():
            job = await get_job(db, job_id)
            if not job:
                raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
            response = job_to_dict(job)
            response["running"] = job_id in _active_runs
            return response
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"[INVOICE_API] Error getting job status: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@router.post("/jobs/{job_id}/cancel")
async def cancel_invoice_job(job_id: str):
    """Richiede l'annullamento di un job in esecuzione."""
    token = _active_runs.get(job_id)
    if token is None:
        raise HTTPException(status_code=404, detail=f"Nessuna elaborazione attiva per job {job_id}")
    token.cancel("annullato via API")
    logger.info(f"[INVOICE_API] Cancellation requested for job {job_id}")
    return {"status": "cancelling", "job_id": job_id}


@router.get("/stages")
async def list_stages():
    """Catalogo ordinato degli stage."""
    return {
        "total": len(INVOICE_STAGE_DEFINITIONS),
        "stages": [
            {
                "index": i,
                "label": d.label,
                "procedure": d.procedure,
                "source_key": d.source_key,
                "table": d.table,
                "loader_key": d.loader_key,
            }
            for i, d in enumerate(INVOICE_STAGE_DEFINITIONS, start=1)
        ]
    }
