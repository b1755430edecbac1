"""
Job Manager per invoice-processor.

Gestisce creazione, aggiornamento e recupero job di elaborazione fatture.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, Any
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import PipelineJob

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ('completed', 'error', 'cancelled')


async def create_job(
    session: AsyncSession,
    artifact_path: str,
    max_step: Optional[int] = None
) -> str:
    """
    Crea un nuovo job di elaborazione.

    Args:
        session: Sessione database
        artifact_path: Percorso file ordini da elaborare
        max_step: Ultimo stage da eseguire (None = tutti)

    Returns:
        job_id: ID univoco del job
    """
    job_id = str(uuid.uuid4())

    job = PipelineJob(
        job_id=job_id,
        artifact_path=artifact_path,
        max_step=max_step,
        status='pending',
        progress_percent=0
    )

    session.add(job)
    await session.commit()

    logger.info(f"[JOB_MANAGER] Created job {job_id} for artifact={artifact_path}, max_step={max_step}")

    return job_id


async def update_job_status(
    session: AsyncSession,
    job_id: str,
    status: str,
    progress_percent: Optional[int] = None,
    current_stage: Optional[int] = None,
    last_message: Optional[str] = None,
    error_category: Optional[str] = None,
    error_message: Optional[str] = None
) -> bool:
    """
    Aggiorna stato di un job.

    Args:
        session: Sessione database
        job_id: ID job
        status: Nuovo stato ('pending', 'processing', 'completed', 'error', 'cancelled')
        progress_percent: Percentuale avanzamento (-1 = fallito)
        current_stage: Ordinale ultimo stage avviato
        last_message: Ultimo messaggio narrativo
        error_category: Categoria errore classificato
        error_message: Messaggio errore composto

    Returns:
        True se aggiornato con successo, False se job non trovato
    """
    try:
        stmt = select(PipelineJob).where(PipelineJob.job_id == job_id)
        result = await session.execute(stmt)
        job = result.scalar_one_or_none()

        if not job:
            logger.warning(f"[JOB_MANAGER] Job {job_id} not found for status update")
            return False

        job.status = status

        if status == 'processing' and not job.started_at:
            job.started_at = datetime.utcnow()
        elif status in TERMINAL_STATUSES:
            job.completed_at = datetime.utcnow()

        if progress_percent is not None:
            job.progress_percent = progress_percent
        if current_stage is not None:
            job.current_stage = current_stage
        if last_message is not None:
            job.last_message = last_message
        if error_category is not None:
            job.error_category = error_category
        if error_message is not None:
            job.error_message = error_message

        await session.commit()

        logger.debug(f"[JOB_MANAGER] Updated job {job_id}: status={status}")
        return True

    except Exception as e:
        logger.error(f"[JOB_MANAGER] Error updating job {job_id}: {e}", exc_info=True)
        await session.rollback()
        return False


async def get_job(session: AsyncSession, job_id: str) -> Optional[PipelineJob]:
    """Recupera job per ID, None se inesistente."""
    stmt = select(PipelineJob).where(PipelineJob.job_id == job_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def job_to_dict(job: PipelineJob) -> Dict[str, Any]:
    """Serializza un job per le risposte API."""
    return {
        "job_id": job.job_id,
        "status": job.status,
        "artifact_path": job.artifact_path,
        "max_step": job.max_step,
        "progress_percent": job.progress_percent,
        "current_stage": job.current_stage,
        "last_message": job.last_message,
        "error_category": job.error_category,
        "error_message": job.error_message,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }
