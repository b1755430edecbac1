"""
Main FastAPI application per invoice-processor.
"""
import logging
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select

from core.config import get_config, validate_config
from core.database import create_tables, get_db
from core.logger import setup_colored_logging, setup_file_sink
from api.routers import invoice

# Configurazione logging colorato
setup_colored_logging("processor")
logger = logging.getLogger(__name__)

app = FastAPI(title="Invoice Processor", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(invoice.router)


@app.on_event("startup")
async def startup_event():
    """Inizializza log file, configurazione e tabelle job al startup"""
    try:
        config = get_config()
        setup_file_sink(config.log_file_path)
        validate_config()

        await create_tables()
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error during startup: {e}", exc_info=True)


@app.get("/health")
async def health_check():
    """Health check del servizio"""
    try:
        config = get_config()

        db_status = "unknown"
        try:
            async for db in get_db():
                await db.execute(select(1))
                db_status = "connected"
                break
        except Exception as db_error:
            db_status = f"error: {str(db_error)}"

        return {
            "status": "healthy",
            "service": "invoice-processor",
            "version": config.processor_version,
            "timestamp": str(datetime.utcnow()),
            "database": db_status,
            "dropbox": "configured" if config.dropbox_access_token else "not_configured",
            "kakaowork": "configured" if config.kakaowork_bot_token else "not_configured",
            "endpoints": {
                "process": "/api/invoice/process",
                "status": "/api/invoice/jobs/{job_id}",
                "cancel": "/api/invoice/jobs/{job_id}/cancel",
                "stages": "/api/invoice/stages"
            }
        }

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "service": "invoice-processor",
            "error": str(e),
            "timestamp": str(datetime.utcnow())
        }
