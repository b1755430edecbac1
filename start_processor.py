import uvicorn
import os
import logging
from dotenv import load_dotenv

# Carica variabili ambiente
load_dotenv()

# Configurazione logging colorato PRIMA di qualsiasi altro import che usa logging
from core.logger import setup_colored_logging
setup_colored_logging("processor")

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8001))
    host = os.getenv("HOST", "0.0.0.0")

    # Verifica variabili ambiente critiche
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        logger.warning("DATABASE_URL not set - database operations may fail")
    else:
        logger.info("Database URL configured")

    # Un solo worker: le esecuzioni attive (e l'annullamento) sono tenute in memoria
    logger.info(f"Starting Invoice Processor on {host}:{port}")
    logger.info(f"Environment: {os.getenv('ENVIRONMENT', 'production')}")

    try:
        uvicorn.run(
            "api.main:app",
            host=host,
            port=port,
            workers=1,
            reload=False,
            log_level="info",
            access_log=True,
            use_colors=False  # Disabilita colori di uvicorn, usiamo colorlog
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        raise
