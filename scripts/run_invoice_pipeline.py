#!/usr/bin/env python3
"""
Script per eseguire la pipeline fatture da riga di comando.

Uso:
    python scripts/run_invoice_pipeline.py ordini.xlsx

Esecuzione parziale (solo i primi 5 stage):
    python scripts/run_invoice_pipeline.py ordini.xlsx --max-step 5
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Aggiungi la root del progetto al path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from core.config import get_config
from core.errors import PipelineOperationError
from core.logger import setup_colored_logging
from core.progress import CallbackProgress
from ingest.pipeline import create_invoice_pipeline

setup_colored_logging("invoice-cli")
logger = logging.getLogger(__name__)


async def run(file_path: str, max_step):
    """Esegue la pipeline e ritorna exit code."""
    progress = CallbackProgress(
        on_message=lambda text: print(text, flush=True),
        on_percent=lambda value: logger.debug(f"Progress: {value}%"),
    )
    pipeline = create_invoice_pipeline(get_config(), progress=progress)

    try:
        await pipeline.run(file_path, max_step=max_step)
        return 0
    except PipelineOperationError as e:
        logger.error(f"Pipeline fallita ({e.category.value}): {e.user_message}")
        return 1


def main():
    parser = argparse.ArgumentParser(description="Esegue la pipeline di elaborazione fatture")
    parser.add_argument("file_path", help="File ordini (.xlsx, .xls, .csv)")
    parser.add_argument("--max-step", type=int, default=None, help="Ultimo stage da eseguire (1..N)")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args.file_path, args.max_step)))


if __name__ == "__main__":
    main()
