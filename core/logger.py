"""
Logging strutturato per invoice-processor.

Unifica logging colorato su console, sink file append-only condiviso da tutti
gli stage e structured logging con supporto JSON.
"""
import logging
import json
import os
import uuid
import sys
import contextvars
from typing import Optional, Dict, Any
from datetime import datetime

import colorlog

# Context variables per tracciare l'esecuzione corrente
_run_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar('run_context', default={})

FILE_LOG_FORMAT = '%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s | %(message)s'
FILE_LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


def setup_colored_logging(service_name: str = "processor", level: str = "INFO"):
    """
    Configura logging colorato con colorlog.

    Args:
        service_name: Nome del servizio per identificare log
        level: Livello root logger
    """
    # Handler per stdout con colori
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.DEBUG)

    formatter = colorlog.ColoredFormatter(
        f'%(log_color)s[%(levelname)s]%(reset)s %(cyan)s{service_name}%(reset)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        reset=True,
        log_colors={
            'DEBUG': 'white',
            'INFO': 'blue',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        },
        secondary_log_colors={},
        style='%'
    )
    handler.setFormatter(formatter)

    # Configura root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Rimuovi handler console esistenti, mantieni sink file
    root_logger.handlers = [h for h in root_logger.handlers if isinstance(h, logging.FileHandler)]
    root_logger.addHandler(handler)

    # Configura logger specifici per ridurre verbosità
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('aiomysql').setLevel(logging.WARNING)

    return root_logger


def setup_file_sink(path: str) -> logging.Handler:
    """
    Aggiunge al root logger il sink file append-only con timestamp.

    Idempotente: se un sink sullo stesso file esiste già viene riusato.

    Args:
        path: Percorso file log

    Returns:
        Handler file registrato
    """
    root_logger = logging.getLogger()
    abs_path = os.path.abspath(path)

    for existing in root_logger.handlers:
        if isinstance(existing, logging.FileHandler) and existing.baseFilename == abs_path:
            return existing

    directory = os.path.dirname(abs_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    handler = logging.FileHandler(abs_path, mode='a', encoding='utf-8')
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, datefmt=FILE_LOG_DATEFMT))
    root_logger.addHandler(handler)
    return handler


def set_run_context(run_id: Optional[str] = None, job_id: Optional[str] = None) -> str:
    """
    Imposta contesto esecuzione per logging strutturato.

    Args:
        run_id: ID esecuzione pipeline (genera se None)
        job_id: ID job API (opzionale)

    Returns:
        run_id effettivo
    """
    if run_id is None:
        run_id = uuid.uuid4().hex[:12]

    context: Dict[str, Any] = {"run_id": run_id}
    if job_id is not None:
        context["job_id"] = job_id

    _run_context.set(context)
    return run_id


def get_run_context() -> Dict[str, Any]:
    """
    Recupera contesto esecuzione corrente.

    Returns:
        Dict con run_id ed eventuale job_id
    """
    return _run_context.get({})


def get_run_id() -> Optional[str]:
    """Recupera run ID dal contesto, None se fuori da una esecuzione."""
    return get_run_context().get("run_id")


def log_json(
    level: str,
    message: str,
    run_id: Optional[str] = None,
    stage: Optional[str] = None,
    stage_index: Optional[int] = None,
    procedure: Optional[str] = None,
    table: Optional[str] = None,
    rows: Optional[int] = None,
    elapsed_sec: Optional[float] = None,
    decision: Optional[str] = None,
    **extra
):
    """
    Log strutturato in formato JSON line.

    Args:
        level: 'info', 'warning', 'error', 'debug'
        message: Messaggio da loggare
        run_id: ID esecuzione (usa contesto se None)
        stage: Etichetta stage pipeline
        stage_index: Ordinale stage (1..N)
        procedure: Nome stored procedure
        table: Tabella di staging
        rows: Numero righe elaborate
        elapsed_sec: Tempo elaborazione in secondi
        decision: Esito (continue/stop/fail)
        **extra: Campi aggiuntivi
    """
    ctx = get_run_context()
    if run_id is None:
        run_id = ctx.get("run_id")

    log_data: Dict[str, Any] = {
        "timestamp": datetime.utcnow().isoformat(),
        "level": level.upper(),
        "message": message,
    }

    if run_id:
        log_data["run_id"] = run_id
    if ctx.get("job_id"):
        log_data["job_id"] = ctx["job_id"]
    if stage:
        log_data["stage"] = stage
    if stage_index is not None:
        log_data["stage_index"] = stage_index
    if procedure:
        log_data["procedure"] = procedure
    if table:
        log_data["table"] = table
    if rows is not None:
        log_data["rows"] = rows
    if elapsed_sec is not None:
        log_data["elapsed_sec"] = elapsed_sec
    if decision:
        log_data["decision"] = decision

    log_data.update(extra)

    logger = logging.getLogger(__name__)
    log_func = getattr(logger, level.lower(), logger.info)

    # Formatta come JSON line (una riga)
    json_line = json.dumps(log_data, ensure_ascii=False, default=str)
    log_func(json_line)
