"""
Diagnostica MySQL per fallimenti di stored procedure.

Le procedure intercettano le eccezioni con EXIT HANDLER e restituiscono un
messaggio generico: SHOW ERRORS / SHOW WARNINGS sulla stessa sessione
recuperano il codice e il testo originali del motore.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

logger = logging.getLogger(__name__)

DIAGNOSTIC_QUERIES: Tuple[str, ...] = ("SHOW ERRORS", "SHOW WARNINGS")

# Codici errore MySQL noti -> descrizione
MYSQL_ERROR_DESCRIPTIONS = {
    1146: "Tabella inesistente",
    1305: "Procedura o funzione inesistente",
    1054: "Colonna inesistente",
    1044: "Accesso negato al database",
    1045: "Accesso negato (credenziali non valide)",
    1142: "Permesso negato sulla tabella",
    1370: "Permesso EXECUTE negato sulla procedura",
    2003: "Impossibile connettersi al server MySQL",
    1049: "Database inesistente",
    1064: "Errore di sintassi SQL",
    1216: "Violazione chiave esterna (riga figlia senza padre)",
    1217: "Violazione chiave esterna (riga padre referenziata)",
    1451: "Violazione chiave esterna: riga padre referenziata da altre righe",
    1452: "Violazione chiave esterna: riga padre inesistente",
}

ACCESS_DENIED_CODES = frozenset({1044, 1045, 1142, 1370})


@dataclass(frozen=True)
class DiagnosticRecord:
    """Riga di SHOW ERRORS / SHOW WARNINGS."""

    level: str
    code: Optional[int]
    message: str

    def format_line(self) -> str:
        return f"[{self.level}] {self.code if self.code is not None else '-'}: {self.message}"


def _record_from_row(row: Tuple[Any, ...]) -> DiagnosticRecord:
    level = str(row[0]) if len(row) > 0 and row[0] is not None else "Unknown"
    code: Optional[int] = None
    if len(row) > 1 and row[1] is not None:
        try:
            code = int(row[1])
        except (TypeError, ValueError):
            code = None
    message = str(row[2]) if len(row) > 2 and row[2] is not None else ""
    return DiagnosticRecord(level=level, code=code, message=message)


async def collect_diagnostics(session) -> List[DiagnosticRecord]:
    """
    Esegue le query diagnostiche sulla sessione della procedura.

    Una query diagnostica fallita viene loggata come warning e ignorata.

    Args:
        session: ProcedureSession aperta

    Returns:
        Lista record diagnostici (errori poi warning)
    """
    records: List[DiagnosticRecord] = []
    for statement in DIAGNOSTIC_QUERIES:
        try:
            result = await session.query(statement)
        except Exception as e:
            logger.warning(f"[PROCEDURE_DIAGNOSTICS] {statement} failed: {e}")
            continue
        for row in result.rows:
            records.append(_record_from_row(row))
        logger.info(f"[PROCEDURE_DIAGNOSTICS] {statement}: {len(result.rows)} rows")
    return records


def extract_error_code(exc: BaseException) -> Tuple[Optional[int], str]:
    """
    Estrae (codice, messaggio) da eccezioni PyMySQL o SQLAlchemy DBAPIError.

    PyMySQL usa args = (code, message); SQLAlchemy incapsula in .orig.
    """
    candidate = getattr(exc, "orig", None) or exc
    args = getattr(candidate, "args", ())
    if len(args) >= 2 and isinstance(args[0], int):
        return args[0], str(args[1])
    return None, str(candidate)


def describe_database_error(exc: BaseException) -> Tuple[Optional[int], str]:
    """
    Descrizione leggibile di un errore del motore database.

    Returns:
        Tuple (codice, descrizione). Per codici non mappati include codice e
        messaggio originali.
    """
    code, message = extract_error_code(exc)
    if code is not None and code in MYSQL_ERROR_DESCRIPTIONS:
        return code, f"{MYSQL_ERROR_DESCRIPTIONS[code]} (MySQL {code}): {message}"
    if code is not None:
        return code, f"Errore MySQL {code}: {message}"
    return None, f"Errore database {type(exc).__name__}: {message}"
