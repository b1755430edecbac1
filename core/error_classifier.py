"""
Classificazione errori per invoice-processor.

Trasforma qualsiasi eccezione in un ErrorReport stabile (categoria, severità,
azione consigliata, messaggio utente, causa radice) senza perdere la causa
originale. Nessun I/O, non solleva mai eccezioni.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Type

from core.errors import SystemStateError, TransferError

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Tassonomia chiusa delle categorie di errore."""

    FILE_ACCESS = "file_access"
    PERMISSION = "permission"
    RESOURCE_EXHAUSTION = "resource_exhaustion"
    TIMEOUT = "timeout"
    INPUT_VALIDATION = "input_validation"
    SYSTEM_STATE = "system_state"
    GENERAL = "general"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


CATEGORY_LABELS = {
    ErrorCategory.FILE_ACCESS: "Errore accesso file",
    ErrorCategory.PERMISSION: "Permessi insufficienti",
    ErrorCategory.RESOURCE_EXHAUSTION: "Risorse esaurite",
    ErrorCategory.TIMEOUT: "Timeout operazione",
    ErrorCategory.INPUT_VALIDATION: "Input non valido",
    ErrorCategory.SYSTEM_STATE: "Stato di sistema non valido",
    ErrorCategory.GENERAL: "Errore di sistema",
}

RECOVERY_ACTIONS = {
    ErrorCategory.FILE_ACCESS: "Verificare percorso ed esistenza del file",
    ErrorCategory.PERMISSION: "Rieseguire con permessi adeguati (file o database)",
    ErrorCategory.RESOURCE_EXHAUSTION: "Ridurre il carico o liberare risorse e riprovare",
    ErrorCategory.TIMEOUT: "Riprovare o aumentare il timeout",
    ErrorCategory.INPUT_VALIDATION: "Correggere i parametri di invocazione",
    ErrorCategory.SYSTEM_STATE: "Controllare la configurazione",
    ErrorCategory.GENERAL: "Controllare i log e riprovare",
}

# Ordine significativo: il primo tipo compatibile vince
_CATEGORY_RULES: List[Tuple[Tuple[Type[BaseException], ...], ErrorCategory]] = [
    ((MemoryError,), ErrorCategory.RESOURCE_EXHAUSTION),
    ((PermissionError,), ErrorCategory.PERMISSION),
    ((TimeoutError, asyncio.TimeoutError), ErrorCategory.TIMEOUT),
    ((FileNotFoundError, TransferError), ErrorCategory.FILE_ACCESS),
    ((SystemStateError,), ErrorCategory.SYSTEM_STATE),
    ((ValueError,), ErrorCategory.INPUT_VALIDATION),
]

_SEVERITY = {
    ErrorCategory.RESOURCE_EXHAUSTION: Severity.CRITICAL,
    ErrorCategory.PERMISSION: Severity.HIGH,
    ErrorCategory.TIMEOUT: Severity.HIGH,
    ErrorCategory.INPUT_VALIDATION: Severity.LOW,
}


@dataclass(frozen=True)
class ErrorReport:
    """Rappresentazione classificata di un errore."""

    category: ErrorCategory
    severity: Severity
    recovery_action: str
    user_message: str
    root_cause: BaseException


def find_root_cause(fault: BaseException) -> BaseException:
    """
    Segue la catena delle cause fino all'anello più interno.

    Usa __cause__, oppure __context__ se non soppresso. Protetto da cicli.
    """
    current = fault
    seen = {id(current)}
    while True:
        nxt = current.__cause__
        if nxt is None and not current.__suppress_context__:
            nxt = current.__context__
        if nxt is None or id(nxt) in seen:
            return current
        seen.add(id(nxt))
        current = nxt


class ErrorClassifier:
    """Classificatore type-driven su tassonomia chiusa."""

    def categorize(self, fault: BaseException) -> ErrorCategory:
        for types, category in _CATEGORY_RULES:
            if isinstance(fault, types):
                return category
        return ErrorCategory.GENERAL

    def classify(self, fault: BaseException) -> ErrorReport:
        """
        Classifica un'eccezione.

        Args:
            fault: Eccezione da classificare

        Returns:
            ErrorReport immutabile
        """
        try:
            category = self.categorize(fault)
            detail = _describe(fault)
            return ErrorReport(
                category=category,
                severity=_SEVERITY.get(category, Severity.MEDIUM),
                recovery_action=RECOVERY_ACTIONS[category],
                user_message=f"{category.label}: {detail}" if detail else category.label,
                root_cause=find_root_cause(fault),
            )
        except Exception:
            # str() di eccezioni terze può fallire: report minimo
            logger.warning("[ERROR_CLASSIFIER] Classification fallback used", exc_info=True)
            return ErrorReport(
                category=ErrorCategory.GENERAL,
                severity=Severity.MEDIUM,
                recovery_action=RECOVERY_ACTIONS[ErrorCategory.GENERAL],
                user_message=ErrorCategory.GENERAL.label,
                root_cause=fault,
            )


def _describe(fault: BaseException) -> str:
    text = str(fault).strip()
    return text or type(fault).__name__


def format_report(report: ErrorReport, fault: Optional[BaseException] = None) -> str:
    """
    Compone il messaggio finale per il chiamante.

    Args:
        report: ErrorReport classificato
        fault: Eccezione originale (per confronto con la causa radice)

    Returns:
        Testo multi-riga con categoria, severità, azione ed eventuale causa radice
    """
    lines = [
        f"❌ {report.user_message}",
        f"Categoria: {report.category.value}",
        f"Severità: {report.severity.value}",
        f"Azione consigliata: {report.recovery_action}",
    ]
    root = report.root_cause
    if fault is not None and root is not fault:
        lines.append(f"Causa radice: {type(root).__name__}: {_describe(root)}")
    return "\n".join(lines)
