"""
Gerarchia eccezioni per invoice-processor.

Ogni errore sollevato da gateway, motore procedure e pipeline deriva da
ProcessorError. La classificazione in categorie avviene solo in
core.error_classifier, una volta per esecuzione.
"""
from typing import Any, List, Optional, Sequence


class ProcessorError(Exception):
    """Base per tutti gli errori del processor."""


class ArgumentError(ProcessorError, ValueError):
    """Argomenti di invocazione non validi (percorso vuoto, max_step fuori range)."""


class SystemStateError(ProcessorError):
    """Stato interno non valido: configurazione, mapping o dataset inutilizzabile."""


class ConfigurationError(SystemStateError):
    """Chiave di configurazione assente o vuota."""

    def __init__(self, key: str, message: Optional[str] = None):
        self.key = key
        super().__init__(message or f"Configurazione '{key}' mancante o vuota")


class MappingError(SystemStateError):
    """Mapping colonne assente o senza colonne utilizzabili."""


class EmptyDatasetError(SystemStateError):
    """Nessun record utilizzabile dopo filtro/inserimento."""


class TransferError(ProcessorError):
    """Download o accesso al file esterno non riuscito."""


class LoadError(ProcessorError):
    """Caricamento dati in tabella di staging non riuscito."""


class ProcedureError(ProcessorError):
    """
    Fallimento stored procedure.

    Attributes:
        procedure_name: Nome procedura invocata
        error_code: Codice errore MySQL se noto
        diagnostics: Righe SHOW ERRORS / SHOW WARNINGS raccolte
    """

    def __init__(
        self,
        procedure_name: str,
        message: str,
        error_code: Optional[int] = None,
        diagnostics: Optional[Sequence[Any]] = None
    ):
        self.procedure_name = procedure_name
        self.error_code = error_code
        self.diagnostics: List[Any] = list(diagnostics or [])
        super().__init__(message)


class ProcedurePermissionError(ProcedureError, PermissionError):
    """Accesso negato durante la chiamata alla procedura."""


class ProcedureTimeoutError(ProcedureError, TimeoutError):
    """La procedura ha superato il timeout assegnato."""


class PipelineCancelledError(ProcessorError):
    """Esecuzione annullata dal chiamante."""


class PipelineOperationError(ProcessorError):
    """
    Errore di primo livello restituito al chiamante della pipeline.

    L'eccezione originale resta disponibile in __cause__.

    Attributes:
        category: Categoria ErrorCategory
        user_message: Messaggio per l'utente
        report: ErrorReport completo
    """

    def __init__(self, category: Any, user_message: str, report: Any = None, composed_message: Optional[str] = None):
        self.category = category
        self.user_message = user_message
        self.report = report
        self.composed_message = composed_message
        label = getattr(category, "label", str(category))
        super().__init__(f"Elaborazione fatture fallita - {label}: {user_message}")
