"""
Canale di avanzamento della pipeline.

Tre flussi verso la UI esterna: testo narrativo, percentuale 0-100 (con -1
riservato a "esecuzione fallita") ed eventi discreti di inizio/fine stage
(indice 0-based). Tutte le notifiche sono best-effort: un errore del
consumatore viene loggato e mai propagato alla pipeline.
"""
import logging
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

FAILED_PERCENT = -1


class ProgressChannel:
    """Interfaccia canale avanzamento (implementazione nulla di default)."""

    def report_message(self, text: str) -> None:
        pass

    def report_percent(self, value: int) -> None:
        pass

    def report_stage_started(self, index: int) -> None:
        pass

    def report_stage_completed(self, index: int) -> None:
        pass

    def reset_stages(self) -> None:
        pass


class NullProgress(ProgressChannel):
    """Canale che scarta ogni notifica."""


class CallbackProgress(ProgressChannel):
    """
    Canale basato su callback opzionali.

    Args:
        on_message: Callback testo narrativo
        on_percent: Callback percentuale
        on_stage_started: Callback indice stage avviato (0-based)
        on_stage_completed: Callback indice stage completato (0-based)
        on_reset: Callback reset stato stage
    """

    def __init__(
        self,
        on_message: Optional[Callable[[str], None]] = None,
        on_percent: Optional[Callable[[int], None]] = None,
        on_stage_started: Optional[Callable[[int], None]] = None,
        on_stage_completed: Optional[Callable[[int], None]] = None,
        on_reset: Optional[Callable[[], None]] = None
    ):
        self._on_message = on_message
        self._on_percent = on_percent
        self._on_stage_started = on_stage_started
        self._on_stage_completed = on_stage_completed
        self._on_reset = on_reset

    def _notify(self, channel: str, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"[PROGRESS] Consumer of '{channel}' raised {type(e).__name__}: {e}")

    def report_message(self, text: str) -> None:
        self._notify("message", self._on_message, text)

    def report_percent(self, value: int) -> None:
        self._notify("percent", self._on_percent, value)

    def report_stage_started(self, index: int) -> None:
        self._notify("stage_started", self._on_stage_started, index)

    def report_stage_completed(self, index: int) -> None:
        self._notify("stage_completed", self._on_stage_completed, index)

    def reset_stages(self) -> None:
        self._notify("reset", self._on_reset)


class RecordingProgress(ProgressChannel):
    """Canale che memorizza gli eventi (usato dai job API per lo stato)."""

    def __init__(self):
        self.messages: List[str] = []
        self.percents: List[int] = []
        self.events: List[Tuple[str, int]] = []

    @property
    def last_message(self) -> Optional[str]:
        return self.messages[-1] if self.messages else None

    @property
    def last_percent(self) -> int:
        return self.percents[-1] if self.percents else 0

    @property
    def started_indices(self) -> List[int]:
        return [i for kind, i in self.events if kind == "started"]

    @property
    def completed_indices(self) -> List[int]:
        return [i for kind, i in self.events if kind == "completed"]

    def report_message(self, text: str) -> None:
        self.messages.append(text)

    def report_percent(self, value: int) -> None:
        self.percents.append(value)

    def report_stage_started(self, index: int) -> None:
        self.events.append(("started", index))

    def report_stage_completed(self, index: int) -> None:
        self.events.append(("completed", index))

    def reset_stages(self) -> None:
        self.events.clear()
