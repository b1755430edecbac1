"""
Token di annullamento cooperativo per la pipeline.

Il token viene passato a ogni punto di sospensione (download, insert,
chiamata procedura). Un token annullato interrompe l'operazione in corso
con PipelineCancelledError.
"""
import asyncio
from typing import Awaitable, Optional, TypeVar

from core.errors import PipelineCancelledError

T = TypeVar("T")


class CancellationToken:
    """Segnale di annullamento condiviso tra chiamante e pipeline."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "annullato dal chiamante") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelledError(f"Esecuzione annullata: {self.reason}")

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(awaitable: Awaitable[T], token: Optional[CancellationToken] = None) -> T:
    """
    Esegue un awaitable interrompendolo se il token viene annullato.

    Args:
        awaitable: Operazione da eseguire
        token: Token annullamento (None = non annullabile)

    Returns:
        Risultato dell'operazione

    Raises:
        PipelineCancelledError: Se il token viene annullato prima del termine
    """
    if token is None:
        return await awaitable

    if token.is_cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled()
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    token.raise_if_cancelled()
    # Non raggiungibile: waiter completato implica token annullato
    raise PipelineCancelledError("Esecuzione annullata")
