"""
Accesso a basso livello alle stored procedure MySQL.

SQLAlchemy non espone i result set multipli di CALL: la sessione usa il
cursore aiomysql della connessione grezza e legge ogni set con nextset().
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Sequence

from core.database import engine as default_engine, validate_identifier
from procedures.result_sets import RawResultSet

logger = logging.getLogger(__name__)


class ProcedureSession:
    """Sessione su un singolo cursore: CALL e query diagnostiche condividono la connessione."""

    def __init__(self, cursor):
        self._cursor = cursor

    async def call(self, procedure_name: str, args: Sequence[Any] = ()) -> AsyncIterator[RawResultSet]:
        """
        Invoca la procedura e restituisce i result set uno alla volta.

        Args:
            procedure_name: Nome procedura
            args: Argomenti posizionali

        Yields:
            RawResultSet in ordine
        """
        validate_identifier(procedure_name)
        placeholders = ", ".join(["%s"] * len(args))
        await self._cursor.execute(f"CALL `{procedure_name}`({placeholders})", tuple(args) or None)

        index = 0
        while True:
            description = self._cursor.description
            if description:
                columns = [d[0] for d in description]
                rows = await self._cursor.fetchall()
                yield RawResultSet(index=index, columns=columns, rows=[tuple(r) for r in rows or ()])
                index += 1
            if not await self._cursor.nextset():
                break

    async def query(self, statement: str) -> RawResultSet:
        """Esegue una query singola (SHOW ERRORS, SHOW WARNINGS)."""
        await self._cursor.execute(statement)
        description = self._cursor.description or ()
        rows = await self._cursor.fetchall() if description else ()
        return RawResultSet(index=0, columns=[d[0] for d in description], rows=[tuple(r) for r in rows or ()])


class ProcedureClient:
    """
    Apre sessioni procedura sull'engine async.

    Args:
        db_engine: AsyncEngine (default engine applicativo)
    """

    def __init__(self, db_engine=None):
        self._engine = db_engine or default_engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[ProcedureSession]:
        async with self._engine.connect() as conn:
            raw = await conn.get_raw_connection()
            driver_conn = raw.driver_connection
            async with driver_conn.cursor() as cursor:
                yield ProcedureSession(cursor)
            await driver_conn.commit()
