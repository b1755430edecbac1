"""
Gateway di ingestione file esterni.

Rende disponibile un file esterno alle procedure lato server:
- load_via_mapping: download + lettura + truncate + insert con mapping colonne
- load_via_procedure: copia grezza in tabella di staging + procedura loader

Il gateway non nasconde errori strutturali: tollera solo input a zero righe
e fallimenti della pulizia dei file temporanei.
"""
import asyncio
import logging
import os
import shutil
import tempfile
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional, Tuple

import pandas as pd

from core.cancellation import CancellationToken, run_cancellable
from core.database import sanitize_column_name
from core.errors import (
    ConfigurationError,
    LoadError,
    MappingError,
    PipelineCancelledError,
    SystemStateError,
    TransferError,
)
from core.logger import log_json
from ingest.column_mapping import convert_value, is_blank
from ingest.excel_parser import SUPPORTED_EXTENSIONS, read_table

logger = logging.getLogger(__name__)

STAGING_PREFIX = "_stg_"


def resolve_remote_path(location: str, default_file_name: str) -> str:
    """
    Percorso remoto da un valore di configurazione.

    Se il valore indica già un file tabellare viene usato così com'è,
    altrimenti è una cartella a cui si aggiunge il nome file di default.
    """
    location = location.strip()
    if location.lower().endswith(SUPPORTED_EXTENSIONS):
        return location
    return location.rstrip("/\\") + "/" + default_file_name


def _unique_columns(names: List[object]) -> List[str]:
    result: List[str] = []
    seen = set()
    for position, name in enumerate(names):
        candidate = sanitize_column_name(name, position)
        base, suffix = candidate, 2
        while candidate.lower() in seen:
            candidate = f"{base}_{suffix}"
            suffix += 1
        seen.add(candidate.lower())
        result.append(candidate)
    return result


class ExternalFileIngestionGateway:
    """
    Gateway tra storage esterno, tabelle di staging e procedure loader.

    Args:
        config: ProcessorConfig (usa get_setting per le chiavi sorgente)
        file_store: Store con download(remote_path, local_path)
        repository: StagingRepository
        mapping_provider: ColumnMappingProvider
        engine: ProcedureExecutionEngine per le procedure loader
        reader: Funzione bloccante path -> DataFrame
    """

    def __init__(
        self,
        config,
        file_store,
        repository,
        mapping_provider,
        engine,
        reader: Callable[[str], pd.DataFrame] = read_table
    ):
        self._config = config
        self._file_store = file_store
        self._repository = repository
        self._mapping_provider = mapping_provider
        self._engine = engine
        self._reader = reader

    def resolve_setting(self, config_key: str) -> str:
        value = self._config.get_setting(config_key)
        if value is None:
            logger.error(f"[GATEWAY] Configuration key '{config_key}' is missing or blank")
            raise ConfigurationError(config_key)
        return value

    @asynccontextmanager
    async def fetched(
        self,
        config_key: str,
        default_file_name: str,
        cancel_token: Optional[CancellationToken] = None
    ) -> AsyncIterator[str]:
        """
        Scarica la sorgente configurata in una cartella temporanea.

        La copia locale viene sempre eliminata all'uscita.

        Yields:
            Percorso del file locale
        """
        location = self.resolve_setting(config_key)
        remote_path = resolve_remote_path(location, default_file_name)
        temp_dir = tempfile.mkdtemp(prefix="invoice_")
        file_name = os.path.basename(remote_path.replace("\\", "/")) or default_file_name
        local_path = os.path.join(temp_dir, file_name)

        try:
            logger.info(f"[GATEWAY] Downloading {remote_path} ({config_key})")
            try:
                await run_cancellable(self._file_store.download(remote_path, local_path), cancel_token)
            except PipelineCancelledError:
                raise
            except Exception as e:
                logger.error(f"[GATEWAY] Download of {remote_path} failed: {e}")
                raise TransferError(f"Download di {remote_path} non riuscito: {e}") from e

            if not os.path.isfile(local_path):
                raise TransferError(f"Download di {remote_path} non ha prodotto alcun file")

            yield local_path
        finally:
            self._cleanup(temp_dir)

    def _cleanup(self, temp_dir: str) -> None:
        try:
            shutil.rmtree(temp_dir)
            logger.debug(f"[GATEWAY] Removed temporary directory {temp_dir}")
        except OSError as e:
            logger.warning(f"[GATEWAY] Could not remove temporary directory {temp_dir}: {e}")

    async def _read(self, path: str, cancel_token: Optional[CancellationToken]) -> pd.DataFrame:
        try:
            return await run_cancellable(asyncio.to_thread(self._reader, path), cancel_token)
        except ValueError as e:
            raise LoadError(f"Lettura di {os.path.basename(path)} non riuscita: {e}") from e

    async def load_via_mapping(
        self,
        config_key: str,
        table_name: str,
        default_file_name: str,
        cancel_token: Optional[CancellationToken] = None
    ) -> int:
        """
        Scarica la sorgente configurata e la carica con mapping colonne.

        Args:
            config_key: Chiave configurazione della sorgente
            table_name: Tabella di staging destinazione
            default_file_name: Nome file se la configurazione indica una cartella
            cancel_token: Token annullamento

        Returns:
            Numero righe inserite (0 se il file è vuoto)
        """
        async with self.fetched(config_key, default_file_name, cancel_token) as local_path:
            return await self.load_file_via_mapping(local_path, table_name, cancel_token)

    async def load_file_via_mapping(
        self,
        local_path: str,
        table_name: str,
        cancel_token: Optional[CancellationToken] = None
    ) -> int:
        """Carica un file locale nella tabella usando il mapping colonne."""
        start_time = time.time()
        df = await self._read(local_path, cancel_token)

        if df.empty:
            logger.info(f"[GATEWAY] {os.path.basename(local_path)} is empty: {table_name} left untouched")
            log_json(level="info", message="Empty source, nothing to load", table=table_name, rows=0, decision="skip")
            return 0

        column_specs = self._mapping_provider.get_table_mapping(table_name)
        usable: List[Tuple[str, object]] = [
            (excel_col, column_specs[str(excel_col).strip()])
            for excel_col in df.columns
            if str(excel_col).strip() in column_specs
        ]
        if not usable:
            raise MappingError(
                f"Nessuna colonna del file corrisponde al mapping di {table_name} "
                f"(colonne file: {[str(c) for c in df.columns]})"
            )

        rows = []
        for record in df[[col for col, _ in usable]].itertuples(index=False, name=None):
            if all(is_blank(v) for v in record):
                continue
            rows.append(tuple(convert_value(v, spec) for v, (_, spec) in zip(record, usable)))

        if not rows:
            logger.info(f"[GATEWAY] {os.path.basename(local_path)} has only blank rows: {table_name} left untouched")
            return 0

        db_columns = [spec.db_column for _, spec in usable]
        await self._repository.truncate(table_name, cancel_token)
        saved = await self._repository.insert_rows(table_name, db_columns, rows, cancel_token)
        if saved < len(rows):
            logger.warning(f"[GATEWAY] {table_name}: {len(rows) - saved} of {len(rows)} rows were rejected")

        elapsed = time.time() - start_time
        logger.info(f"[GATEWAY] Loaded {saved} rows into {table_name} in {elapsed:.2f}s")
        log_json(level="info", message="Source loaded via mapping", table=table_name, rows=saved, elapsed_sec=round(elapsed, 3))
        return saved

    async def load_via_procedure(
        self,
        artifact_path: str,
        procedure_config_key: str,
        cancel_token: Optional[CancellationToken] = None
    ) -> bool:
        """
        Passa il contenuto grezzo di un file a una procedura loader.

        Il file viene copiato in una tabella di staging con colonne TEXT e il
        suo nome viene passato come unico argomento della procedura. La
        tabella viene eliminata al termine.

        Args:
            artifact_path: File locale
            procedure_config_key: Chiave configurazione con il nome procedura
            cancel_token: Token annullamento

        Returns:
            True se il caricamento è riuscito (anche con file vuoto)
        """
        loader = self.resolve_setting(procedure_config_key)

        if not artifact_path or not os.path.isfile(artifact_path):
            raise TransferError(f"File da caricare non trovato: {artifact_path}")

        df = await self._read(artifact_path, cancel_token)
        columns = _unique_columns(list(df.columns))
        rows = [
            tuple(None if is_blank(v) else str(v) for v in record)
            for record in df.itertuples(index=False, name=None)
            if not all(is_blank(v) for v in record)
        ]
        if not rows:
            logger.info(f"[GATEWAY] {os.path.basename(artifact_path)} is empty: loader {loader} not called")
            return True

        staging_table = f"{STAGING_PREFIX}{loader}_{uuid.uuid4().hex[:8]}"[:64]
        try:
            try:
                await self._repository.create_staging_table(staging_table, columns)
                await self._repository.insert_rows(staging_table, columns, rows, cancel_token)
            except (PipelineCancelledError, SystemStateError):
                raise
            except Exception as e:
                logger.error(f"[GATEWAY] Staging load for {loader} failed: {e}", exc_info=True)
                raise LoadError(f"Caricamento in {staging_table} non riuscito: {e}") from e

            outcome = await self._engine.execute(loader, args=(staging_table,), cancel_token=cancel_token)
            logger.info(f"[GATEWAY] Loader {loader} finished ({len(rows)} rows):\n{outcome}")
            return True
        finally:
            try:
                await self._repository.drop_table(staging_table)
            except Exception as e:
                logger.warning(f"[GATEWAY] Could not drop staging table {staging_table}: {e}")

    async def fetch_and_load_via_procedure(
        self,
        config_key: str,
        procedure_config_key: str,
        default_file_name: str,
        cancel_token: Optional[CancellationToken] = None
    ) -> bool:
        """Scarica la sorgente configurata e la passa alla procedura loader."""
        async with self.fetched(config_key, default_file_name, cancel_token) as local_path:
            return await self.load_via_procedure(local_path, procedure_config_key, cancel_token)
