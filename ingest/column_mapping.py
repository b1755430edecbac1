"""
Mapping colonne Excel -> colonne tabella di staging.

Il file JSON (column_mapping.json) ha la forma:

    {
      "mappings": {
        "송장출력_메세지": {
          "table_name": "송장출력_메세지",
          "columns": {
            "주문번호": {"db_column": "order_no", "data_type": "varchar"},
            "메세지": "message"
          }
        }
      }
    }

Una colonna può essere descritta da un oggetto completo o solo dal nome
colonna destinazione.
"""
import json
import logging
import math
import os
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from core.errors import MappingError

logger = logging.getLogger(__name__)


class ColumnSpec(BaseModel):
    """Mapping di una singola colonna Excel."""

    db_column: str
    data_type: str = "varchar"
    required: bool = False
    default_value: Optional[Any] = None
    description: str = ""


class TableMapping(BaseModel):
    """Mapping di una tabella di staging."""

    table_name: str = ""
    description: str = ""
    is_active: bool = True
    columns: Dict[str, ColumnSpec] = Field(default_factory=dict)

    @field_validator("columns", mode="before")
    @classmethod
    def _expand_shorthand(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                key: {"db_column": spec} if isinstance(spec, str) else spec
                for key, spec in value.items()
            }
        return value


class MappingFile(BaseModel):
    mappings: Dict[str, TableMapping] = Field(default_factory=dict)


def is_blank(value: Any) -> bool:
    """True per None, NaN e stringhe vuote."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def convert_value(value: Any, spec: ColumnSpec) -> Any:
    """
    Converte il valore di una cella secondo data_type.

    Valori vuoti o non convertibili prendono default_value.
    """
    if is_blank(value):
        return spec.default_value
    text = str(value).strip()
    data_type = spec.data_type.lower()
    if data_type == "int":
        try:
            return int(float(text.replace(",", "")))
        except ValueError:
            return spec.default_value
    if data_type == "decimal":
        try:
            return Decimal(text.replace(",", ""))
        except InvalidOperation:
            return spec.default_value
    return text


class ColumnMappingProvider:
    """
    Carica (lazy) il file mapping e risolve le colonne per tabella.

    Args:
        path: Percorso file JSON
    """

    def __init__(self, path: str):
        self._path = path
        self._mapping_file: Optional[MappingFile] = None

    def _load(self) -> MappingFile:
        if self._mapping_file is None:
            if not os.path.isfile(self._path):
                raise MappingError(f"File mapping colonne non trovato: {self._path}")
            try:
                with open(self._path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                self._mapping_file = MappingFile.model_validate(data)
            except (json.JSONDecodeError, ValidationError) as e:
                raise MappingError(f"File mapping colonne non valido ({self._path}): {e}") from e
            logger.info(f"[COLUMN_MAPPING] Loaded {len(self._mapping_file.mappings)} table mappings from {self._path}")
        return self._mapping_file

    def reload(self) -> None:
        self._mapping_file = None

    def get_table_mapping(self, table_name: str) -> Dict[str, ColumnSpec]:
        """
        Mapping colonne per una tabella.

        Cerca per chiave, poi per campo table_name.

        Returns:
            Dict {colonna_excel: ColumnSpec}

        Raises:
            MappingError: Mapping assente, disattivato o senza colonne
        """
        mapping_file = self._load()
        table_mapping: Union[TableMapping, None] = mapping_file.mappings.get(table_name)
        if table_mapping is None:
            table_mapping = next(
                (m for m in mapping_file.mappings.values() if m.table_name == table_name),
                None
            )
        if table_mapping is None or not table_mapping.is_active:
            raise MappingError(f"Nessun mapping colonne per la tabella {table_name}")
        if not table_mapping.columns:
            raise MappingError(f"Mapping colonne vuoto per la tabella {table_name}")
        return {key.strip(): spec for key, spec in table_mapping.columns.items()}

    def get_column_map(self, table_name: str) -> Dict[str, str]:
        """Dict {colonna_excel: colonna_db} per una tabella."""
        return {key: spec.db_column for key, spec in self.get_table_mapping(table_name).items()}
