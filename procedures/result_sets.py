"""
Classificazione dei result set restituiti dalle stored procedure.

Il tipo di un result set dipende solo dai nomi delle colonne:
- ErrorSet: contiene ErrorMessage (opzionali MySQLErrorCode / MySQLErrorMessage)
- StepLogSet: contiene StepID, OperationDescription, AffectedRows
- UnclassifiedSet: qualsiasi altra forma, loggata integralmente
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

ERROR_MESSAGE_COLUMN = "errormessage"
ERROR_CODE_COLUMNS = ("mysqlerrorcode", "errorcode")
ENGINE_MESSAGE_COLUMNS = ("mysqlerrormessage", "errordetail")
STEP_LOG_COLUMNS = ("stepid", "operationdescription", "affectedrows")


class ResultSetKind(str, Enum):
    ERROR = "error"
    STEP_LOG = "step_log"
    UNCLASSIFIED = "unclassified"


@dataclass
class RawResultSet:
    """Result set grezzo letto dal cursore."""

    index: int
    columns: List[str]
    rows: List[Tuple[Any, ...]] = field(default_factory=list)

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


@dataclass(frozen=True)
class ErrorEntry:
    message: str
    error_code: Optional[str] = None
    engine_message: Optional[str] = None

    def format_line(self) -> str:
        line = self.message
        if self.error_code or self.engine_message:
            line += f" (MySQL {self.error_code or '?'}: {self.engine_message or '-'})"
        return line


@dataclass(frozen=True)
class StepLogEntry:
    step_id: str
    description: str
    affected_rows: int

    def format_line(self) -> str:
        return f"{self.step_id:>4}  {self.description:<50} {self.affected_rows:>10,} righe"


@dataclass(frozen=True)
class ErrorSet:
    index: int
    entries: Tuple[ErrorEntry, ...]
    kind: ResultSetKind = ResultSetKind.ERROR


@dataclass(frozen=True)
class StepLogSet:
    index: int
    entries: Tuple[StepLogEntry, ...]
    kind: ResultSetKind = ResultSetKind.STEP_LOG

    @property
    def total_affected(self) -> int:
        return sum(e.affected_rows for e in self.entries)


@dataclass(frozen=True)
class UnclassifiedSet:
    index: int
    columns: Tuple[str, ...]
    rows: Tuple[Tuple[Any, ...], ...]
    kind: ResultSetKind = ResultSetKind.UNCLASSIFIED

    def format_rows(self) -> List[str]:
        return [
            ", ".join(f"{col}={_text(value)}" for col, value in zip(self.columns, row))
            for row in self.rows
        ]

    def value_texts(self) -> List[str]:
        """Testo delle sole celle, senza nomi colonna."""
        return [_text(value) for row in self.rows for value in row if value is not None]


InterpretedResultSet = Union[ErrorSet, StepLogSet, UnclassifiedSet]


def _normalize(name: Any) -> str:
    return str(name or "").strip().replace("_", "").replace(" ", "").lower()


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _to_int(value: Any) -> int:
    try:
        return int(float(_text(value).replace(",", "").strip() or 0))
    except ValueError:
        return 0


def classify_columns(columns: Sequence[str]) -> ResultSetKind:
    """
    Decide il tipo di result set dai soli nomi colonna (case-insensitive).

    Un ErrorMessage prevale sempre sulla terna dei log di step.
    """
    normalized = {_normalize(c) for c in columns}
    if ERROR_MESSAGE_COLUMN in normalized:
        return ResultSetKind.ERROR
    if all(c in normalized for c in STEP_LOG_COLUMNS):
        return ResultSetKind.STEP_LOG
    return ResultSetKind.UNCLASSIFIED


def _column_positions(columns: Sequence[str]) -> Dict[str, int]:
    positions: Dict[str, int] = {}
    for i, col in enumerate(columns):
        positions.setdefault(_normalize(col), i)
    return positions


def _pick(row: Sequence[Any], positions: Dict[str, int], *names: str) -> Optional[Any]:
    for name in names:
        if name in positions:
            return row[positions[name]]
    return None


def interpret_result_set(raw: RawResultSet) -> InterpretedResultSet:
    """Converte un result set grezzo nella variante tipizzata."""
    kind = classify_columns(raw.columns)
    positions = _column_positions(raw.columns)

    if kind is ResultSetKind.ERROR:
        entries = []
        for row in raw.rows:
            code = _pick(row, positions, *ERROR_CODE_COLUMNS)
            engine_message = _pick(row, positions, *ENGINE_MESSAGE_COLUMNS)
            entries.append(ErrorEntry(
                message=_text(_pick(row, positions, ERROR_MESSAGE_COLUMN)).strip(),
                error_code=_text(code).strip() or None,
                engine_message=_text(engine_message).strip() or None,
            ))
        return ErrorSet(index=raw.index, entries=tuple(entries))

    if kind is ResultSetKind.STEP_LOG:
        entries = [
            StepLogEntry(
                step_id=_text(_pick(row, positions, "stepid")).strip(),
                description=_text(_pick(row, positions, "operationdescription")).strip(),
                affected_rows=_to_int(_pick(row, positions, "affectedrows")),
            )
            for row in raw.rows
        ]
        return StepLogSet(index=raw.index, entries=tuple(entries))

    return UnclassifiedSet(
        index=raw.index,
        columns=tuple(str(c) for c in raw.columns),
        rows=tuple(tuple(row) for row in raw.rows),
    )
