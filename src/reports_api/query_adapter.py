"""
Generic query adapter.

Each endpoint is described by an `Operation`: the statement it targets, the
typed parameters it binds from the validated request, and how the returned
rows are shaped into the response. `run()` applies the common pattern:
bind -> acquire -> execute -> shape, mapping driver errors to ServiceErrors.

Request validation happens before `run()` is called (pydantic models in
schemas.py), so a rejected request never touches the database.
"""
import datetime as dt
import decimal
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import psycopg2
from psycopg2 import sql

from src.reports_api import db
from src.reports_api.config import get_settings
from src.reports_api.errors import NotFound, ValidationError, classify_db_error
from src.reports_api.logging_config import get_logger

logger = get_logger(__name__)


# =========================
# SQL parameter types
# =========================

class SqlType:
    """Base for typed parameter bindings."""

    cast = "text"

    def coerce(self, name: str, value: Any) -> Any:
        return value


class VarChar(SqlType):
    def __init__(self, length: int) -> None:
        self.length = length
        self.cast = f"varchar({length})"

    def coerce(self, name: str, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value)
        if len(text) > self.length:
            raise ValidationError(f"{name}: must be at most {self.length} characters")
        return text


class NVarChar(SqlType):
    cast = "text"

    def coerce(self, name: str, value: Any) -> Optional[str]:
        return None if value is None else str(value)


class Numeric(SqlType):
    def __init__(self, precision: int = 18, scale: int = 2) -> None:
        self.precision = precision
        self.scale = scale
        self.cast = f"numeric({precision},{scale})"

    def coerce(self, name: str, value: Any) -> Optional[decimal.Decimal]:
        if value is None:
            return None
        try:
            number = decimal.Decimal(str(value))
        except decimal.InvalidOperation:
            raise ValidationError(f"{name}: must be a number")
        if not number.is_finite():
            raise ValidationError(f"{name}: must be a number")
        return number.quantize(decimal.Decimal(1).scaleb(-self.scale), rounding=decimal.ROUND_HALF_UP)


class Date(SqlType):
    cast = "date"

    def coerce(self, name: str, value: Any) -> Optional[dt.date]:
        if value is None or isinstance(value, dt.date):
            return value
        try:
            return dt.date.fromisoformat(str(value))
        except ValueError:
            raise ValidationError(f"{name}: must be a date (YYYY-MM-DD)")


class Int(SqlType):
    cast = "integer"

    def coerce(self, name: str, value: Any) -> Optional[int]:
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{name}: must be an integer")


@dataclass(frozen=True)
class Param:
    """A named, typed parameter read from attribute `source` of the request."""

    name: str
    sql_type: SqlType
    source: Optional[str] = None

    def bind(self, request: Any) -> Any:
        source = self.source or self.name
        if isinstance(request, Mapping):
            value = request.get(source)
        else:
            value = getattr(request, source)
        return self.sql_type.coerce(self.name, value)


# =========================
# Targets
# =========================

@dataclass(frozen=True)
class Query:
    """A literal statement using %(name)s placeholders."""

    text: str

    def render(self, params: Sequence[Param]) -> Any:
        return self.text


@dataclass(frozen=True)
class Procedure:
    """A stored routine called with named, type-cast arguments."""

    name: str

    def render(self, params: Sequence[Param]) -> Any:
        args = [
            sql.SQL("{} => {}::{}").format(
                sql.Identifier(p.name),
                sql.Placeholder(p.name),
                sql.SQL(p.sql_type.cast),
            )
            for p in params
        ]
        return sql.SQL("SELECT * FROM {}({})").format(
            sql.Identifier(*self.name.split(".")),
            sql.SQL(", ").join(args),
        )


Shaper = Callable[[List[Dict[str, Any]], int], Any]


# =========================
# Result shapers
# =========================

def as_rows(key: Optional[str] = None, drop: Sequence[str] = ()) -> Shaper:
    """Pass rows through, optionally removing sensitive columns and wrapping them under `key`."""
    dropped = set(drop)

    def shape(rows: List[Dict[str, Any]], rowcount: int) -> Any:
        if dropped:
            rows = [{k: v for k, v in r.items() if k not in dropped} for r in rows]
        return {key: rows} if key else rows

    return shape


def as_column(column: str, key: str) -> Shaper:
    """Project the rows to a list of scalar values."""

    def shape(rows: List[Dict[str, Any]], rowcount: int) -> Any:
        return {key: [r.get(column) for r in rows]}

    return shape


def as_renamed(mapping: Mapping[str, str], key: str) -> Shaper:
    """Project each row to `mapping`'s columns under new names."""

    def shape(rows: List[Dict[str, Any]], rowcount: int) -> Any:
        return {key: [{new: r.get(old) for old, new in mapping.items()} for r in rows]}

    return shape


def as_record(key: str, missing: str, drop: Sequence[str] = ()) -> Shaper:
    """First row under `key`, or 404 with `missing` when there is none."""

    def shape(rows: List[Dict[str, Any]], rowcount: int) -> Any:
        if not rows:
            raise NotFound(missing)
        record = {k: v for k, v in rows[0].items() if k not in drop}
        return {"success": True, key: record}

    return shape


def as_envelope(message: str) -> Shaper:
    def shape(rows: List[Dict[str, Any]], rowcount: int) -> Any:
        return {"success": True, "message": message, "data": rows, "count": len(rows)}

    return shape


def as_status(message: str) -> Shaper:
    def shape(rows: List[Dict[str, Any]], rowcount: int) -> Any:
        return {"success": True, "message": message, "rowsAffected": max(rowcount, 0)}

    return shape


# =========================
# Operation
# =========================

@dataclass(frozen=True)
class Operation:
    name: str
    target: Union[Query, Procedure]
    params: Tuple[Param, ...] = field(default_factory=tuple)
    shape: Shaper = field(default_factory=as_rows)

    def bind(self, request: Any = None) -> Dict[str, Any]:
        """Coerce each parameter from the request. Pure, no I/O."""
        if self.params and request is None:
            raise ValidationError(f"{self.name}: request body is required")
        return {p.name: p.bind(request) for p in self.params}


# PUBLIC_INTERFACE
def run(operation: Operation, request: Any = None) -> Any:
    """Execute `operation` for a validated request and return the shaped payload."""
    params = operation.bind(request)
    statement = operation.target.render(operation.params)
    try:
        result = db.execute(statement, params)
    except psycopg2.Error as exc:
        raise classify_db_error(exc, operation.name, expose=get_settings().expose_db_errors) from exc
    logger.debug("%s returned %d row(s)", operation.name, len(result.rows))
    return operation.shape(result.rows, result.rowcount)
