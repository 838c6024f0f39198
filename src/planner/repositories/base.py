"""
Generic, owner-scoped CRUD base shared by every entity service.

A concrete service names its table, its pydantic DTOs and its row mapping,
and overrides the hooks it needs (filters, enrichment, validation,
cascades).  The base class supplies the operations themselves:

- ``find_all`` / ``count``: entity predicate, owner restriction first
- ``find_by_id``: primary-key lookup, deliberately without an owner check
- ``create``: validate, insert, run follow-up writes, return the enriched row
- ``update``: ownership probe, validate, apply only the supplied fields
- ``delete``: ownership probe, entity-specific cascade, remove the row

Every write runs inside one transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Generic, Iterator, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..context import ServiceContext
from ..db import Database, new_id, to_db, utcnow
from ..errors import AuthorizationError, ValidationError
from ..settings import Settings
from .filters import WhereBuilder

E = TypeVar("E")
C = TypeVar("C", bound=BaseModel)
U = TypeVar("U", bound=BaseModel)
F = TypeVar("F", bound=BaseModel)
M = TypeVar("M", bound=BaseModel)


def db_value(value: Any) -> Any:
    """Convert a python value into what the sqlite columns store."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, datetime):
        return to_db(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _error_message(error: Dict[str, Any]) -> str:
    msg = str(error.get("msg", "Invalid input"))
    if msg.startswith("Value error, "):
        return msg[len("Value error, "):]
    loc = ".".join(str(p) for p in error.get("loc", ()))
    return f"{loc}: {msg}" if loc else msg


# PUBLIC_INTERFACE
class EntityService(ABC, Generic[E, C, U, F]):
    """Owner-scoped CRUD over one table, parametrized by entity and DTO types."""

    table_name: ClassVar[str]
    entity_name: ClassVar[str]
    create_model: ClassVar[Type[BaseModel]]
    update_model: ClassVar[Type[BaseModel]]
    filter_model: ClassVar[Type[BaseModel]]

    # None marks a shared, non user-scoped entity.
    owner_column: ClassVar[Optional[str]] = "user_id"
    default_order: ClassVar[str] = "ORDER BY created_at DESC, id ASC"
    # DTO field name -> column name, where they differ.
    column_map: ClassVar[Dict[str, str]] = {}
    # Update fields that may be set to NULL; None is ignored for the rest.
    nullable_fields: ClassVar[FrozenSet[str]] = frozenset()
    has_updated_at: ClassVar[bool] = True
    # False when ownership is derived through a parent row rather than stored.
    stores_owner: ClassVar[bool] = True

    def __init__(self, db: Database, settings: Optional[Settings] = None) -> None:
        self.db = db
        self.settings = settings or Settings()
        self._logger = logging.getLogger(type(self).__module__)

    # ------------------------------------------------------------ hooks

    @abstractmethod
    def row_to_entity(self, row: sqlite3.Row) -> E:
        """Map a stored row onto the entity shape."""

    @abstractmethod
    def to_insert(self, conn: sqlite3.Connection, data: C, ctx: Optional[ServiceContext]) -> Dict[str, Any]:
        """Return the column values for a new row."""

    def apply_filters(self, where: WhereBuilder, filters: F, ctx: Optional[ServiceContext]) -> None:
        return None

    def order_by(self, filters: F) -> str:
        return self.default_order

    def page(self, filters: F) -> Tuple[str, List[Any]]:
        return "", []

    def enrich(self, conn: sqlite3.Connection, entities: List[E], ctx: Optional[ServiceContext]) -> List[E]:
        return entities

    def validate_create(self, conn: sqlite3.Connection, data: C, ctx: Optional[ServiceContext]) -> None:
        return None

    def after_insert(self, conn: sqlite3.Connection, entity_id: str, data: C, ctx: Optional[ServiceContext]) -> None:
        return None

    def validate_update(
        self, conn: sqlite3.Connection, current: sqlite3.Row, data: U, ctx: Optional[ServiceContext]
    ) -> None:
        return None

    def to_changes(
        self, conn: sqlite3.Connection, current: sqlite3.Row, data: U, ctx: Optional[ServiceContext]
    ) -> Dict[str, Any]:
        return self.field_changes(data)

    def field_changes(self, data: BaseModel) -> Dict[str, Any]:
        """Column values for the fields present in ``data``."""
        changes: Dict[str, Any] = {}
        for field in data.model_fields_set:
            value = getattr(data, field)
            if value is None and field not in self.nullable_fields:
                continue
            changes[self.column_map.get(field, field)] = db_value(value)
        return changes

    def before_delete(self, conn: sqlite3.Connection, current: sqlite3.Row, ctx: Optional[ServiceContext]) -> None:
        return None

    def after_write(self, ctx: Optional[ServiceContext]) -> None:
        """Runs after a committed create, update or delete."""
        return None

    # ------------------------------------------------------------ ownership

    @property
    def is_owned(self) -> bool:
        return self.owner_column is not None

    def owner_clause(self) -> str:
        return f"{self.owner_column} = ?"

    def owner_probe_sql(self) -> str:
        return f"SELECT {self.owner_column} AS owner_id FROM {self.table_name} WHERE id = ?"

    def require_user(self, ctx: Optional[ServiceContext]) -> str:
        if ctx is None or not ctx.user_id:
            raise AuthorizationError("User ID required")
        return ctx.user_id

    def check_ownership(self, conn: sqlite3.Connection, entity_id: str, user_id: str) -> bool:
        row = conn.execute(self.owner_probe_sql(), (entity_id,)).fetchone()
        return row is not None and row["owner_id"] == user_id

    def _load_for_write(
        self, conn: sqlite3.Connection, entity_id: str, ctx: Optional[ServiceContext]
    ) -> Optional[sqlite3.Row]:
        if self.is_owned:
            user_id = self.require_user(ctx)
            # Missing and foreign rows are reported the same way.
            if not self.check_ownership(conn, entity_id, user_id):
                raise AuthorizationError(f"{self.entity_name} not found or access denied")
        return conn.execute(f"SELECT * FROM {self.table_name} WHERE id = ?", (entity_id,)).fetchone()

    # ------------------------------------------------------------ helpers

    def coerce(self, model: Type[M], data: Any) -> M:
        """Turn caller input into ``model``; pydantic failures become ValidationError."""
        if isinstance(data, model):
            return data
        if data is None:
            data = {}
        elif isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        try:
            return model.model_validate(data)
        except PydanticValidationError as exc:
            errors = [
                {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg"), "type": e.get("type")}
                for e in exc.errors()
            ]
            raise ValidationError(_error_message(errors[0]), details={"errors": errors}) from exc

    def build_where(self, filters: F, ctx: Optional[ServiceContext]) -> WhereBuilder:
        if self.is_owned:
            where = WhereBuilder(self.owner_clause(), self.require_user(ctx))
        else:
            where = WhereBuilder()
        self.apply_filters(where, filters, ctx)
        return where

    def select(self, conn: sqlite3.Connection, filters: F, ctx: Optional[ServiceContext]) -> List[E]:
        where_sql, params = self.build_where(filters, ctx).build()
        page_sql, page_params = self.page(filters)
        rows = conn.execute(
            f"SELECT * FROM {self.table_name} {where_sql} {self.order_by(filters)} {page_sql}",
            [*params, *page_params],
        ).fetchall()
        return self.enrich(conn, [self.row_to_entity(r) for r in rows], ctx)

    def fetch_one(self, conn: sqlite3.Connection, entity_id: str, ctx: Optional[ServiceContext]) -> Optional[E]:
        row = conn.execute(f"SELECT * FROM {self.table_name} WHERE id = ?", (entity_id,)).fetchone()
        if row is None:
            return None
        return self.enrich(conn, [self.row_to_entity(row)], ctx)[0]

    def insert_row(self, conn: sqlite3.Connection, values: Dict[str, Any]) -> None:
        columns = list(values)
        conn.execute(
            f"INSERT INTO {self.table_name} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            [values[c] for c in columns],
        )

    def update_row(self, conn: sqlite3.Connection, entity_id: str, changes: Dict[str, Any]) -> None:
        assignments = ", ".join(f"{c} = ?" for c in changes)
        conn.execute(
            f"UPDATE {self.table_name} SET {assignments} WHERE id = ?",
            [*changes.values(), entity_id],
        )

    def timestamps(self) -> Dict[str, Any]:
        now = to_db(utcnow())
        if self.has_updated_at:
            return {"created_at": now, "updated_at": now}
        return {"created_at": now}

    # ------------------------------------------------------------ logging

    def _log(self, operation: str, ctx: Optional[ServiceContext], level: int = logging.INFO, **fields: Any) -> None:
        if not self.settings.enable_service_logging:
            return
        payload = {
            "service": type(self).__name__,
            "entity": self.entity_name,
            "operation": operation,
            "userId": ctx.user_id if ctx else None,
            "requestId": ctx.request_id if ctx else None,
            **fields,
        }
        self._logger.log(level, "[SERVICE] %s", json.dumps(payload, default=str))

    @contextmanager
    def logged(self, operation: str, ctx: Optional[ServiceContext], **fields: Any) -> Iterator[None]:
        """Log ``operation``; on failure log ``<operation>:error`` and re-raise."""
        self._log(operation, ctx, **fields)
        try:
            yield
        except Exception as exc:
            self._log(f"{operation}:error", ctx, level=logging.WARNING, error=str(exc), **fields)
            raise

    # ------------------------------------------------------------ operations

    # PUBLIC_INTERFACE
    def find_all(self, filters: Any = None, ctx: Optional[ServiceContext] = None) -> List[E]:
        """Return the caller's entities matching ``filters`` in the entity's order."""
        parsed: F = self.coerce(self.filter_model, filters)  # type: ignore[assignment]
        with self.logged("find_all", ctx, filters=parsed.model_dump(exclude_none=True)):
            with self.db.connect() as conn:
                return self.select(conn, parsed, ctx)

    # PUBLIC_INTERFACE
    def find_by_id(self, entity_id: str, ctx: Optional[ServiceContext] = None) -> Optional[E]:
        """
        Primary-key lookup. No ownership filter is applied here; writes are
        scoped, reads by id are not.
        """
        with self.logged("find_by_id", ctx, id=entity_id):
            with self.db.connect() as conn:
                return self.fetch_one(conn, entity_id, ctx)

    # PUBLIC_INTERFACE
    def create(self, data: Any, ctx: Optional[ServiceContext] = None) -> E:
        payload: C = self.coerce(self.create_model, data)  # type: ignore[assignment]
        with self.logged("create", ctx):
            if self.is_owned:
                self.require_user(ctx)
            with self.db.transaction() as conn:
                self.validate_create(conn, payload, ctx)
                values = {"id": new_id(), **self.to_insert(conn, payload, ctx), **self.timestamps()}
                if self.is_owned and self.stores_owner:
                    values[self.owner_column] = ctx.user_id  # type: ignore[union-attr,index]
                self.insert_row(conn, values)
                self.after_insert(conn, values["id"], payload, ctx)
                entity = self.fetch_one(conn, values["id"], ctx)
            self.after_write(ctx)
            self._log("create:success", ctx, id=values["id"])
            return entity  # type: ignore[return-value]

    # PUBLIC_INTERFACE
    def update(self, entity_id: str, data: Any, ctx: Optional[ServiceContext] = None) -> Optional[E]:
        """
        Apply the fields present in ``data``. Owned entities raise
        AuthorizationError when the row is missing or belongs to someone else;
        shared entities return None when the row is missing.
        """
        payload: U = self.coerce(self.update_model, data)  # type: ignore[assignment]
        with self.logged("update", ctx, id=entity_id, fields=sorted(payload.model_fields_set)):
            with self.db.transaction() as conn:
                current = self._load_for_write(conn, entity_id, ctx)
                if current is None:
                    return None
                self.validate_update(conn, current, payload, ctx)
                changes = self.to_changes(conn, current, payload, ctx)
                if changes:
                    if self.has_updated_at:
                        changes["updated_at"] = to_db(utcnow())
                    self.update_row(conn, entity_id, changes)
                entity = self.fetch_one(conn, entity_id, ctx)
            self.after_write(ctx)
            return entity

    # PUBLIC_INTERFACE
    def delete(self, entity_id: str, ctx: Optional[ServiceContext] = None) -> bool:
        with self.logged("delete", ctx, id=entity_id):
            with self.db.transaction() as conn:
                current = self._load_for_write(conn, entity_id, ctx)
                if current is None:
                    return False
                self.before_delete(conn, current, ctx)
                deleted = conn.execute(f"DELETE FROM {self.table_name} WHERE id = ?", (entity_id,)).rowcount > 0
            self.after_write(ctx)
            return deleted

    # PUBLIC_INTERFACE
    def count(self, filters: Any = None, ctx: Optional[ServiceContext] = None) -> int:
        parsed: F = self.coerce(self.filter_model, filters)  # type: ignore[assignment]
        where_sql, params = self.build_where(parsed, ctx).build()
        with self.db.connect() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {self.table_name} {where_sql}", params).fetchone()
            return int(row["cnt"]) if row else 0

    # PUBLIC_INTERFACE
    def exists(self, entity_id: str, ctx: Optional[ServiceContext] = None) -> bool:
        """True when the row exists and, for owned entities, belongs to the caller."""
        with self.db.connect() as conn:
            if self.is_owned:
                return self.check_ownership(conn, entity_id, self.require_user(ctx))
            row = conn.execute(f"SELECT 1 FROM {self.table_name} WHERE id = ?", (entity_id,)).fetchone()
            return row is not None
