"""
Record store interface.

A store exposes named tables through a small query builder modeled on the
hosted database client: ``store.table("spells").select("id, name").in_("name",
names)``, then ``await query.execute()``. Execution never raises for data
errors; it returns a ``StoreResult`` carrying either ``data`` or ``error``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger("dnd-archive")


REFERENCE_TABLES = ("spells", "magic_items", "feats")

CHARACTER_TABLES = (
    "characters",
    "character_skills",
    "character_spells",
    "character_features",
    "character_feats",
    "character_inventory",
    "character_currency",
    "character_senses",
    "character_class_specific",
)


class StoreError(Exception):
    """Raised when a store operation reports an error."""

    def __init__(self, message: str, table: str | None = None):
        super().__init__(message)
        self.table = table


class AuthError(Exception):
    """Raised when there is no authenticated user session."""
    pass


class StoreResult(BaseModel):
    """Outcome of one store query: rows on success, a message on failure."""

    data: Any = Field(default=None, description="Rows returned by the query")
    error: str | None = Field(default=None, description="Error message, if the query failed")

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def rows(self) -> list[dict]:
        if isinstance(self.data, list):
            return self.data
        if isinstance(self.data, dict):
            return [self.data]
        return []

    def raise_for_error(self, table: str | None = None) -> StoreResult:
        """Raise ``StoreError`` if the query failed, else return self."""
        if self.error is not None:
            raise StoreError(self.error, table)
        return self


@dataclass
class Query:
    """Chainable query against one table. Build it, then ``await execute()``."""

    store: RecordStore
    table_name: str
    action: str = "select"
    columns: str = "*"
    filters: list[tuple[str, str, Any]] = field(default_factory=list)
    payload: list[dict] | dict | None = None
    on_conflict: str | None = None

    def select(self, columns: str = "*") -> Query:
        self.action = "select"
        self.columns = columns
        return self

    def insert(self, rows: list[dict] | dict) -> Query:
        self.action = "insert"
        self.payload = rows
        return self

    def upsert(self, rows: list[dict] | dict, on_conflict: str = "id") -> Query:
        self.action = "upsert"
        self.payload = rows
        self.on_conflict = on_conflict
        return self

    def update(self, values: dict) -> Query:
        self.action = "update"
        self.payload = values
        return self

    def delete(self) -> Query:
        self.action = "delete"
        return self

    def eq(self, column: str, value: Any) -> Query:
        self.filters.append(("eq", column, value))
        return self

    def in_(self, column: str, values: list[Any]) -> Query:
        self.filters.append(("in", column, list(values)))
        return self

    @property
    def rows(self) -> list[dict]:
        """Payload as a list of rows."""
        if self.payload is None:
            return []
        return self.payload if isinstance(self.payload, list) else [self.payload]

    def matches(self, row: dict) -> bool:
        """Whether ``row`` passes every filter."""
        for op, column, value in self.filters:
            if op == "eq" and row.get(column) != value:
                return False
            if op == "in" and row.get(column) not in value:
                return False
        return True

    async def execute(self) -> StoreResult:
        try:
            return await self.store.execute(self)
        except StoreError as e:
            logger.error(f"Store error on {self.table_name} ({self.action}): {e}")
            return StoreResult(error=str(e))


class RecordStore(ABC):
    """A set of named tables reachable through ``Query`` objects."""

    def table(self, name: str) -> Query:
        return Query(store=self, table_name=name)

    @abstractmethod
    async def execute(self, query: Query) -> StoreResult:
        """Run ``query``. Implementations raise ``StoreError`` or return an error result."""


def project(row: dict, columns: str) -> dict:
    """Restrict ``row`` to a comma-separated column list (``*`` keeps everything)."""
    names = [c.strip() for c in columns.split(",") if c.strip()]
    if not names or "*" in names:
        return dict(row)
    return {name: row.get(name) for name in names}


class AuthUser(BaseModel):
    id: str
    email: str | None = None


class AuthSession(ABC):
    """Source of the currently authenticated user."""

    @abstractmethod
    async def get_user(self) -> AuthUser | None:
        """Current user, or None when nobody is signed in."""


class StaticAuthSession(AuthSession):
    """Session for an explicitly supplied user id (CLI ``--user-id``, tests)."""

    def __init__(self, user_id: str | None, email: str | None = None):
        self._user = AuthUser(id=user_id, email=email) if user_id else None

    async def get_user(self) -> AuthUser | None:
        return self._user
