"""
In-process record store, optionally persisted to JSON files.

Behaves like the hosted store for the operations the import pipeline uses,
including the unique ``name`` constraint on the reference tables, so the
pipeline can run and be tested without a network connection.
"""

import copy
import json
import logging
from pathlib import Path

import shortuuid

from .base import REFERENCE_TABLES, Query, RecordStore, StoreError, StoreResult, project

logger = logging.getLogger("dnd-archive")


def new_uuid() -> str:
    """Generate a new random 8-character UUID."""
    return shortuuid.random(length=8)


UNIQUE_COLUMNS: dict[str, tuple[str, ...]] = {table: ("name",) for table in REFERENCE_TABLES}


class InMemoryStore(RecordStore):
    """Tables held as lists of dicts."""

    def __init__(self, tables: dict[str, list[dict]] | None = None):
        self.tables: dict[str, list[dict]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }

    def rows(self, table: str) -> list[dict]:
        """Copy of every row in ``table``."""
        return copy.deepcopy(self.tables.get(table, []))

    async def execute(self, query: Query) -> StoreResult:
        handler = getattr(self, f"_{query.action}", None)
        if handler is None:
            raise StoreError(f"Unsupported action: {query.action}", query.table_name)
        if query.action == "select":
            return handler(query)

        # A failed write leaves the table as it was
        snapshot = copy.deepcopy(self.tables.get(query.table_name))
        try:
            result = handler(query)
            if result.ok:
                self._changed(query.table_name)
        except StoreError:
            self._restore(query.table_name, snapshot)
            raise
        if not result.ok:
            self._restore(query.table_name, snapshot)
        return result

    def _restore(self, table: str, rows: list[dict] | None) -> None:
        if rows is None:
            self.tables.pop(table, None)
        else:
            self.tables[table] = rows

    def _changed(self, table: str) -> None:
        """Hook called after every write."""

    def _table(self, name: str) -> list[dict]:
        return self.tables.setdefault(name, [])

    def _select(self, query: Query) -> StoreResult:
        rows = [project(row, query.columns) for row in self._table(query.table_name) if query.matches(row)]
        return StoreResult(data=copy.deepcopy(rows))

    def _check_unique(self, table: str, rows: list[dict], ignore: list[dict] = ()) -> str | None:
        existing = [row for row in self._table(table) if not any(row is other for other in ignore)]
        for column in UNIQUE_COLUMNS.get(table, ()):
            seen = {row.get(column) for row in existing}
            for row in rows:
                value = row.get(column)
                if value in seen:
                    return f'duplicate key value violates unique constraint "{table}_{column}_key"'
                seen.add(value)
        return None

    def _insert(self, query: Query) -> StoreResult:
        rows = [{"id": new_uuid(), **copy.deepcopy(row)} for row in query.rows]
        error = self._check_unique(query.table_name, rows)
        if error:
            return StoreResult(error=error)
        self._table(query.table_name).extend(rows)
        return StoreResult(data=copy.deepcopy(rows))

    def _upsert(self, query: Query) -> StoreResult:
        table = self._table(query.table_name)
        conflict = query.on_conflict or "id"
        written = []
        for row in query.rows:
            match = next(
                (existing for existing in table if conflict in row and existing.get(conflict) == row[conflict]),
                None,
            )
            if match is not None:
                match.update(copy.deepcopy(row))
                written.append(match)
            else:
                new_row = {"id": new_uuid(), **copy.deepcopy(row)}
                error = self._check_unique(query.table_name, [new_row])
                if error:
                    return StoreResult(error=error)
                table.append(new_row)
                written.append(new_row)
        return StoreResult(data=copy.deepcopy(written))

    def _update(self, query: Query) -> StoreResult:
        matched = [row for row in self._table(query.table_name) if query.matches(row)]
        values = query.payload if isinstance(query.payload, dict) else {}
        error = self._check_unique(query.table_name, [{**row, **values} for row in matched], ignore=matched)
        if error:
            return StoreResult(error=error)
        for row in matched:
            row.update(copy.deepcopy(values))
        return StoreResult(data=copy.deepcopy(matched))

    def _delete(self, query: Query) -> StoreResult:
        table = self._table(query.table_name)
        removed = [row for row in table if query.matches(row)]
        self.tables[query.table_name] = [row for row in table if not query.matches(row)]
        return StoreResult(data=removed)


class JsonFileStore(InMemoryStore):
    """``InMemoryStore`` that writes each table to ``<data_dir>/<table>.json``."""

    def __init__(self, data_dir: str | Path = "dnd_data"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"📂 Using local store at {self.data_dir.resolve()}")

        tables = {}
        for path in sorted(self.data_dir.glob("*.json")):
            try:
                with open(path, encoding="utf-8") as f:
                    tables[path.stem] = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise StoreError(f"Could not load table file {path.name}: {e}", path.stem) from e
        super().__init__(tables)

    def _changed(self, table: str) -> None:
        self._atomic_write(self.data_dir / f"{table}.json", self._table(table))

    def _atomic_write(self, file_path: Path, data: list) -> None:
        """Write data to file atomically (write to temp, then rename)."""
        temp_file = file_path.with_suffix(".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)
            temp_file.replace(file_path)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise StoreError(f"Error writing {file_path.name}: {e}", file_path.stem) from e
