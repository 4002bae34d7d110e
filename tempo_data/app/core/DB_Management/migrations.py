# migrations.py
# Description: Additive schema migration engine. Converges a live store toward the declared schema registry.
#
"""
Migration Engine
================

`MigrationManager.apply_migrations()` walks the registry in order and, per table:

1. creates the table when it is missing (``CREATE_TABLE``),
2. adds every declared column the live table lacks (``ADD_COLUMN:<name>``),
3. creates every declared index the live table lacks (``CREATE_INDEX:<name>``).

Each applied change is appended to the ``_migrations`` log. Nothing is ever
dropped, renamed or retyped, so running it on every startup is safe. The live
store's introspected schema is the source of truth; the log is audit only.
"""
#
# Imports
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Set
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from tempo_data.app.core.DB_Management.backends import StoreBackend
from tempo_data.app.core.DB_Management.exceptions import (
    DatabaseError,
    SchemaError,
    SchemaObjectExistsError,
)
from tempo_data.app.core.DB_Management.schema import (
    ColumnDefinition,
    IndexDefinition,
    TableSchema,
    validate_identifier,
)
from tempo_data.app.core.DB_Management.schemas import SCHEMA_REGISTRY
#
#######################################################################################################################
#
# Functions:

MIGRATIONS_TABLE = "_migrations"
MIGRATION_VERSION = 1

_CREATE_MIGRATIONS_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
  id         INTEGER PRIMARY KEY AUTOINCREMENT,
  version    INTEGER NOT NULL,
  table_name TEXT    NOT NULL,
  operation  TEXT    NOT NULL,
  applied_at INTEGER NOT NULL
)
"""


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class MigrationRecord:
    id: int
    version: int
    table_name: str
    operation: str
    applied_at: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MigrationRecord":
        return cls(
            id=row["id"],
            version=row["version"],
            table_name=row["table_name"],
            operation=row["operation"],
            applied_at=row["applied_at"],
        )


def format_default(value: Any) -> Optional[str]:
    """SQL literal for a column default, or None when there is no default."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    text = str(value).replace("'", "''")
    return f"'{text}'"


def column_sql(name: str, column: ColumnDefinition) -> str:
    validate_identifier(name, "column")
    parts = [name, column.physical_type]
    if column.primary_key:
        parts.append("PRIMARY KEY")
        if column.auto_increment:
            parts.append("AUTOINCREMENT")
    if column.not_null:
        parts.append("NOT NULL")
    if column.unique:
        parts.append("UNIQUE")
    default = format_default(column.default)
    if default is not None:
        parts.append(f"DEFAULT {default}")
    return " ".join(parts)


def build_create_table_sql(schema: TableSchema) -> str:
    validate_identifier(schema.name, "table")
    columns = ",\n  ".join(column_sql(name, column) for name, column in schema.columns.items())
    return f"CREATE TABLE {schema.name} (\n  {columns}\n)"


def build_add_column_sql(table_name: str, name: str, column: ColumnDefinition) -> str:
    # ADD COLUMN cannot carry PRIMARY KEY/UNIQUE, and NOT NULL needs a non-null default.
    validate_identifier(table_name, "table")
    validate_identifier(name, "column")
    dropped = []
    if column.primary_key:
        dropped.append("PRIMARY KEY")
    if column.auto_increment:
        dropped.append("AUTOINCREMENT")
    if column.unique:
        dropped.append("UNIQUE")
    parts = [name, column.physical_type]
    default = format_default(column.default)
    if column.not_null:
        if default is not None:
            parts.append("NOT NULL")
        else:
            dropped.append("NOT NULL")
    if default is not None:
        parts.append(f"DEFAULT {default}")
    if dropped:
        logger.warning(
            f"Column {table_name}.{name} added without {', '.join(dropped)}: not supported by ADD COLUMN"
        )
    return f"ALTER TABLE {table_name} ADD COLUMN {' '.join(parts)}"


def build_create_index_sql(table_name: str, index: IndexDefinition) -> str:
    validate_identifier(table_name, "table")
    validate_identifier(index.name, "index")
    columns = ", ".join(validate_identifier(col, "column") for col in index.columns)
    unique = "UNIQUE " if index.unique else ""
    return f"CREATE {unique}INDEX IF NOT EXISTS {index.name} ON {table_name} ({columns})"


class MigrationManager:
    """Applies additive migrations for every table in a registry against one backend."""

    def __init__(self, backend: StoreBackend, registry: Optional[Mapping[str, TableSchema]] = None):
        self.backend = backend
        self.registry = registry if registry is not None else SCHEMA_REGISTRY

    async def initialize_migration_table(self) -> None:
        try:
            await self.backend.execute(_CREATE_MIGRATIONS_TABLE_SQL)
        except DatabaseError as e:
            raise SchemaError(f"Could not create {MIGRATIONS_TABLE} table: {e}") from e

    async def table_exists(self, table_name: str) -> bool:
        rows = await self.backend.query(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?", (table_name,)
        )
        return bool(rows)

    async def get_table_columns(self, table_name: str) -> Set[str]:
        validate_identifier(table_name, "table")
        rows = await self.backend.query(f"PRAGMA table_info({table_name})")
        return {row["name"] for row in rows}

    async def get_table_indexes(self, table_name: str) -> Set[str]:
        rows = await self.backend.query(
            "SELECT name FROM sqlite_master WHERE type='index' AND tbl_name = ?", (table_name,)
        )
        return {row["name"] for row in rows}

    async def _record(self, table_name: str, operation: str) -> None:
        await self.backend.execute(
            f"INSERT INTO {MIGRATIONS_TABLE} (version, table_name, operation, applied_at) VALUES (?, ?, ?, ?)",
            (MIGRATION_VERSION, table_name, operation, now_ms()),
        )

    async def _create_table(self, schema: TableSchema) -> int:
        if await self.table_exists(schema.name):
            return 0
        try:
            await self.backend.execute(build_create_table_sql(schema))
        except SchemaObjectExistsError as e:
            logger.warning(f"Table '{schema.name}' already present, skipping: {e}")
            return 0
        except DatabaseError as e:
            raise SchemaError(f"Failed to create table '{schema.name}': {e}") from e
        await self._record(schema.name, "CREATE_TABLE")
        logger.info(f"Created table '{schema.name}'")
        return 1

    async def _add_missing_columns(self, schema: TableSchema) -> int:
        existing = await self.get_table_columns(schema.name)
        applied = 0
        for name, column in schema.columns.items():
            if name in existing:
                continue
            try:
                await self.backend.execute(build_add_column_sql(schema.name, name, column))
            except SchemaObjectExistsError as e:
                # Another initializer got there first.
                logger.warning(f"Column {schema.name}.{name} already present, skipping: {e}")
                continue
            except DatabaseError as e:
                raise SchemaError(f"Failed to add column {schema.name}.{name}: {e}") from e
            await self._record(schema.name, f"ADD_COLUMN:{name}")
            logger.info(f"Added column {schema.name}.{name}")
            applied += 1
        return applied

    async def _create_missing_indexes(self, schema: TableSchema) -> int:
        if not schema.indexes:
            return 0
        existing = await self.get_table_indexes(schema.name)
        applied = 0
        for index in schema.indexes:
            if index.name in existing:
                continue
            try:
                await self.backend.execute(build_create_index_sql(schema.name, index))
            except DatabaseError as e:
                raise SchemaError(f"Failed to create index '{index.name}' on '{schema.name}': {e}") from e
            await self._record(schema.name, f"CREATE_INDEX:{index.name}")
            logger.info(f"Created index '{index.name}' on '{schema.name}'")
            applied += 1
        return applied

    async def apply_migrations(self) -> int:
        """
        Brings the store in line with the registry.

        Returns:
            Number of structural changes applied (0 when already converged).

        Raises:
            SchemaError: A create/add/index statement failed for a reason other
                than the object already existing.
        """
        await self.initialize_migration_table()
        applied = 0
        for schema in self.registry.values():
            applied += await self._create_table(schema)
            applied += await self._add_missing_columns(schema)
            applied += await self._create_missing_indexes(schema)
        if applied:
            logger.info(f"Applied {applied} migration step(s) across {len(self.registry)} table(s)")
        else:
            logger.debug("Schema already up to date")
        return applied

    async def get_applied_migrations(self, table_name: Optional[str] = None) -> List[MigrationRecord]:
        sql = f"SELECT id, version, table_name, operation, applied_at FROM {MIGRATIONS_TABLE}"
        params: List[Any] = []
        if table_name is not None:
            sql += " WHERE table_name = ?"
            params.append(table_name)
        sql += " ORDER BY id ASC"
        rows = await self.backend.query(sql, params)
        return [MigrationRecord.from_row(row) for row in rows]

#
# End of migrations.py
#######################################################################################################################
