# storage_adapter.py
# Description: Uniform record lifecycle (ids, timestamps, sync/delete flags) over any StoreBackend.
#
# Imports
import json
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from tempo_data.app.core.DB_Management.backends import StoreBackend
from tempo_data.app.core.DB_Management.exceptions import ConstraintError, InputError
from tempo_data.app.core.DB_Management.migrations import MigrationManager, now_ms
from tempo_data.app.core.DB_Management.schema import SYSTEM_COLUMNS, ColumnType, TableSchema
from tempo_data.app.core.DB_Management.schemas import SCHEMA_REGISTRY
#
#######################################################################################################################
#
# Functions:

# Keeps IN (...) lists under SQLite's bound-parameter limit.
_ID_CHUNK_SIZE = 500


def _generate_uuid() -> str:
    return str(uuid.uuid4())


class StorageAdapter:
    """
    CRUD over the declared tables with system fields injected on every write.

    Application read paths (find_by_id, find_all, count) never return soft-deleted
    rows. find_unsynced, count_unsynced and the raw query paths do, so tombstones
    can be uploaded.
    """

    def __init__(self, backend: StoreBackend, registry: Optional[Mapping[str, TableSchema]] = None):
        self.backend = backend
        self.registry = registry if registry is not None else SCHEMA_REGISTRY
        self.migrations = MigrationManager(backend, self.registry)

    @property
    def platform(self) -> str:
        return self.backend.platform

    @property
    def table_names(self) -> List[str]:
        return list(self.registry.keys())

    async def initialize(self, apply_migrations: bool = True) -> int:
        """Opens the backend, converges the schema, then starts backend background work."""
        await self.backend.open()
        applied = 0
        if apply_migrations:
            applied = await self.migrations.apply_migrations()
        await self.backend.start_background_tasks()
        logger.info(f"Storage adapter ready on '{self.platform}' backend ({len(self.registry)} tables)")
        return applied

    async def close(self) -> None:
        await self.backend.close()

    # --- Helpers ---

    def get_schema(self, table: str) -> TableSchema:
        schema = self.registry.get(table)
        if schema is None:
            raise InputError(f"Unknown table: '{table}'")
        return schema

    @staticmethod
    def _check_column(schema: TableSchema, column: str) -> str:
        if not schema.has_column(column):
            raise InputError(f"Unknown column '{column}' for table '{schema.name}'")
        return column

    @staticmethod
    def _encode_value(schema: TableSchema, column: str, value: Any) -> Any:
        if value is None:
            return None
        type_name = schema.columns[column].type_name
        if type_name == ColumnType.BOOLEAN.value:
            return 1 if value else 0
        if type_name == ColumnType.JSONB.value and not isinstance(value, str):
            return json.dumps(value)
        return value

    @staticmethod
    def _decode_row(schema: TableSchema, row: Dict[str, Any]) -> Dict[str, Any]:
        for column, value in row.items():
            definition = schema.columns.get(column)
            if definition is None or value is None:
                continue
            if definition.type_name == ColumnType.BOOLEAN.value:
                row[column] = bool(value)
            elif definition.type_name == ColumnType.JSONB.value and isinstance(value, str):
                try:
                    row[column] = json.loads(value)
                except json.JSONDecodeError:
                    logger.warning(f"Column {schema.name}.{column} holds non-JSON text, returning it as-is")
        return row

    def _encode_all(self, schema: TableSchema, data: Mapping[str, Any]) -> Dict[str, Any]:
        return {column: self._encode_value(schema, column, value) for column, value in data.items()}

    def _where(self, schema: TableSchema, conditions: Optional[Mapping[str, Any]],
               include_deleted: bool = False) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if not include_deleted:
            clauses.append("deleted = 0")
        for column, value in (conditions or {}).items():
            self._check_column(schema, column)
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(self._encode_value(schema, column, value))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    async def _select(self, schema: TableSchema, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        rows = await self.backend.query(sql, params)
        return [self._decode_row(schema, row) for row in rows]

    async def _write(self, schema: TableSchema, sql: str, params: Sequence[Any], record_id: Any = None) -> int:
        try:
            return await self.backend.execute(sql, params)
        except ConstraintError as e:
            raise ConstraintError(str(e.args[0]) if e.args else str(e), table=schema.name, record_id=record_id) from e

    async def _insert_row(self, schema: TableSchema, row: Dict[str, Any]) -> None:
        columns = list(row.keys())
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {schema.name} ({', '.join(columns)}) VALUES ({placeholders})"
        await self._write(schema, sql, list(row.values()), record_id=row.get("id"))

    # --- Application CRUD ---

    async def insert(self, table: str, data: Mapping[str, Any]) -> str:
        """
        Inserts a new record and returns its generated id.

        System fields in `data` are ignored: id, created_at/updated_at, synced
        and deleted are always set here.

        Raises:
            InputError: Unknown table/column or a badly typed value.
            ConstraintError: Unique or not-null violation.
        """
        schema = self.get_schema(table)
        domain = {key: value for key, value in data.items() if key not in SYSTEM_COLUMNS}
        validated = schema.validate_record(domain)
        record_id = _generate_uuid()
        timestamp = now_ms()
        row = {
            "id": record_id,
            "created_at": timestamp,
            "updated_at": timestamp,
            "synced": 0,
            "deleted": 0,
        }
        row.update(self._encode_all(schema, validated))
        await self._insert_row(schema, row)
        logger.debug(f"Inserted {table} record {record_id}")
        return record_id

    async def update(self, table: str, record_id: str, data: Mapping[str, Any]) -> bool:
        """
        Applies `data` to the record, stamps updated_at and clears synced.

        Returns:
            True if a row matched `record_id`, False otherwise (not an error).
        """
        schema = self.get_schema(table)
        system_keys = sorted(set(data) & set(SYSTEM_COLUMNS))
        if system_keys:
            raise InputError(f"System field(s) {system_keys} cannot be updated directly on '{table}'")
        validated = self._encode_all(schema, schema.validate_record(data))
        assignments = [f"{column} = ?" for column in validated]
        assignments += ["updated_at = ?", "synced = 0"]
        params = list(validated.values()) + [now_ms(), record_id]
        sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ?"
        rowcount = await self._write(schema, sql, params, record_id=record_id)
        if rowcount == 0:
            logger.debug(f"Update on {table} matched no record with id {record_id}")
        return rowcount > 0

    async def delete(self, table: str, record_id: str) -> bool:
        """Soft delete. The row stays as an unsynced tombstone until it is uploaded."""
        schema = self.get_schema(table)
        rowcount = await self._write(
            schema,
            f"UPDATE {table} SET deleted = 1, synced = 0, updated_at = ? WHERE id = ?",
            (now_ms(), record_id),
            record_id=record_id,
        )
        return rowcount > 0

    async def find_by_id(self, table: str, record_id: str, *, include_deleted: bool = False) -> Optional[Dict[str, Any]]:
        schema = self.get_schema(table)
        sql = f"SELECT * FROM {table} WHERE id = ?"
        if not include_deleted:
            sql += " AND deleted = 0"
        rows = await self._select(schema, sql, (record_id,))
        return rows[0] if rows else None

    async def find_all(self, table: str, conditions: Optional[Mapping[str, Any]] = None, *,
                       order_by: Optional[str] = None, order_dir: str = "DESC",
                       limit: Optional[int] = None, offset: Optional[int] = None) -> List[Dict[str, Any]]:
        schema = self.get_schema(table)
        where, params = self._where(schema, conditions)
        order_column = self._check_column(schema, order_by or "created_at")
        direction = (order_dir or "DESC").upper()
        if direction not in ("ASC", "DESC"):
            raise InputError(f"Invalid order direction: {order_dir!r}")
        sql = f"SELECT * FROM {table}{where} ORDER BY {order_column} {direction}"
        if limit is not None or offset is not None:
            sql += " LIMIT ?"
            params.append(int(limit) if limit is not None else -1)
            if offset is not None:
                sql += " OFFSET ?"
                params.append(int(offset))
        return await self._select(schema, sql, params)

    async def count(self, table: str, conditions: Optional[Mapping[str, Any]] = None) -> int:
        schema = self.get_schema(table)
        where, params = self._where(schema, conditions)
        rows = await self.backend.query(f"SELECT COUNT(*) AS count FROM {table}{where}", params)
        return int(rows[0]["count"]) if rows else 0

    # --- Sync-facing primitives ---

    async def find_unsynced(self, table: str) -> List[Dict[str, Any]]:
        """All unsynced rows, tombstones included, oldest change first."""
        schema = self.get_schema(table)
        return await self._select(
            schema,
            f"SELECT * FROM {table} WHERE synced = 0 ORDER BY updated_at ASC, id ASC",
            (),
        )

    async def count_unsynced(self, table: str) -> int:
        self.get_schema(table)
        rows = await self.backend.query(f"SELECT COUNT(*) AS count FROM {table} WHERE synced = 0")
        return int(rows[0]["count"]) if rows else 0

    async def mark_as_synced(self, table: str, ids: Iterable[str]) -> int:
        schema = self.get_schema(table)
        id_list = list(ids)
        if not id_list:
            return 0
        updated = 0
        for start in range(0, len(id_list), _ID_CHUNK_SIZE):
            chunk = id_list[start:start + _ID_CHUNK_SIZE]
            placeholders = ", ".join("?" for _ in chunk)
            updated += await self._write(
                schema, f"UPDATE {table} SET synced = 1 WHERE id IN ({placeholders})", chunk
            )
        logger.debug(f"Marked {updated} {table} record(s) as synced")
        return updated

    def _remote_row(self, schema: TableSchema, record: Mapping[str, Any], for_insert: bool) -> Dict[str, Any]:
        """Keeps declared columns only and coerces domain values. System fields come from the remote."""
        unknown = [key for key in record if not schema.has_column(key)]
        if unknown:
            logger.debug(f"Ignoring undeclared remote field(s) {unknown} for '{schema.name}'")
        if not record.get("id"):
            raise InputError(f"Remote record for '{schema.name}' has no id")
        domain = {k: v for k, v in record.items() if schema.has_column(k) and k not in SYSTEM_COLUMNS}
        row: Dict[str, Any] = {k: record[k] for k in SYSTEM_COLUMNS if k in record}
        row.update(schema.validate_record(domain))
        row["synced"] = True
        row["deleted"] = bool(row.get("deleted") or False)
        # Null timestamps from the remote never overwrite local ones.
        for key in ("created_at", "updated_at"):
            if key in row and row[key] is None:
                del row[key]
        if for_insert and "created_at" not in row:
            row["created_at"] = row.get("updated_at")
        return self._encode_all(schema, row)

    async def insert_remote(self, table: str, record: Mapping[str, Any]) -> None:
        """Materialises a downloaded record, keeping its id, timestamps and delete flag."""
        schema = self.get_schema(table)
        await self._insert_row(schema, self._remote_row(schema, record, for_insert=True))

    async def overwrite_remote(self, table: str, record: Mapping[str, Any]) -> bool:
        """Replaces the local row's fields with the downloaded values and marks it synced."""
        schema = self.get_schema(table)
        row = self._remote_row(schema, record, for_insert=False)
        record_id = row.pop("id")
        assignments = ", ".join(f"{column} = ?" for column in row)
        params = list(row.values()) + [record_id]
        rowcount = await self._write(schema, f"UPDATE {table} SET {assignments} WHERE id = ?", params, record_id)
        return rowcount > 0

    # --- Raw access ---

    async def execute_raw(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Runs a statement that returns no rows. Returns the affected row count."""
        return await self.backend.execute(sql, params)

    async def query_raw(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Runs a read statement. Soft-deleted rows are not filtered."""
        return await self.backend.query(sql, params)

#
# End of storage_adapter.py
#######################################################################################################################
