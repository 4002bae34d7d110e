# repository.py
# Description: Per-table convenience wrapper around the StorageAdapter.
#
# Imports
from typing import Any, Dict, List, Mapping, Optional, Sequence
#
# Local Imports
from tempo_data.app.core.DB_Management.storage_adapter import StorageAdapter
#
#######################################################################################################################
#
# Classes:


class Repository:
    """Binds a StorageAdapter to a single table."""

    def __init__(self, adapter: StorageAdapter, table: str):
        adapter.get_schema(table)
        self.adapter = adapter
        self.table = table

    @property
    def schema(self):
        return self.adapter.get_schema(self.table)

    async def create(self, data: Mapping[str, Any]) -> str:
        return await self.adapter.insert(self.table, data)

    async def update(self, record_id: str, data: Mapping[str, Any]) -> bool:
        return await self.adapter.update(self.table, record_id, data)

    async def delete(self, record_id: str) -> bool:
        return await self.adapter.delete(self.table, record_id)

    async def find_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        return await self.adapter.find_by_id(self.table, record_id)

    async def find_all(self, conditions: Optional[Mapping[str, Any]] = None, **options) -> List[Dict[str, Any]]:
        """Options: order_by, order_dir, limit, offset (see StorageAdapter.find_all)."""
        return await self.adapter.find_all(self.table, conditions, **options)

    async def find_one(self, conditions: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        rows = await self.adapter.find_all(self.table, conditions, limit=1)
        return rows[0] if rows else None

    async def count(self, conditions: Optional[Mapping[str, Any]] = None) -> int:
        return await self.adapter.count(self.table, conditions)

    async def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        return await self.adapter.query_raw(sql, params)

#
# End of repository.py
#######################################################################################################################
