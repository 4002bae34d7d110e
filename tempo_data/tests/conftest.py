"""
Pytest fixtures shared by the data layer and sync tests.

Provides in-memory stores, an initialized StorageAdapter, an in-memory stand-in
for the remote service, and a caplog bridge for loguru.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Sequence

import pytest
import pytest_asyncio
from loguru import logger

from tempo_data.app.core.DB_Management.backends import DesktopSQLiteBackend
from tempo_data.app.core.DB_Management.storage_adapter import StorageAdapter
from tempo_data.app.core.Sync.exceptions import TransportError
from tempo_data.app.core.Sync.models import TimestampCodec
from tempo_data.app.core.Sync.transport import RemoteServiceClient


# Logging

@pytest.fixture
def caplog(caplog):
    """Forward loguru records to pytest's caplog."""
    class PropagateHandler(logging.Handler):
        def emit(self, record):
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message}", level="DEBUG")
    yield caplog
    logger.remove(handler_id)


# Remote service stand-in

class FakeRemote(RemoteServiceClient):
    """
    In-memory remote. Rows are stored in wire shape (ISO timestamps, no `synced`),
    so every call crosses the same timestamp conversion a real service would.
    """

    def __init__(self):
        self.codec = TimestampCodec()
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.upsert_calls: List[tuple] = []
        self.delete_calls: List[tuple] = []
        self.fetch_calls: List[tuple] = []
        self.fail_upsert_ids = set()
        self.fail_fetch_tables = set()
        self.closed = False

    def put(self, table: str, record: Mapping[str, Any]) -> None:
        """Seeds a remote row from a local-shaped record."""
        self.tables[table][record["id"]] = self.codec.prepare_outbound(record, table)

    def get(self, table: str, record_id: str):
        row = self.tables[table].get(record_id)
        return self.codec.prepare_inbound(row, table) if row is not None else None

    async def upsert_batch(self, table: str, records: Sequence[Mapping[str, Any]]) -> List[str]:
        written = []
        for record in records:
            if record["id"] in self.fail_upsert_ids:
                raise TransportError("simulated upsert failure", status_code=503, table=table)
            self.put(table, record)
            written.append(record["id"])
        self.upsert_calls.append((table, written))
        return written

    async def delete_by_key(self, table: str, record_id: str) -> None:
        if record_id in self.fail_upsert_ids:
            raise TransportError("simulated delete failure", status_code=503, table=table)
        self.delete_calls.append((table, record_id))
        self.tables[table].pop(record_id, None)

    async def fetch_modified_since(self, table: str, since_ms: int) -> List[Dict[str, Any]]:
        if table in self.fail_fetch_tables:
            raise TransportError("simulated network outage", table=table)
        self.fetch_calls.append((table, since_ms))
        rows = [self.codec.prepare_inbound(row, table) for row in self.tables[table].values()]
        rows = [row for row in rows if row["updated_at"] >= since_ms]
        return sorted(rows, key=lambda row: row["updated_at"])

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def fake_remote_factory():
    return FakeRemote


# Store fixtures

@pytest_asyncio.fixture
async def memory_backend():
    backend = DesktopSQLiteBackend(":memory:")
    await backend.open()
    yield backend
    await backend.close()


@pytest_asyncio.fixture
async def adapter():
    """An initialized adapter over an in-memory store with the application tables."""
    storage = StorageAdapter(DesktopSQLiteBackend(":memory:"))
    await storage.initialize()
    yield storage
    await storage.close()


# Sample data

def make_session(number: int = 1, **overrides) -> Dict[str, Any]:
    data = {
        "session_date": "2024-05-01",
        "session_number": number,
        "planned_duration": 1500,
        "started_at": 1714550400000 + number,
    }
    data.update(overrides)
    return data


@pytest.fixture
def session_data():
    return make_session
