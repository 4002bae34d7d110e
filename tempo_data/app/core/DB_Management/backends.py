# backends.py
# Description: Store backends behind one execute/query/close interface (desktop file, mobile engine, embedded in-memory).
#
# Imports
import asyncio
import os
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
#
# Third-Party Imports
from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
#
# Local Imports
from tempo_data.app.core.DB_Management.exceptions import (
    BackendError,
    ConstraintError,
    DatabaseError,
    SchemaObjectExistsError,
)
#
#######################################################################################################################
#
# Functions:

_EXISTS_MARKERS = ("duplicate column name", "already exists")

Params = Sequence[Any]


def translate_driver_error(error: Exception, sql: str = "") -> DatabaseError:
    """Maps a driver exception onto the store's exception hierarchy."""
    message = str(error)
    lowered = message.lower()
    if isinstance(error, (sqlite3.IntegrityError, IntegrityError)):
        return ConstraintError(f"Constraint violation: {message}")
    if any(marker in lowered for marker in _EXISTS_MARKERS):
        return SchemaObjectExistsError(message)
    logger.debug(f"Driver error for statement [{sql[:200]}]: {message}")
    return DatabaseError(f"Database error: {message}")


class StoreBackend(ABC):
    """Capability interface every backend implements. Rows come back as plain dicts."""

    platform: str = "abstract"

    @abstractmethod
    async def open(self) -> None:
        pass

    @abstractmethod
    async def execute(self, sql: str, params: Params = ()) -> int:
        """Runs one statement and commits it. Returns the affected row count (-1 when not applicable)."""
        pass

    @abstractmethod
    async def query(self, sql: str, params: Params = ()) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    async def start_background_tasks(self) -> None:
        """Hook for backends with periodic work. No-op by default."""
        return None


# --- sqlite3-based backends ---

class _SQLite3Backend(StoreBackend):
    """Shared sqlite3 plumbing. Subclasses decide how a blocking call is run."""

    def __init__(self):
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise BackendError(f"{self.platform} backend is not open")
        return self._conn

    async def _run(self, fn: Callable[..., Any], *args) -> Any:
        return fn(*args)

    @staticmethod
    def _execute_sync(conn: sqlite3.Connection, sql: str, params: Params) -> int:
        try:
            cursor = conn.execute(sql, tuple(params))
            conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.rollback()
            raise translate_driver_error(e, sql) from e

    @staticmethod
    def _query_sync(conn: sqlite3.Connection, sql: str, params: Params) -> List[Dict[str, Any]]:
        try:
            cursor = conn.execute(sql, tuple(params))
            return [dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise translate_driver_error(e, sql) from e

    async def execute(self, sql: str, params: Params = ()) -> int:
        conn = self._require_conn()
        async with self._lock:
            return await self._run(self._execute_sync, conn, sql, params)

    async def query(self, sql: str, params: Params = ()) -> List[Dict[str, Any]]:
        conn = self._require_conn()
        async with self._lock:
            return await self._run(self._query_sync, conn, sql, params)


class DesktopSQLiteBackend(_SQLite3Backend):
    """File-backed sqlite3 store. Blocking driver calls run in a worker thread, one at a time."""

    platform = "desktop"

    def __init__(self, db_path: Union[str, Path]):
        super().__init__()
        self.is_memory_db = str(db_path) == ":memory:"
        self.db_path = ":memory:" if self.is_memory_db else Path(db_path).resolve()

    async def _run(self, fn: Callable[..., Any], *args) -> Any:
        return await asyncio.to_thread(fn, *args)

    def _connect(self) -> sqlite3.Connection:
        if not self.is_memory_db:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False, timeout=15)
        conn.row_factory = sqlite3.Row
        if not self.is_memory_db:
            conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    async def open(self) -> None:
        if self._conn is not None:
            return
        try:
            self._conn = await asyncio.to_thread(self._connect)
        except (sqlite3.Error, OSError) as e:
            raise BackendError(f"Failed to open database at {self.db_path}: {e}") from e
        logger.info(f"Desktop store opened at {self.db_path}")

    async def close(self) -> None:
        if self._conn is None:
            return
        async with self._lock:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)
        logger.debug(f"Desktop store closed: {self.db_path}")


# --- Embedded store persistence side-channel ---

class SnapshotStore(ABC):
    """Durable key -> bytes storage for whole-database snapshots."""

    @abstractmethod
    def load(self, key: str) -> Optional[bytes]:
        pass

    @abstractmethod
    def save(self, key: str, data: bytes) -> None:
        pass


class FileSnapshotStore(SnapshotStore):

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.sqlite"

    def load(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def save(self, key: str, data: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)


class MemorySnapshotStore(SnapshotStore):

    def __init__(self):
        self.snapshots: Dict[str, bytes] = {}

    def load(self, key: str) -> Optional[bytes]:
        return self.snapshots.get(key)

    def save(self, key: str, data: bytes) -> None:
        self.snapshots[key] = bytes(data)


class EmbeddedSQLiteBackend(_SQLite3Backend):
    """
    In-process, in-memory sqlite3 store whose durable copy lives in a SnapshotStore.

    On open, an existing snapshot under `snapshot_key` is loaded; no snapshot
    means a fresh empty store. Every execute() writes a full snapshot back, and a
    periodic task re-snapshots anything a failed save left behind.
    """

    platform = "embedded"

    def __init__(self, snapshot_store: SnapshotStore, snapshot_key: str = "sqliteDb",
                 snapshot_interval: float = 5.0):
        super().__init__()
        self.snapshot_store = snapshot_store
        self.snapshot_key = snapshot_key
        self.snapshot_interval = snapshot_interval
        self._dirty = False
        self._stop_event: Optional[asyncio.Event] = None
        self._snapshot_task: Optional[asyncio.Task] = None

    async def open(self) -> None:
        if self._conn is not None:
            return
        try:
            existing = self.snapshot_store.load(self.snapshot_key)
        except OSError as e:
            raise BackendError(f"Failed to read snapshot '{self.snapshot_key}': {e}") from e
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        try:
            if existing:
                conn.deserialize(existing)
                logger.info(f"Embedded store restored from snapshot '{self.snapshot_key}' ({len(existing)} bytes)")
            else:
                logger.info(f"No snapshot under '{self.snapshot_key}', starting with an empty embedded store")
            conn.row_factory = sqlite3.Row
            conn.execute("SELECT COUNT(*) FROM sqlite_master").fetchone()
            conn.execute("PRAGMA foreign_keys = ON;")
        except sqlite3.Error as e:
            conn.close()
            raise BackendError(f"Snapshot '{self.snapshot_key}' could not be loaded: {e}") from e
        self._conn = conn

    def _persist_locked(self) -> bool:
        conn = self._require_conn()
        try:
            # A store with no pages serializes to nothing, saved as an empty snapshot.
            empty = conn.execute("PRAGMA page_count").fetchone()[0] == 0
            self.snapshot_store.save(self.snapshot_key, b"" if empty else conn.serialize())
        except (OSError, sqlite3.Error) as e:
            self._dirty = True
            logger.error(f"Failed to persist embedded store snapshot '{self.snapshot_key}': {e}")
            return False
        self._dirty = False
        return True

    async def persist(self) -> bool:
        """Writes the full store to the side-channel. Returns False if the save failed."""
        async with self._lock:
            return self._persist_locked()

    async def execute(self, sql: str, params: Params = ()) -> int:
        conn = self._require_conn()
        async with self._lock:
            try:
                return self._execute_sync(conn, sql, params)
            finally:
                self._persist_locked()

    async def start_background_tasks(self) -> None:
        if self._snapshot_task is not None or self.snapshot_interval <= 0:
            return
        self._stop_event = asyncio.Event()
        self._snapshot_task = asyncio.create_task(self._snapshot_loop())
        logger.debug(f"Embedded snapshot task started (every {self.snapshot_interval}s)")

    async def _snapshot_loop(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.snapshot_interval)
                return
            except asyncio.TimeoutError:
                pass
            if self._dirty and self._conn is not None:
                await self.persist()

    async def close(self) -> None:
        if self._snapshot_task is not None:
            self._stop_event.set()
            await self._snapshot_task
            self._snapshot_task = None
            self._stop_event = None
        if self._conn is None:
            return
        async with self._lock:
            saved = self._persist_locked()
            conn, self._conn = self._conn, None
            conn.close()
        if saved:
            logger.debug(f"Embedded store closed, final snapshot written to '{self.snapshot_key}'")
        else:
            logger.warning(f"Embedded store closed without a final snapshot for '{self.snapshot_key}'")


# --- SQLAlchemy-based backend ---

def _translate_dbapi_error(error: DBAPIError, sql: str) -> DatabaseError:
    if isinstance(error, IntegrityError):
        return ConstraintError(f"Constraint violation: {error.orig}")
    return translate_driver_error(error.orig if error.orig is not None else error, sql)


class MobileSQLAlchemyBackend(StoreBackend):
    """Store reached through an SQLAlchemy engine URL. Statements are passed to the driver as-is."""

    platform = "mobile"

    def __init__(self, database_url: str, engine: Optional[Engine] = None):
        self.database_url = database_url
        self._engine: Optional[Engine] = engine
        self._owns_engine = engine is None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def _create_engine(self) -> Engine:
        try:
            url = make_url(self.database_url)
        except ArgumentError as e:
            raise BackendError(f"Invalid database URL '{self.database_url}': {e}") from e
        if url.get_backend_name() == "sqlite":
            if url.database in (None, "", ":memory:"):
                return create_engine(
                    url,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            Path(url.database).resolve().parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url)

    def _ping(self) -> None:
        with self._engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")

    async def open(self) -> None:
        if self._engine is None:
            self._engine = self._create_engine()
        try:
            await asyncio.to_thread(self._ping)
        except SQLAlchemyError as e:
            raise BackendError(f"Failed to connect to {self.database_url}: {e}") from e
        logger.info(f"Mobile store opened via {self._engine.url.render_as_string(hide_password=True)}")

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise BackendError("mobile backend is not open")
        return self._engine

    @staticmethod
    def _execute_sync(engine: Engine, sql: str, params: Params) -> int:
        try:
            with engine.begin() as conn:
                return conn.exec_driver_sql(sql, tuple(params) if params else None).rowcount
        except DBAPIError as e:
            raise _translate_dbapi_error(e, sql) from e
        except SQLAlchemyError as e:
            raise DatabaseError(f"Database error: {e}") from e

    @staticmethod
    def _query_sync(engine: Engine, sql: str, params: Params) -> List[Dict[str, Any]]:
        try:
            with engine.connect() as conn:
                result = conn.exec_driver_sql(sql, tuple(params) if params else None)
                return [dict(row) for row in result.mappings().all()]
        except DBAPIError as e:
            raise _translate_dbapi_error(e, sql) from e
        except SQLAlchemyError as e:
            raise DatabaseError(f"Database error: {e}") from e

    async def execute(self, sql: str, params: Params = ()) -> int:
        engine = self._require_engine()
        async with self._lock:
            return await asyncio.to_thread(self._execute_sync, engine, sql, params)

    async def query(self, sql: str, params: Params = ()) -> List[Dict[str, Any]]:
        engine = self._require_engine()
        async with self._lock:
            return await asyncio.to_thread(self._query_sync, engine, sql, params)

    async def close(self) -> None:
        if self._engine is None:
            return
        async with self._lock:
            engine, self._engine = self._engine, None
            if self._owns_engine:
                await asyncio.to_thread(engine.dispose)
        logger.debug("Mobile store closed")


def create_backend(storage_config) -> StoreBackend:
    """
    Builds the backend named by `storage_config.backend`.

    Args:
        storage_config: A StorageConfig (see app/core/config.py).

    Raises:
        BackendError: Unknown backend name.
    """
    name = (storage_config.backend or "").lower()
    if name == "desktop":
        return DesktopSQLiteBackend(storage_config.database_path)
    if name == "mobile":
        url = storage_config.database_url or f"sqlite:///{storage_config.database_path}"
        return MobileSQLAlchemyBackend(url)
    if name == "embedded":
        return EmbeddedSQLiteBackend(
            FileSnapshotStore(storage_config.snapshot_dir),
            snapshot_key=storage_config.snapshot_key,
            snapshot_interval=storage_config.snapshot_interval_seconds,
        )
    raise BackendError(f"Unknown storage backend '{storage_config.backend}'. Expected desktop, mobile or embedded.")

#
# End of backends.py
#######################################################################################################################
