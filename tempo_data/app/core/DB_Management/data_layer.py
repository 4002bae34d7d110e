# data_layer.py
# Description: Explicitly constructed facade composing backend, storage adapter, migrations, repositories and sync.
#
# Imports
from typing import Any, Dict, List, Mapping, Optional, Sequence
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from tempo_data.app.core.config import DataLayerConfig
from tempo_data.app.core.DB_Management.backends import StoreBackend, create_backend
from tempo_data.app.core.DB_Management.exceptions import DatabaseError
from tempo_data.app.core.DB_Management.query_builder import QueryBuilder
from tempo_data.app.core.DB_Management.repository import Repository
from tempo_data.app.core.DB_Management.schema import TableSchema
from tempo_data.app.core.DB_Management.schemas import SCHEMA_REGISTRY
from tempo_data.app.core.DB_Management.storage_adapter import StorageAdapter
from tempo_data.app.core.Sync import (
    ConflictResolver,
    RemoteServiceClient,
    SupabaseRestClient,
    SyncConfigurationError,
    SyncManager,
    SyncStateManager,
    SyncStatus,
    TableSyncResult,
)
from tempo_data.app.core.Utils.log_setup import setup_logging
#
#######################################################################################################################
#
# Classes:


class DataLayer:
    """
    Owns the local store for one application instance.

    Construct it, ``await initialize()``, use it, ``await close()``. Or use it as
    an async context manager. Sync is available only when a remote client was
    passed in or remote credentials are configured.

    Args:
        config: Settings; defaults to DataLayerConfig().
        backend: Pre-built backend. If None, one is created from config.storage.
        remote: Pre-built remote client. If None, a SupabaseRestClient is created
            when config.sync has both URL and key.
        registry: Tables to manage. Defaults to the application registry.
        resolver: Conflict strategy for sync. Defaults to last-write-wins.
    """

    def __init__(self, config: Optional[DataLayerConfig] = None, *,
                 backend: Optional[StoreBackend] = None,
                 remote: Optional[RemoteServiceClient] = None,
                 registry: Optional[Mapping[str, TableSchema]] = None,
                 resolver: Optional[ConflictResolver] = None):
        self.config = config or DataLayerConfig()
        self.registry = registry if registry is not None else SCHEMA_REGISTRY
        self.backend = backend or create_backend(self.config.storage)
        self.adapter = StorageAdapter(self.backend, self.registry)
        self.resolver = resolver
        self._remote = remote
        self._owns_remote = remote is None
        self._query_builder = QueryBuilder(self.adapter)
        self._repositories: Dict[str, Repository] = {}
        self.sync_manager: Optional[SyncManager] = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> "DataLayer":
        if self._initialized:
            return self
        if self.config.logging.configure:
            setup_logging(self.config.logging.level)
        for problem in self.config.validate():
            logger.warning(f"Configuration problem: {problem}")

        applied = await self.adapter.initialize()
        logger.info(f"Data layer initialized on '{self.adapter.platform}' backend ({applied} migration step(s))")

        if self._remote is None and self.config.has_remote_credentials:
            self._remote = SupabaseRestClient(
                self.config.sync.supabase_url,
                self.config.sync.supabase_key,
                timeout=self.config.sync.request_timeout,
            )
        if self._remote is not None:
            state_manager = SyncStateManager(self.config.sync.state_file) if self.config.sync.state_file else None
            self.sync_manager = SyncManager(
                self.adapter,
                self._remote,
                table_names=list(self.registry.keys()),
                resolver=self.resolver,
                state_manager=state_manager,
            )
            await self.sync_manager.update_pending_count()
        else:
            logger.info("No remote service configured, sync disabled")

        self._initialized = True
        return self

    def _require_initialized(self):
        if not self._initialized:
            raise DatabaseError("Data layer is not initialized. Call 'await initialize()' first.")

    def _require_sync(self) -> SyncManager:
        self._require_initialized()
        if self.sync_manager is None:
            raise SyncConfigurationError("Sync not configured: no remote service URL/key")
        return self.sync_manager

    # --- Data access ---

    def table(self, name: str) -> Repository:
        self._require_initialized()
        if name not in self._repositories:
            self._repositories[name] = Repository(self.adapter, name)
        return self._repositories[name]

    @property
    def query_builder(self) -> QueryBuilder:
        self._require_initialized()
        return self._query_builder

    async def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        self._require_initialized()
        return await self.adapter.query_raw(sql, params)

    # --- Sync ---

    async def sync(self) -> Optional[List[TableSyncResult]]:
        return await self._require_sync().sync()

    async def start_auto_sync(self, interval_minutes: Optional[float] = None) -> None:
        manager = self._require_sync()
        if interval_minutes is None:
            interval_minutes = self.config.sync.auto_sync_interval_minutes
        await manager.start_auto_sync(interval_minutes)

    async def stop_auto_sync(self) -> None:
        if self.sync_manager is not None:
            await self.sync_manager.stop_auto_sync()

    def get_sync_status(self) -> Optional[SyncStatus]:
        return self.sync_manager.get_status() if self.sync_manager is not None else None

    # --- Lifecycle ---

    async def close(self) -> None:
        await self.stop_auto_sync()
        if self._remote is not None and self._owns_remote:
            await self._remote.close()
            self._remote = None
        await self.adapter.close()
        self.sync_manager = None
        self._repositories.clear()
        self._initialized = False
        logger.debug("Data layer closed")

    async def __aenter__(self) -> "DataLayer":
        return await self.initialize()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

#
# End of data_layer.py
#######################################################################################################################
