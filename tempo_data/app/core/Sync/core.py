# Sync/core.py
import asyncio
from typing import List, Optional, Sequence

from loguru import logger

from tempo_data.app.core.DB_Management.exceptions import DatabaseError, InputError
from tempo_data.app.core.DB_Management.migrations import now_ms
from tempo_data.app.core.DB_Management.storage_adapter import StorageAdapter

from .conflict import ConflictResolver, LastWriteWinsStrategy, Resolution
from .exceptions import ApplyError, StateError, SyncError
from .models import SyncState, SyncStatus, TableSyncResult
from .state import SyncStateManager
from .transport import RemoteServiceClient

DEFAULT_AUTO_SYNC_MINUTES = 5.0


class SyncManager:
    """Orchestrates upload-then-download sync cycles between the local store and a remote service."""

    def __init__(self,
                 adapter: StorageAdapter,
                 remote: RemoteServiceClient,
                 *,
                 table_names: Optional[Sequence[str]] = None,
                 resolver: Optional[ConflictResolver] = None,
                 state_manager: Optional[SyncStateManager] = None):
        """
        Initializes the SyncManager.

        Args:
            adapter: An initialized StorageAdapter. The manager never touches the store directly.
            remote: The remote service client.
            table_names: Tables to sync, in order. Defaults to the adapter's registry order.
            resolver: Conflict strategy for downloaded records. Defaults to last-write-wins.
            state_manager: Optional persistence for the watermark across restarts.
        """
        if not isinstance(adapter, StorageAdapter): raise TypeError("adapter must be a StorageAdapter object")
        if not isinstance(remote, RemoteServiceClient): raise TypeError("remote must be a RemoteServiceClient object")
        if resolver is not None and not isinstance(resolver, ConflictResolver):
            raise TypeError("resolver must be a ConflictResolver object")

        self.adapter = adapter
        self.remote = remote
        self.table_names = list(table_names) if table_names is not None else adapter.table_names
        for table in self.table_names:
            adapter.get_schema(table)
        self.resolver = resolver or LastWriteWinsStrategy()
        self.state_manager = state_manager

        last_sync = state_manager.get_last_sync() if state_manager else None
        self._status = SyncStatus(last_sync=last_sync)
        self._stop_event: Optional[asyncio.Event] = None
        self._auto_task: Optional[asyncio.Task] = None

        logger.info(f"SyncManager initialized for tables: {self.table_names}")

    # --- Status ---

    @property
    def status(self) -> SyncStatus:
        return self._status.snapshot()

    def get_status(self) -> SyncStatus:
        return self._status.snapshot()

    @property
    def is_syncing(self) -> bool:
        return self._status.is_syncing

    @property
    def auto_sync_running(self) -> bool:
        return self._auto_task is not None and not self._auto_task.done()

    async def update_pending_count(self) -> int:
        total = 0
        for table in self.table_names:
            total += await self.adapter.count_unsynced(table)
        self._status.pending_count = total
        return total

    # --- Cycle ---

    async def _upload_table(self, table: str, result: TableSyncResult) -> None:
        pending = await self.adapter.find_unsynced(table)
        if not pending:
            logger.debug(f"No local changes to upload for '{table}'")
            return

        synced_ids: List[str] = []
        for record in pending:
            record_id = record["id"]
            try:
                if record.get("deleted"):
                    await self.remote.delete_by_key(table, record_id)
                else:
                    written = await self.remote.upsert_batch(table, [record])
                    if record_id not in written:
                        raise ApplyError("Remote did not acknowledge upsert", table=table, record_id=record_id)
                synced_ids.append(record_id)
            except SyncError as e:
                result.upload_failed += 1
                logger.warning(f"Upload failed for {table} record {record_id}, will retry next cycle: {e}")

        await self.adapter.mark_as_synced(table, synced_ids)
        result.uploaded = len(synced_ids)
        logger.info(f"Uploaded {result.uploaded}/{len(pending)} local change(s) for '{table}'")

    async def _download_table(self, table: str, since_ms: int, result: TableSyncResult) -> None:
        remote_records = await self.remote.fetch_modified_since(table, since_ms)
        if not remote_records:
            logger.debug(f"No remote changes for '{table}' since {since_ms}")
            return

        for record in remote_records:
            record_id = record.get("id")
            try:
                if not record_id or not isinstance(record.get("updated_at"), int):
                    raise ApplyError("Remote record lacks an id or an integer updated_at",
                                     table=table, record_id=record_id)
                local_row = await self.adapter.find_by_id(table, record_id, include_deleted=True)
                decision = self.resolver.resolve(local_row, record)
                if decision is Resolution.KEEP_LOCAL:
                    result.kept_local += 1
                elif local_row is None:
                    await self.adapter.insert_remote(table, record)
                    result.inserted += 1
                else:
                    await self.adapter.overwrite_remote(table, record)
                    result.overwritten += 1
            except (SyncError, DatabaseError, InputError) as e:
                result.download_failed += 1
                logger.warning(f"Could not apply remote {table} record {record_id}: {e}")

        logger.info(f"Applied remote changes for '{table}': {result.inserted} inserted, "
                    f"{result.overwritten} overwritten, {result.kept_local} kept local, "
                    f"{result.download_failed} failed")

    async def sync(self) -> Optional[List[TableSyncResult]]:
        """
        Runs one full cycle: for each table in order, upload then download.

        Returns:
            Per-table results, or None if the cycle was skipped (already syncing)
            or failed (the error is recorded in the status).
        """
        if self._status.is_syncing:
            logger.info("Sync already in progress, skipping this request")
            return None

        self._status.is_syncing = True
        self._status.state = SyncState.SYNCING
        self._status.error = None
        cycle_start = now_ms()
        since_ms = self._status.last_sync or 0
        results: List[TableSyncResult] = []
        logger.info(f"Starting sync cycle (changes since {since_ms})")

        try:
            for table in self.table_names:
                result = TableSyncResult(table=table)
                await self._upload_table(table, result)
                await self._download_table(table, since_ms, result)
                results.append(result)
            await self.update_pending_count()
        except Exception as e:
            self._status.error = str(e)
            self._status.state = SyncState.ERROR
            logger.error(f"Sync cycle failed, watermark left at {since_ms}: {e}")
            return None
        finally:
            self._status.is_syncing = False

        self._status.last_sync = cycle_start
        self._status.state = SyncState.IDLE
        if self.state_manager is not None:
            try:
                self.state_manager.update_last_sync(cycle_start)
            except StateError as e:
                logger.error(f"Sync succeeded but the watermark could not be persisted: {e}")
        logger.info(f"Sync cycle complete: {sum(r.uploaded for r in results)} uploaded, "
                    f"{sum(r.downloaded for r in results)} downloaded, "
                    f"{self._status.pending_count} still pending")
        return results

    # --- Automatic sync ---

    async def _auto_sync_loop(self, interval_seconds: float) -> None:
        while not self._stop_event.is_set():
            await self.sync()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def start_auto_sync(self, interval_minutes: float = DEFAULT_AUTO_SYNC_MINUTES) -> None:
        """Starts a background task that syncs now and then every `interval_minutes`."""
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        if self.auto_sync_running:
            logger.warning("Auto-sync already running")
            return
        self._stop_event = asyncio.Event()
        self._auto_task = asyncio.create_task(self._auto_sync_loop(interval_minutes * 60))
        logger.info(f"Auto-sync started (every {interval_minutes} min)")

    async def stop_auto_sync(self) -> None:
        """Stops the loop. A cycle already in flight is allowed to finish first."""
        if self._auto_task is None:
            return
        self._stop_event.set()
        await self._auto_task
        self._auto_task = None
        self._stop_event = None
        logger.info("Auto-sync stopped")
