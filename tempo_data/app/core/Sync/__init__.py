# Sync/__init__.py
from .core import SyncManager
from .models import SyncState, SyncStatus, TableSyncResult, TimestampCodec
from .exceptions import SyncError, SyncConfigurationError, TransportError, ApplyError, StateError
from .transport import RemoteServiceClient, SupabaseRestClient
from .conflict import ConflictResolver, LastWriteWinsStrategy, Resolution
from .state import SyncStateManager

__all__ = [
    "SyncManager",
    "SyncState",
    "SyncStatus",
    "TableSyncResult",
    "TimestampCodec",
    "SyncError",
    "SyncConfigurationError",
    "TransportError",
    "ApplyError",
    "StateError",
    "RemoteServiceClient",
    "SupabaseRestClient",
    "ConflictResolver",
    "LastWriteWinsStrategy",
    "Resolution",
    "SyncStateManager",
]
