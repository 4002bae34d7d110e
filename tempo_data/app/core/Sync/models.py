# Sync/models.py
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Set, Tuple

from loguru import logger

from tempo_data.app.core.DB_Management.schema import ColumnType, TableSchema
from tempo_data.app.core.DB_Management.schemas import SCHEMA_REGISTRY

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


# Helper to parse remote timestamps (ISO-8601, 'Z' or offset, naive means UTC)
def parse_timestamp(ts_str: Optional[str]) -> Optional[datetime]:
    if not ts_str:
        return None
    try:
        dt = datetime.fromisoformat(ts_str.replace('Z', '+00:00'))
    except ValueError:
        try:
            # Fallback for space separator
            dt = datetime.strptime(ts_str, '%Y-%m-%d %H:%M:%S')
        except ValueError:
            logger.warning(f"Could not parse timestamp string: {ts_str}")
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def epoch_ms_to_iso(value: int) -> str:
    """1700000000123 -> '2023-11-14T22:13:20.123Z'"""
    dt = _EPOCH + timedelta(milliseconds=int(value))
    return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def iso_to_epoch_ms(value: str) -> int:
    dt = parse_timestamp(value)
    if dt is None:
        raise ValueError(f"Unparseable timestamp: {value!r}")
    return (dt - _EPOCH) // _ONE_MS


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass
class SyncStatus:
    last_sync: Optional[int] = None  # epoch ms of the last successful cycle start
    pending_count: int = 0
    is_syncing: bool = False
    error: Optional[str] = None
    state: SyncState = SyncState.IDLE

    def snapshot(self) -> "SyncStatus":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass
class TableSyncResult:
    table: str
    uploaded: int = 0
    upload_failed: int = 0
    inserted: int = 0
    overwritten: int = 0
    kept_local: int = 0
    download_failed: int = 0

    @property
    def downloaded(self) -> int:
        return self.inserted + self.overwritten

    @property
    def failed(self) -> int:
        return self.upload_failed + self.download_failed


class TimestampCodec:
    """
    Converts timestamp fields between local epoch-ms integers and remote ISO-8601 strings.

    Columns declared in `registry` are classified by their declared type: only
    TIMESTAMP columns convert. When a table is named, that table's declaration
    wins; otherwise a name converts if any table declares it as TIMESTAMP.
    Undeclared names are timestamps if they are in `exact_fields` or end with
    one of `suffixes`. Names in `date_fields` (YYYY-MM-DD) never convert.
    """

    DEFAULT_FIELDS: FrozenSet[str] = frozenset({"created_at", "updated_at", "started_at", "completed_at"})
    DEFAULT_SUFFIXES: Tuple[str, ...] = ("_at", "_time")
    DEFAULT_DATE_FIELDS: FrozenSet[str] = frozenset({"last_streak_date", "session_date", "log_date"})

    def __init__(self, exact_fields: Optional[Iterable[str]] = None, suffixes: Optional[Iterable[str]] = None,
                 date_fields: Optional[Iterable[str]] = None,
                 registry: Optional[Mapping[str, TableSchema]] = None):
        self.exact_fields = frozenset(exact_fields) if exact_fields is not None else self.DEFAULT_FIELDS
        self.suffixes = tuple(suffixes) if suffixes is not None else self.DEFAULT_SUFFIXES
        self.date_fields = frozenset(date_fields) if date_fields is not None else self.DEFAULT_DATE_FIELDS
        self.registry = registry if registry is not None else SCHEMA_REGISTRY
        self._declared_types: Dict[str, Set[str]] = {}
        for schema in self.registry.values():
            for name, column in schema.columns.items():
                self._declared_types.setdefault(name, set()).add(column.type_name)

    def is_timestamp_field(self, name: str, table: Optional[str] = None) -> bool:
        if name in self.date_fields:
            return False
        schema = self.registry.get(table) if table is not None else None
        if schema is not None and schema.has_column(name):
            return schema.columns[name].type_name == ColumnType.TIMESTAMP.value
        declared = self._declared_types.get(name)
        if declared:
            return ColumnType.TIMESTAMP.value in declared
        return name in self.exact_fields or name.endswith(self.suffixes)

    def prepare_outbound(self, record: Mapping[str, Any], table: Optional[str] = None) -> Dict[str, Any]:
        """Local row -> remote payload. Drops the local-only `synced` flag."""
        payload: Dict[str, Any] = {}
        for key, value in record.items():
            if key == "synced":
                continue
            if (self.is_timestamp_field(key, table) and isinstance(value, int)
                    and not isinstance(value, bool)):
                value = epoch_ms_to_iso(value)
            payload[key] = value
        return payload

    def prepare_inbound(self, record: Mapping[str, Any], table: Optional[str] = None) -> Dict[str, Any]:
        """
        Remote row -> local record, marked synced.

        Raises:
            ValueError: A timestamp field holds text that is not a timestamp.
        """
        local: Dict[str, Any] = {}
        for key, value in record.items():
            if self.is_timestamp_field(key, table) and isinstance(value, str):
                value = iso_to_epoch_ms(value)
            local[key] = value
        local["synced"] = True
        return local
