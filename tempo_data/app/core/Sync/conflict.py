# Sync/conflict.py
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from loguru import logger


class Resolution(str, Enum):
    APPLY_REMOTE = "apply_remote"
    KEEP_LOCAL = "keep_local"


class ConflictResolver(ABC):
    """Abstract base class for conflict resolution strategies."""

    @abstractmethod
    def resolve(self, local_row: Optional[Dict[str, Any]], remote_record: Mapping[str, Any]) -> Resolution:
        """
        Determines the outcome when a downloaded record meets local data.

        Args:
            local_row: Current local row (tombstones included), or None if the id is unknown locally.
            remote_record: The downloaded record, timestamps already converted to epoch ms.

        Returns:
            Resolution.APPLY_REMOTE to write the remote values locally,
            Resolution.KEEP_LOCAL to leave the local row untouched.
        """
        pass


class LastWriteWinsStrategy(ConflictResolver):
    """Remote wins only when its updated_at is strictly greater than the local one."""

    def resolve(self, local_row: Optional[Dict[str, Any]], remote_record: Mapping[str, Any]) -> Resolution:
        record_id = remote_record.get("id")
        if local_row is None:
            logger.debug(f"Conflict resolution (ID: {record_id}): Local nonexistent. Outcome: Apply Remote.")
            return Resolution.APPLY_REMOTE

        remote_ts = remote_record["updated_at"]
        local_ts = local_row.get("updated_at") or 0

        if remote_ts > local_ts:
            logger.debug(f"Conflict resolution (ID: {record_id}): Remote TS {remote_ts} > Local TS {local_ts}. Outcome: Apply Remote.")
            return Resolution.APPLY_REMOTE
        logger.debug(f"Conflict resolution (ID: {record_id}): Remote TS {remote_ts} <= Local TS {local_ts}. Outcome: Keep Local.")
        return Resolution.KEEP_LOCAL
