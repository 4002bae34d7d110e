# Sync/state.py
import json
import os
from typing import Dict, Optional

from loguru import logger

from .exceptions import StateError

DEFAULT_STATE_FILE = ".sync_state.json"


class SyncStateManager:
    """Persists the sync watermark (epoch ms of the last successful cycle) in a JSON file."""

    def __init__(self, state_file_path: str = DEFAULT_STATE_FILE):
        self.state_file_path = str(state_file_path)
        logger.info(f"Sync state manager initialized with file: {self.state_file_path}")

    def _load_state(self) -> Dict:
        """Loads state from the JSON file."""
        if not os.path.exists(self.state_file_path):
            logger.debug(f"Sync state file not found: {self.state_file_path}. Returning default state.")
            return {}
        try:
            with open(self.state_file_path, 'r', encoding='utf-8') as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading sync state from {self.state_file_path}: {e}")
            raise StateError(f"Failed to load sync state: {e}") from e
        if not isinstance(state, dict):
            raise StateError(f"Sync state file {self.state_file_path} does not hold a JSON object")
        return state

    def _save_state(self, state: Dict):
        """Saves state to the JSON file."""
        try:
            os.makedirs(os.path.dirname(self.state_file_path) or '.', exist_ok=True)
            tmp_path = f"{self.state_file_path}.tmp"
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(state, f, indent=2)
            os.replace(tmp_path, self.state_file_path)
            logger.debug(f"Saved sync state: {state}")
        except OSError as e:
            logger.error(f"Error saving sync state to {self.state_file_path}: {e}")
            raise StateError(f"Failed to save sync state: {e}") from e

    def get_last_sync(self) -> Optional[int]:
        value = self._load_state().get('last_sync')
        if value is None:
            return None
        if not isinstance(value, int) or isinstance(value, bool):
            raise StateError(f"Invalid last_sync value in {self.state_file_path}: {value!r}")
        return value

    def update_last_sync(self, timestamp_ms: int):
        """Only moves the watermark forward."""
        state = self._load_state()
        current = state.get('last_sync')
        if isinstance(current, int) and timestamp_ms < current:
            logger.warning(f"Attempted to move last_sync back from {current} to {timestamp_ms}. Ignoring.")
            return
        state['last_sync'] = int(timestamp_ms)
        self._save_state(state)
        logger.info(f"Updated last sync watermark to: {timestamp_ms}")
