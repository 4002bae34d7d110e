"""
Configuration management for the data layer.

Settings live under the ``[tempo_data]`` table of a TOML file, with one
sub-table per area (``storage``, ``sync``, ``logging``). Environment variables
override file values.
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import tomli
from loguru import logger


VALID_BACKENDS = ("desktop", "mobile", "embedded")
VALID_LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


@dataclass
class StorageConfig:
    """Configuration for the local store."""
    backend: str = "desktop"  # "desktop", "mobile", "embedded"
    database_path: str = "./Databases/tempo.db"
    database_url: Optional[str] = None  # mobile only; defaults to sqlite:///<database_path>

    # Embedded backend persistence
    snapshot_dir: str = "./Databases/snapshots"
    snapshot_key: str = "sqliteDb"
    snapshot_interval_seconds: float = 5.0


@dataclass
class SyncConfig:
    """Configuration for remote sync."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    auto_sync_interval_minutes: float = 5.0
    request_timeout: float = 30.0
    state_file: Optional[str] = None  # If None, the watermark is kept in memory only


@dataclass
class LoggingConfig:
    level: str = "INFO"
    configure: bool = False  # Install the loguru sink when the data layer starts


@dataclass
class DataLayerConfig:
    """Main configuration class for the data layer."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def has_remote_credentials(self) -> bool:
        return bool(self.sync.supabase_url and self.sync.supabase_key)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DataLayerConfig':
        return cls(
            storage=StorageConfig(**data.get("storage", {})),
            sync=SyncConfig(**data.get("sync", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    @classmethod
    def from_toml(cls, config_path: Optional[Path] = None) -> 'DataLayerConfig':
        """
        Load configuration from TOML file.

        Args:
            config_path: Path to config file. If None, uses default location.

        Returns:
            DataLayerConfig instance
        """
        if config_path is None:
            possible_paths = [
                Path.home() / ".config" / "tempo_data" / "config.toml",
                Path("config.toml"),
            ]
            for path in possible_paths:
                if path.exists():
                    config_path = path
                    break
            else:
                logger.warning("No config file found, using defaults")
                config = cls()
                config._apply_env_overrides()
                return config

        logger.info(f"Loading data layer config from: {config_path}")

        try:
            with open(config_path, "rb") as f:
                toml_data = tomli.load(f)
            config = cls.from_dict(toml_data.get("tempo_data", {}))
        except (OSError, tomli.TOMLDecodeError, TypeError) as e:
            logger.error(f"Error loading config from {config_path}: {e}")
            logger.warning("Using default configuration")
            config = cls()

        config._apply_env_overrides()
        return config

    def _apply_env_overrides(self):
        """Apply environment variable overrides."""
        env_mappings = {
            "TEMPO_DB_BACKEND": ("storage", "backend", str),
            "TEMPO_DB_PATH": ("storage", "database_path", str),
            "TEMPO_DB_URL": ("storage", "database_url", str),
            "TEMPO_SUPABASE_URL": ("sync", "supabase_url", str),
            "TEMPO_SUPABASE_KEY": ("sync", "supabase_key", str),
            "TEMPO_SYNC_INTERVAL_MINUTES": ("sync", "auto_sync_interval_minutes", float),
            "TEMPO_LOG_LEVEL": ("logging", "level", lambda x: x.upper()),
        }

        for env_var, (section, attr, converter) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                try:
                    section_obj = getattr(self, section)
                    setattr(section_obj, attr, converter(value))
                    logger.debug(f"Override from env: {env_var} -> {section}.{attr}")
                except ValueError as e:
                    logger.warning(f"Failed to apply env override {env_var}: {e}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary. The API key is masked."""
        data = asdict(self)
        if data["sync"]["supabase_key"]:
            data["sync"]["supabase_key"] = "***"
        return data

    def validate(self) -> List[str]:
        """
        Validate configuration settings.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if self.storage.backend not in VALID_BACKENDS:
            errors.append(f"storage.backend must be one of {', '.join(VALID_BACKENDS)}")
        if self.storage.backend in ("desktop", "mobile") and not (self.storage.database_path or self.storage.database_url):
            errors.append("storage.database_path is required for the desktop and mobile backends")
        if not self.storage.snapshot_key:
            errors.append("storage.snapshot_key must not be empty")
        if self.storage.snapshot_interval_seconds < 0:
            errors.append("storage.snapshot_interval_seconds must be >= 0")

        if bool(self.sync.supabase_url) != bool(self.sync.supabase_key):
            errors.append("sync.supabase_url and sync.supabase_key must be set together")
        if self.sync.auto_sync_interval_minutes <= 0:
            errors.append("sync.auto_sync_interval_minutes must be > 0")
        if self.sync.request_timeout <= 0:
            errors.append("sync.request_timeout must be > 0")

        if self.logging.level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"logging.level must be one of {', '.join(VALID_LOG_LEVELS)}")

        return errors
