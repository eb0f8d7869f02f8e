"""
Configuration management and loading.

Handles usage export and database settings.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

import yaml

from usage_board.storage.db import DatabaseFamily

# UTC-12:00 through UTC+14:00
MIN_TIMEZONE_OFFSET = -12 * 3600
MAX_TIMEZONE_OFFSET = 14 * 3600


@dataclass(frozen=True)
class DataExportConfig:
    """Settings for flushing cached usage to storage."""
    enabled: bool = True
    interval_minutes: int = 1
    timezone_offset: int = 0

    def __post_init__(self):
        """Validate interval and offset ranges."""
        if self.interval_minutes <= 0:
            raise ValueError("interval_minutes must be > 0")
        if not MIN_TIMEZONE_OFFSET <= self.timezone_offset <= MAX_TIMEZONE_OFFSET:
            raise ValueError(
                f"timezone_offset must be between {MIN_TIMEZONE_OFFSET} and {MAX_TIMEZONE_OFFSET}"
            )


@dataclass(frozen=True)
class DatabaseConfig:
    """Storage backend selection."""
    family: DatabaseFamily = DatabaseFamily.SQLITE
    path: str = "usage_board.db"

    def __post_init__(self):
        """Validate the SQLite path is usable."""
        if self.family is DatabaseFamily.SQLITE and not self.path:
            raise ValueError("database path is required for sqlite")


@dataclass(frozen=True)
class DashboardConfig:
    """Complete usage dashboard configuration."""
    data_export: DataExportConfig = field(default_factory=DataExportConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def default_config() -> DashboardConfig:
    """Configuration used when no file is given."""
    return DashboardConfig()


def load_dashboard_config(path: str) -> DashboardConfig:
    """Load and validate dashboard configuration from YAML file.

    Every section is optional; anything omitted keeps its default. Unknown
    keys are rejected.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated DashboardConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Dashboard config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'data_export', 'database'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    return DashboardConfig(
        data_export=_parse_data_export(raw_config.get('data_export', {})),
        database=_parse_database(raw_config.get('database', {}))
    )


def _check_section(data, name: str, allowed_keys: set) -> Dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _parse_data_export(data) -> DataExportConfig:
    """Parse and validate the data_export section.

    Raises:
        ValueError: If a value has the wrong type or range
    """
    data = _check_section(data, 'data_export', {'enabled', 'interval_minutes', 'timezone_offset'})
    defaults = DataExportConfig()

    enabled = data.get('enabled', defaults.enabled)
    if not isinstance(enabled, bool):
        raise ValueError("'enabled' in data_export must be a boolean")

    interval = data.get('interval_minutes', defaults.interval_minutes)
    if isinstance(interval, bool) or not isinstance(interval, int):
        raise ValueError("'interval_minutes' in data_export must be an integer")

    offset = data.get('timezone_offset', defaults.timezone_offset)
    if isinstance(offset, bool) or not isinstance(offset, int):
        raise ValueError("'timezone_offset' in data_export must be an integer number of seconds")

    return DataExportConfig(
        enabled=enabled,
        interval_minutes=interval,
        timezone_offset=offset
    )


def _parse_database(data) -> DatabaseConfig:
    """Parse and validate the database section.

    Raises:
        ValueError: If the family is unknown or the path is not a string
    """
    data = _check_section(data, 'database', {'family', 'path'})
    defaults = DatabaseConfig()

    family_str = data.get('family', defaults.family.value)
    if not isinstance(family_str, str):
        raise ValueError("'family' in database must be a string")
    try:
        family = DatabaseFamily(family_str.lower())
    except ValueError:
        valid_families = [f.value for f in DatabaseFamily]
        raise ValueError(f"'family' in database must be one of: {valid_families}")

    db_path = data.get('path', defaults.path)
    if not isinstance(db_path, str):
        raise ValueError("'path' in database must be a string")

    return DatabaseConfig(family=family, path=db_path)
