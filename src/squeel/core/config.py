# src/squeel/core/config.py
"""
Configuration schema and loading for squeel clients.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from squeel.contracts.errors import MigrationError
from squeel.contracts.types import Migration, StorageMode

_DB_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
# PRAGMA does not support parameter binding; names and values are
# interpolated, so both are restricted to plain tokens.
_PRAGMA_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PRAGMA_VALUE = re.compile(r"^-?[A-Za-z0-9_.]+$")
_MIGRATION_FILE = re.compile(r"^(?P<id>\d+)(?:[_-](?P<name>.+?))?\.(?P<direction>up|down)\.sql$")


class MultiTabSettings(BaseModel):
    """Peer invalidation between clients attached to the same database.

    Example YAML:
        multi_tab:
          enabled: true
          channel_name: orders-app
    """

    model_config = {"frozen": True}

    enabled: bool = Field(default=True, description="Broadcast changes to peer clients")
    channel_name: str | None = Field(
        default=None,
        min_length=1,
        description="Override for the broadcast channel (default: squeel:<db_name>)",
    )


class SubscriptionSettings(BaseModel):
    """Defaults for live queries."""

    model_config = {"frozen": True}

    default_depends_on: Literal["parsed", "all"] = Field(
        default="parsed",
        description="parsed: extract tables from SQL; all: re-run on every change",
    )


class SqueelSettings(BaseModel):
    """Top-level client configuration.

    Example YAML:
        db_name: todos
        storage: file
        data_dir: ./state
        migrations_dir: ./migrations
        pragma:
          journal_mode: WAL
          busy_timeout: 5000
    """

    model_config = {"frozen": True}

    db_name: str = Field(description="Logical database name (also the file stem for file storage)")
    storage: StorageMode = Field(default=StorageMode.MEMORY, description="memory or file")
    data_dir: Path = Field(default=Path("."), description="Directory holding <db_name>.sqlite3")
    migrations: tuple[Migration, ...] = Field(default=(), description="Inline migrations")
    migrations_dir: Path | None = Field(default=None, description="Directory of <id>_<name>.up.sql files")
    pragma: dict[str, str | int] = Field(default_factory=dict, description="PRAGMA name -> value applied on init")
    multi_tab: MultiTabSettings = Field(default_factory=MultiTabSettings)
    subscriptions: SubscriptionSettings = Field(default_factory=SubscriptionSettings)

    @field_validator("db_name")
    @classmethod
    def validate_db_name(cls, v: str) -> str:
        if not _DB_NAME.match(v):
            raise ValueError(f"db_name must be alphanumeric with '_', '.' or '-' (got {v!r})")
        return v

    @field_validator("pragma")
    @classmethod
    def validate_pragma(cls, v: dict[str, str | int]) -> dict[str, str | int]:
        for name, value in v.items():
            if not _PRAGMA_NAME.match(name):
                raise ValueError(f"Invalid pragma name: {name!r}")
            if isinstance(value, str) and not _PRAGMA_VALUE.match(value):
                raise ValueError(f"Invalid value for pragma {name}: {value!r}")
        return v

    @model_validator(mode="after")
    def validate_unique_migration_ids(self) -> "SqueelSettings":
        ids = [m.id for m in self.migrations]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate migration ids: {duplicates}")
        return self

    @property
    def channel_name(self) -> str:
        if self.multi_tab.channel_name is not None:
            return self.multi_tab.channel_name
        return f"squeel:{self.db_name}"

    @property
    def database_path(self) -> Path | None:
        """File backing the database, or None for memory storage."""
        if self.storage == StorageMode.MEMORY:
            return None
        return self.data_dir / f"{self.db_name}.sqlite3"

    def all_migrations(self) -> list[Migration]:
        """Inline migrations plus any found in migrations_dir.

        Raises:
            MigrationError: If the same id appears in both sources
        """
        combined = list(self.migrations)
        if self.migrations_dir is not None:
            combined.extend(load_migrations(self.migrations_dir))
        seen: set[int] = set()
        for migration in combined:
            if migration.id in seen:
                raise MigrationError(f"Duplicate migration id {migration.id}", migration_id=migration.id)
            seen.add(migration.id)
        return combined


def load_migrations(directory: Path) -> list[Migration]:
    """Load migrations from ``<id>_<name>.up.sql`` / ``.down.sql`` files.

    Files that do not match the naming pattern are ignored. A ``down``
    file without a matching ``up`` file is an error.

    Args:
        directory: Directory to scan (not recursive)

    Returns:
        Migrations in ascending id order

    Raises:
        FileNotFoundError: If the directory doesn't exist
        MigrationError: If a down script has no up script
    """
    if not directory.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {directory}")

    ups: dict[int, tuple[str | None, str]] = {}
    downs: dict[int, str] = {}
    for path in sorted(directory.iterdir()):
        match = _MIGRATION_FILE.match(path.name)
        if match is None or not path.is_file():
            continue
        migration_id = int(match.group("id"))
        script = path.read_text(encoding="utf-8")
        if match.group("direction") == "up":
            if migration_id in ups:
                raise MigrationError(f"Duplicate up script for migration {migration_id}", migration_id=migration_id)
            ups[migration_id] = (match.group("name"), script)
        else:
            downs[migration_id] = script

    orphans = sorted(set(downs) - set(ups))
    if orphans:
        raise MigrationError(f"Down scripts without up scripts: {orphans}", migration_id=orphans[0])

    return [Migration(id=migration_id, name=name, up=up, down=downs.get(migration_id)) for migration_id, (name, up) in sorted(ups.items())]


def load_settings(config_path: Path) -> SqueelSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (SQUEEL_*) - highest priority
    2. Config file (squeel.yaml)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: SQUEEL_MULTI_TAB__ENABLED for nested keys.
    A relative migrations_dir/data_dir is resolved against the config file.

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Explicit check for file existence (Dynaconf silently accepts missing files)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="SQUEEL",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; convert to lowercase for Pydantic
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config: dict[str, Any] = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    base = config_path.parent
    for key in ("data_dir", "migrations_dir"):
        value = raw_config.get(key)
        if value is not None and not Path(value).is_absolute():
            raw_config[key] = base / value

    return SqueelSettings(**raw_config)
