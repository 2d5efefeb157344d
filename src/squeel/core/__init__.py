# src/squeel/core/__init__.py
"""Core infrastructure: Configuration, Dependency extraction, Invalidation, Canonical, Logging."""

from squeel.core.broadcast import Broadcaster, BroadcastHub, default_hub
from squeel.core.canonical import (
    canonical_json,
    result_fingerprint,
    stable_hash,
)
from squeel.core.config import (
    MultiTabSettings,
    SqueelSettings,
    SubscriptionSettings,
    load_migrations,
    load_settings,
)
from squeel.core.dependency import extract_tables, resolve_dependencies
from squeel.core.events import InvalidationBus
from squeel.core.logging import configure_logging
from squeel.core.sql import as_statement, sql

__all__ = [
    "BroadcastHub",
    "Broadcaster",
    "InvalidationBus",
    "MultiTabSettings",
    "SqueelSettings",
    "SubscriptionSettings",
    "as_statement",
    "canonical_json",
    "configure_logging",
    "default_hub",
    "extract_tables",
    "load_migrations",
    "load_settings",
    "resolve_dependencies",
    "result_fingerprint",
    "sql",
    "stable_hash",
]
