# src/squeel/client/__init__.py
"""Caller-facing API: the client, transactions and live queries."""

from squeel.client.client import SqueelClient, create_client
from squeel.client.subscriptions import LiveQuery, QueryState, QueryStatus, resolve_live_dependencies
from squeel.client.transaction import TransactionScope

__all__ = [
    "LiveQuery",
    "QueryState",
    "QueryStatus",
    "SqueelClient",
    "TransactionScope",
    "create_client",
    "resolve_live_dependencies",
]
