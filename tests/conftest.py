# tests/conftest.py
"""Shared test fixtures.

Fixtures:
- hub: A private BroadcastHub so peer tests never cross-talk
- settings_factory: Builds SqueelSettings with in-memory storage
- client / make_client: Initialized SqueelClient(s) closed at teardown
- recording_engine: SQLiteEngine wrapper that records every exec()

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from typing import Any

import pytest
import pytest_asyncio
from hypothesis import Phase, Verbosity, settings

from squeel.client.client import SqueelClient
from squeel.core.broadcast import BroadcastHub
from squeel.core.config import SqueelSettings
from tests.helpers import TODOS_MIGRATION, RecordingEngine


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub()


@pytest.fixture
def settings_factory() -> Callable[..., SqueelSettings]:
    def _make(**overrides: Any) -> SqueelSettings:
        values: dict[str, Any] = {"db_name": "test", "migrations": (TODOS_MIGRATION,)}
        values.update(overrides)
        return SqueelSettings(**values)

    return _make


@pytest.fixture
def recording_engine() -> Iterator[RecordingEngine]:
    engine = RecordingEngine()
    yield engine
    engine.close()


@pytest_asyncio.fixture
async def make_client(
    hub: BroadcastHub, settings_factory: Callable[..., SqueelSettings]
) -> AsyncIterator[Callable[..., Awaitable[SqueelClient]]]:
    """Factory for initialized clients sharing the test's private hub."""
    clients: list[SqueelClient] = []

    async def _make(settings: SqueelSettings | None = None, **kwargs: Any) -> SqueelClient:
        client = SqueelClient(settings or settings_factory(), hub=hub, **kwargs)
        clients.append(client)
        await client.init()
        return client

    yield _make

    for client in clients:
        await client.close()


@pytest_asyncio.fixture
async def client(make_client: Callable[..., Awaitable[SqueelClient]]) -> SqueelClient:
    return await make_client()


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
