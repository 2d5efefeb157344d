# tests/helpers.py
"""Helpers shared by unit, integration and property tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

from squeel.contracts.types import ExecResult, Migration
from squeel.engine.sqlite import SQLiteEngine

TODOS_SCHEMA = """
CREATE TABLE todos (
    id INTEGER PRIMARY KEY,
    title TEXT NOT NULL,
    done INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE tags (
    id INTEGER PRIMARY KEY,
    todo_id INTEGER NOT NULL REFERENCES todos(id),
    label TEXT NOT NULL UNIQUE
);
"""

TODOS_MIGRATION = Migration(id=1, name="todos", up=TODOS_SCHEMA)


class RecordingEngine(SQLiteEngine):
    """SQLiteEngine that remembers every statement passed to exec()."""

    def __init__(self) -> None:
        super().__init__()
        self.executed: list[str] = []

    def exec(self, sql: str, params: Sequence[Any]) -> ExecResult:
        self.executed.append(sql.strip())
        return super().exec(sql, params)


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds or time runs out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
