# tests/property/test_correlation_properties.py
"""Property tests: correlation survives any response ordering and noise."""

import asyncio
from typing import Any

from hypothesis import given
from hypothesis import strategies as st

from squeel.contracts.protocol import Envelope, QueryRequest, QueryResultResponse
from squeel.engine.channel import CorrelationChannel
from tests.property.settings import SLOW_SETTINGS


class _Transport:
    def __init__(self) -> None:
        self.posted: list[dict[str, Any]] = []

    def post(self, message: dict[str, Any]) -> None:
        self.posted.append(message)


def _answer(envelope_id: str, value: int) -> dict[str, Any]:
    return Envelope(id=envelope_id, response=QueryResultResponse(rows=[{"v": value}])).to_wire()


async def _run_permuted(count: int, order: list[int], duplicates: list[int]) -> list[int]:
    transport = _Transport()
    channel = CorrelationChannel(transport)
    tasks = [asyncio.create_task(channel.send(QueryRequest(sql="SELECT ?", params=[i]))) for i in range(count)]
    while len(transport.posted) < count:
        await asyncio.sleep(0)

    sent = {message["id"]: message["request"]["params"][0] for message in transport.posted}
    ids = list(sent)
    for position in order:
        envelope_id = ids[position]
        channel.receive(_answer(envelope_id, sent[envelope_id]))
    for position in duplicates:
        # Replays carry a wrong value; they must never win
        channel.receive(_answer(ids[position], -1))
    channel.receive(_answer("unknown", -2))

    responses = await asyncio.gather(*tasks)
    assert channel.pending_count == 0
    return [response.rows[0]["v"] for response in responses]


@st.composite
def permutations_with_replays(draw: st.DrawFn) -> tuple[int, list[int], list[int]]:
    count = draw(st.integers(min_value=1, max_value=12))
    order = draw(st.permutations(range(count)))
    duplicates = draw(st.lists(st.integers(min_value=0, max_value=count - 1), max_size=5))
    return count, list(order), duplicates


class TestCorrelationProperties:
    @given(case=permutations_with_replays())
    @SLOW_SETTINGS
    def test_every_caller_gets_its_own_response(self, case: tuple[int, list[int], list[int]]) -> None:
        count, order, duplicates = case
        values = asyncio.run(_run_permuted(count, order, duplicates))
        assert values == list(range(count))
