"""Shared helpers for the layout engine tests."""

import asyncio

import pytest

from diagram_layout.layout import LayeredLayoutOracle, LayoutOracle, LayoutRequest
from diagram_layout.models import ParsedEdge, ParsedGraph, ParsedNode, Position


def make_graph(nodes, edges=()) -> ParsedGraph:
    """
    Build a ParsedGraph from compact tuples.

    nodes: (id, type, label) tuples
    edges: (source, target) tuples; ids are generated
    """
    return ParsedGraph(
        nodes=[ParsedNode(id=i, type=t, label=l) for i, t, l in nodes],
        edges=[ParsedEdge(id=f"{s}->{t}", source=s, target=t) for s, t in edges],
    )


def pos(x, y) -> Position:
    return Position(x=x, y=y)


class RecordingOracle(LayoutOracle):
    """Layered layout that remembers every request it was given."""

    name = "recording"

    def __init__(self):
        self.requests: list[LayoutRequest] = []
        self._inner = LayeredLayoutOracle()

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def layout(self, request: LayoutRequest) -> dict[str, Position]:
        self.requests.append(request)
        return await self._inner.layout(request)


class GatedOracle(LayoutOracle):
    """Layered layout whose calls only complete when the test releases them."""

    name = "gated"

    def __init__(self):
        self.requests: list[LayoutRequest] = []
        self._gates: list[asyncio.Event] = []
        self._inner = LayeredLayoutOracle()

    async def layout(self, request: LayoutRequest) -> dict[str, Position]:
        gate = asyncio.Event()
        self.requests.append(request)
        self._gates.append(gate)
        await gate.wait()
        return await self._inner.layout(request)

    def release(self, index: int):
        self._gates[index].set()

    async def wait_for_calls(self, count: int):
        for _ in range(1000):
            if len(self.requests) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"oracle was called {len(self.requests)} times, expected {count}")


class FailingOracle(LayoutOracle):
    """Always rejects."""

    name = "failing"

    def __init__(self):
        self.call_count = 0

    async def layout(self, request: LayoutRequest) -> dict[str, Position]:
        self.call_count += 1
        raise RuntimeError("layout service unavailable")


class HangingOracle(LayoutOracle):
    """Never completes."""

    name = "hanging"

    async def layout(self, request: LayoutRequest) -> dict[str, Position]:
        await asyncio.Event().wait()
        return {}


@pytest.fixture
def recording_oracle() -> RecordingOracle:
    return RecordingOracle()


@pytest.fixture
def gated_oracle() -> GatedOracle:
    return GatedOracle()
