"""Shared fixtures for the monitoring engine tests."""

import pytest
from fakes import FakeClock, FakeMetrics, FakeNetwork, FakeSystem

from hostwatch.services.events import EventBus, EventType


class EventRecorder:
    """Collects (event, args) pairs published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.received: list[tuple[EventType, tuple]] = []
        for event in EventType:
            bus.subscribe(event, self._handler(event))

    def _handler(self, event: EventType):
        def record(*args) -> None:
            self.received.append((event, args))

        return record

    def of(self, event: EventType) -> list[tuple]:
        return [args for kind, args in self.received if kind is event]

    def kinds(self, *wanted: EventType) -> list[EventType]:
        return [kind for kind, _ in self.received if kind in wanted]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_metrics() -> FakeMetrics:
    return FakeMetrics()


@pytest.fixture
def fake_system() -> FakeSystem:
    return FakeSystem()


@pytest.fixture
def fake_network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(events: EventBus) -> EventRecorder:
    return EventRecorder(events)
