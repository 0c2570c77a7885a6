"""Tests for the stop-intent registry."""

from __future__ import annotations

from conftest import FakeClock
from manager.stop_intent import StopIntentRegistry


class TestStopIntentRegistry:
    """Tests for StopIntentRegistry."""

    def test_unmarked_server(self, stop_intents: StopIntentRegistry) -> None:
        assert not stop_intents.is_marked("default")

    def test_mark_is_visible_until_ttl(self, stop_intents: StopIntentRegistry, clock: FakeClock) -> None:
        stop_intents.mark("default")
        clock.advance(59)
        assert stop_intents.is_marked("default")
        clock.advance(1)
        assert not stop_intents.is_marked("default")

    def test_remark_extends_lifetime(self, stop_intents: StopIntentRegistry, clock: FakeClock) -> None:
        stop_intents.mark("default")
        clock.advance(50)
        stop_intents.mark("default")
        clock.advance(50)
        assert stop_intents.is_marked("default")

    def test_discard(self, stop_intents: StopIntentRegistry) -> None:
        stop_intents.mark("default")
        stop_intents.discard("default")
        stop_intents.discard("never-marked")
        assert not stop_intents.is_marked("default")

    def test_len_drops_expired_entries(self, stop_intents: StopIntentRegistry, clock: FakeClock) -> None:
        stop_intents.mark("a")
        clock.advance(30)
        stop_intents.mark("b")
        clock.advance(40)
        assert len(stop_intents) == 1

    def test_instances_are_isolated(self) -> None:
        first = StopIntentRegistry(clock=FakeClock())
        second = StopIntentRegistry(clock=FakeClock())
        first.mark("default")
        assert not second.is_marked("default")
