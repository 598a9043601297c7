"""
Tests for typing-indicator expiry.
"""

import asyncio

import pytest

from webchat_bridge.typing_tracker import TypingTracker


def test_active_until_timeout(clock):
    tracker = TypingTracker(timeout=5.0, clock=clock)
    tracker.touch("alice")

    clock.advance(4.9)
    assert tracker.active_users() == ["alice"]

    clock.advance(0.2)
    assert tracker.active_users() == []
    assert "alice" not in tracker


def test_expiry_skips_refreshed_entry(clock):
    tracker = TypingTracker(timeout=5.0, grace=0.1, clock=clock)
    tracker.touch("alice")

    clock.advance(3)
    tracker.touch("alice")
    clock.advance(2)

    # the first session's timer fires, but the entry was refreshed
    assert tracker.expire_if_stale("alice") is False
    assert "alice" in tracker


def test_expiry_within_grace_removes(clock):
    tracker = TypingTracker(timeout=5.0, grace=0.1, clock=clock)
    tracker.touch("alice")

    clock.advance(4.95)

    assert tracker.expire_if_stale("alice") is True
    assert "alice" not in tracker


def test_clear_removes_immediately(clock):
    tracker = TypingTracker(clock=clock)
    tracker.touch("alice")
    tracker.touch("bob")

    tracker.clear("alice")
    tracker.clear("nobody")

    assert tracker.active_users() == ["bob"]


@pytest.mark.asyncio
async def test_touch_schedules_and_replaces_timer(clock):
    tracker = TypingTracker(timeout=5.0, clock=clock)

    tracker.touch("alice")
    first = tracker._timers["alice"]
    tracker.touch("alice")

    assert first.cancelled()
    assert not tracker._timers["alice"].cancelled()

    tracker.close()
    assert tracker._timers == {}


@pytest.mark.asyncio
async def test_expiry_timer_removes_entry_without_sweep():
    tracker = TypingTracker(timeout=0.05, grace=0.01)
    tracker.touch("alice")

    await asyncio.sleep(0.15)

    # membership reads the table directly, no lazy sweep involved
    assert "alice" not in tracker
    assert tracker.last_activity("alice") is None
    assert tracker._timers == {}
