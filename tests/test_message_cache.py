"""
Tests for the bounded message history.
"""

from datetime import datetime, timezone

import pytest

from webchat_bridge.bot_models import MessageRecord, MessageSource
from webchat_bridge.message_cache import MessageHistory


def record(message_id, is_bot=False):
    return MessageRecord(
        id=str(message_id),
        author="bot" if is_bot else "alice",
        content=f"message {message_id}",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        source=MessageSource.BOT if is_bot else MessageSource.DISCORD,
        is_bot=is_bot,
    )


def ids(history):
    return [r.id for r in history]


def test_append_keeps_newest_within_cap():
    history = MessageHistory(max_messages=3)
    for i in range(5):
        history.append(record(i))

    assert ids(history) == ["2", "3", "4"]
    assert history.total_evicted == 2


def test_replace_truncates_to_newest():
    history = MessageHistory(max_messages=2)
    history.append(record("old"))

    history.replace([record(1), record(2), record(3)])

    assert ids(history) == ["2", "3"]


def test_invalid_capacity():
    with pytest.raises(ValueError):
        MessageHistory(max_messages=0)


def test_purge_removes_bot_records_and_keeps_order():
    history = MessageHistory()
    for i, is_bot in enumerate([False, True, False, True, False]):
        history.append(record(i, is_bot=is_bot))

    removed = history.purge_bot_messages()

    assert removed == 2
    assert ids(history) == ["0", "2", "4"]


def test_purge_respects_limit_newest_first():
    history = MessageHistory()
    for i in range(5):
        history.append(record(i, is_bot=True))

    removed = history.purge_bot_messages(limit=2)

    assert removed == 2
    assert ids(history) == ["0", "1", "2"]


def test_purge_with_no_bot_records():
    history = MessageHistory()
    history.append(record(1))

    assert history.purge_bot_messages() == 0
    assert len(history) == 1


def test_to_dicts_and_stats():
    history = MessageHistory(max_messages=10)
    history.append(record(1, is_bot=True))

    assert history.to_dicts()[0]["isBot"] is True
    stats = history.get_stats()
    assert stats["size"] == 1
    assert stats["total_appended"] == 1
