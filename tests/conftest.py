"""Shared fixtures for insight-core tests."""
from datetime import datetime, timezone

import pytest

from insight_core.models import Message

FIXED_NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
NOW_MS = int(FIXED_NOW.timestamp() * 1000)
HOUR_MS = 3600 * 1000
DAY_MS = 24 * HOUR_MS


def make_message(text, msg_id="m1", sender_id="u1", timestamp=NOW_MS, kind="text"):
    """Build a Message with test defaults."""
    return Message(id=msg_id, sender_id=sender_id, text=text, timestamp=timestamp, kind=kind)


@pytest.fixture
def fixed_clock():
    """Clock pinned to 2025-01-15 12:00 UTC."""
    return lambda: FIXED_NOW


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep developer environment out of config-driven tests."""
    for name in ("INSIGHT_ENABLE_LLM", "REFINE_ENDPOINT", "REFINE_TOKEN", "INSIGHT_CONFIG_PATH"):
        monkeypatch.delenv(name, raising=False)
