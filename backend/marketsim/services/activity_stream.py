from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque

_recent: Deque[dict[str, Any]] = deque(maxlen=300)


def record_market_events(tick: int, headlines: list[str]) -> list[dict[str, Any]]:
    created_at = datetime.now(timezone.utc).isoformat()
    payloads = [
        {
            "channel": "events",
            "type": "market_event",
            "tick": tick,
            "headline": headline,
            "created_at": created_at,
        }
        for headline in headlines
    ]
    _recent.extend(payloads)
    return payloads


def get_recent_events(limit: int = 50) -> list[dict[str, Any]]:
    items = list(_recent)
    return list(reversed(items[-limit:]))


def clear_recent_events() -> None:
    _recent.clear()
