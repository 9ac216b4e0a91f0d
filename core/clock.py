"""UTC clock used by every time-bounded component (injectable for tests)"""
from datetime import datetime, UTC
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)
