from __future__ import annotations
import time
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def unix_timestamp() -> int:
    return int(time.time())
