from __future__ import annotations

import os
import threading
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException

_id_lock = threading.Lock()
_last_id_ns = 0


def now_ts() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp())


def gen_id() -> str:
    """Opaque id that sorts after every id generated before it in this process."""
    global _last_id_ns
    with _id_lock:
        _last_id_ns = max(time.time_ns(), _last_id_ns + 1)
        ns = _last_id_ns
    return f"{ns:020d}_{os.urandom(4).hex()}"


def validate_due_date(d: Optional[str]) -> Optional[str]:
    """Accept an ISO date (YYYY-MM-DD) or datetime; blank means no due date."""
    if d is None:
        return None
    d = d.strip()
    if not d:
        return None
    try:
        datetime.fromisoformat(d)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid due_date format. Use YYYY-MM-DD.")
    return d
