"""Structured scheduling event log.

Every slot/booking mutation is reported as a JSON payload on the
`scholarship_api.interview` logger. When `INTERVIEW_EVENTS_DIR` is set the
same payloads are appended to `interview_events.jsonl` there, which gives
officers an audit trail of who moved which booking where.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Optional


_WRITE_LOCK = Lock()
_LOGGER = logging.getLogger("scholarship_api.interview")


def _events_path() -> Optional[Path]:
    raw = os.getenv("INTERVIEW_EVENTS_DIR", "").strip()
    if not raw:
        return None
    root = Path(raw).expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root / "interview_events.jsonl"


def record_event(event: str, **fields) -> dict:
    """Log a scheduling event and append it to the JSONL sink when configured."""
    payload = {"event": event, **fields}
    payload.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    line = json.dumps(payload, ensure_ascii=True, default=str)
    path = _events_path()
    if path is not None:
        with _WRITE_LOCK:
            with path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
    _LOGGER.info("interview_event %s", line)
    return payload


def read_events(limit: int = 100) -> list:
    """Return the last `limit` events from the JSONL sink (empty when disabled)."""
    path = _events_path()
    if path is None or not path.exists():
        return []
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines[-limit:] if line.strip()]
