"""
Helper Functions

Small time, file and request utilities shared by the services.
"""

import json
import os
import re
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from dateutil import parser as dtparser

Clock = Callable[[], int]

_UNSAFE_FILENAME = re.compile(r"[^\w.-]+")


def now_ms() -> int:
    """Wall clock in epoch milliseconds"""
    return int(time.time() * 1000)


def iso_from_ms(ms: int) -> str:
    """Epoch milliseconds to ISO-8601 UTC string"""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def parse_ts(x: Any) -> Optional[datetime]:
    """Parse timestamp from various formats"""
    if not x:
        return None
    try:
        dt = dtparser.isoparse(str(x))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def safe_filename(name: str) -> str:
    """Collapse anything outside [A-Za-z0-9_.-] to underscores"""
    cleaned = _UNSAFE_FILENAME.sub("_", os.path.basename(name or "")).strip("._")
    return cleaned or "file"


def ensure_dir(path: str) -> None:
    os.makedirs(os.path.abspath(path), exist_ok=True)


def read_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(path: str, payload: Any) -> None:
    """Write JSON via a temp file in the same directory, then replace"""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        "w", dir=target.parent, delete=False, encoding="utf-8", suffix=".tmp"
    ) as tmp:
        json.dump(payload, tmp, ensure_ascii=False, indent=2)
        tmp.flush()
        os.fsync(tmp.fileno())
        temp_path = Path(tmp.name)

    temp_path.replace(target)


def client_source(headers: Mapping[str, str], peer: Optional[str]) -> str:
    """Best-effort caller address: first X-Forwarded-For hop, else the peer"""
    forwarded = headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return (peer or "unknown").strip() or "unknown"
