"""
Access-log parsing for gateway pods.

Turns raw log tails into normalized `RequestLogEntry` records. Two line shapes
are understood:

- structured lines carrying a JSON object (possibly behind a prefix), and
- common log format: `IP - - [timestamp] "METHOD path PROTOCOL" status size`.

Anything else is dropped. Parsing never raises on bad input.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import RequestLogEntry, utc_now_iso

logger = logging.getLogger(__name__)

JSON_OBJECT_RE = re.compile(r"\{.*\}")
COMMON_LOG_RE = re.compile(r'^(\S+) \S+ \S+ \[(.*?)\] "(\S+) (\S+) \S+" (\d+) (\d+|-)')

_CLF_TIME_FORMATS = ("%d/%b/%Y:%H:%M:%S %z", "%d/%b/%Y:%H:%M:%S")


def _first(data: Dict[str, Any], *keys: str) -> Any:
    """First value among `keys` that is present and not empty."""
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _parse_int(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        pass
    try:
        return int(float(raw))
    except (TypeError, ValueError, OverflowError):
        return None


def _parse_float(raw: Any, default: float = 0.0) -> float:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _generate_request_id() -> str:
    return f"req-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def parse_clf_timestamp(raw: str) -> Optional[str]:
    """Convert a `10/Oct/2020:13:55:36 +0000` stamp to ISO-8601, if possible."""
    for fmt in _CLF_TIME_FORMATS:
        try:
            parsed = datetime.strptime(raw, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.isoformat()
    return None


def transform_log_entry(log_entry: Dict[str, Any]) -> Optional[RequestLogEntry]:
    """Map a structured log object onto a `RequestLogEntry`.

    Returns None when the object has no usable status code.
    """
    status_raw = _first(log_entry, "status_code", "status")
    status_code = _parse_int(status_raw if status_raw is not None else 200)
    if status_code is None:
        return None

    headers = log_entry.get("headers")
    if isinstance(headers, dict):
        headers = {str(k): str(v) for k, v in headers.items()}
    else:
        headers = None

    source_ip = _first(log_entry, "source_ip", "remote_addr")
    user_agent = log_entry.get("user_agent")

    return RequestLogEntry(
        timestamp=str(_first(log_entry, "timestamp", "time") or utc_now_iso()),
        request_id=str(_first(log_entry, "request_id", "requestId") or _generate_request_id()),
        method=str(log_entry.get("method") or "GET"),
        path=str(_first(log_entry, "path", "url") or "/"),
        status_code=status_code,
        response_time=_parse_float(_first(log_entry, "response_time", "duration")),
        decision=RequestLogEntry.decision_for_status(status_code),
        source_ip=str(source_ip) if source_ip is not None else None,
        user_agent=str(user_agent) if user_agent else None,
        headers=headers,
    )


def parse_json_line(line: str) -> Optional[RequestLogEntry]:
    """Parse the JSON object embedded in a log line."""
    match = JSON_OBJECT_RE.search(line)
    if not match:
        return None
    try:
        payload = json.loads(match.group(0))
    except (ValueError, RecursionError):
        return None
    if not isinstance(payload, dict):
        return None
    return transform_log_entry(payload)


def parse_common_log_format(line: str) -> Optional[RequestLogEntry]:
    """Parse a common-log-format access line."""
    match = COMMON_LOG_RE.match(line)
    if not match:
        return None

    source_ip, raw_time, method, path, status, _size = match.groups()
    status_code = int(status)
    return RequestLogEntry(
        timestamp=parse_clf_timestamp(raw_time) or utc_now_iso(),
        request_id=_generate_request_id(),
        method=method,
        path=path,
        status_code=status_code,
        response_time=0.0,
        decision=RequestLogEntry.decision_for_status(status_code),
        source_ip=source_ip,
    )


def parse_line(line: str) -> Optional[RequestLogEntry]:
    if "{" in line and "}" in line:
        return parse_json_line(line)
    return parse_common_log_format(line)


def parse_access_logs(logs: Optional[str]) -> List[RequestLogEntry]:
    """Parse a multi-line log blob into request records, dropping junk lines."""
    if not logs:
        return []

    entries: List[RequestLogEntry] = []
    dropped = 0
    for line in logs.splitlines():
        line = line.strip()
        if not line:
            continue
        entry = parse_line(line)
        if entry is None:
            dropped += 1
            continue
        entries.append(entry)

    if dropped:
        logger.debug("Dropped %d unparseable log lines", dropped)
    return entries
