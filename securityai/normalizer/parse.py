from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
import ipaddress
import json

from securityai.errors import EventParseError
from securityai.models import SecurityEvent
from securityai.timeutils import parse_iso8601, utcnow


def _pick_first(d: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    for k in keys:
        if k in d and d[k] is not None and d[k] != "":
            return d[k]
    return None


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Accepts:
      - ISO/RFC 3339 strings with/without Z
      - Unix seconds (int/float) (assumed UTC)
    Returns None when the value cannot be interpreted.
    """
    if value is None:
        return None

    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    try:
        return parse_iso8601(str(value))
    except ValueError:
        return None


def _clean_ip(value: Any) -> str:
    # malformed addresses are kept verbatim; IP conditions treat them as non-matches
    s = _text(value)
    if not s:
        return ""
    try:
        return str(ipaddress.ip_address(s))
    except ValueError:
        return s


def _as_port(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise EventParseError(f"Invalid port: expected int, got {value!r}")
    if not 0 <= port <= 65535:
        raise EventParseError(f"port out of range 0..65535: {port}")
    return port


def parse_log(raw_log: str) -> SecurityEvent:
    """
    Parse one raw log line (a JSON object) into a SecurityEvent.

    Field aliases follow what common sources emit (src_ip/source_ip, dst/dest_ip,
    type/event_type ...). A missing or unparsable timestamp falls back to
    ingestion time; anything that is not a JSON object is rejected.
    """
    if raw_log is None or not str(raw_log).strip():
        raise EventParseError("empty log line")

    try:
        data = json.loads(raw_log)
    except (TypeError, ValueError) as e:
        raise EventParseError(f"log line is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise EventParseError("log line must be a JSON object")

    ts = _parse_timestamp(_pick_first(data, ("timestamp", "time", "ts", "event_time", "@timestamp")))

    event = SecurityEvent(
        timestamp=ts or utcnow(),
        source_ip=_clean_ip(_pick_first(data, ("source_ip", "src_ip", "src", "client_ip"))),
        dest_ip=_clean_ip(_pick_first(data, ("dest_ip", "dst_ip", "destination_ip", "dst", "server_ip"))),
        protocol=_text(_pick_first(data, ("protocol", "proto"))).lower(),
        port=_as_port(_pick_first(data, ("port", "dest_port", "dst_port"))),
        event_type=_text(_pick_first(data, ("event_type", "type", "alert_type", "category"))),
        action=_text(_pick_first(data, ("action", "verdict"))).lower(),
        status=_text(_pick_first(data, ("status", "outcome"))),
        user=_text(_pick_first(data, ("user", "username", "account"))),
        description=_text(_pick_first(data, ("description", "message", "msg"))),
        raw_data=raw_log,
    )

    tags = data.get("labels") or data.get("tags") or []
    if isinstance(tags, str):
        tags = [t for t in tags.split(",")]
    for tag in tags:
        tag = str(tag).strip()
        if tag:
            event.add_label(tag)

    return event
