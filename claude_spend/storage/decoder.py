"""
Entry decoding for session log lines.

Turns one JSON line into a typed event. Decoding never raises: lines that
cannot be decoded are reported as None and counted.
"""

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, List, Optional

from claude_spend.core.token_counter import TokenUsage
from .models import (
    UNKNOWN_MODEL,
    AssistantEvent,
    OtherEvent,
    RawEvent,
    UserEvent,
)

logger = logging.getLogger(__name__)

# User content starting with these markers is a local control directive
CONTROL_MARKERS = ("<local-command", "<command-name")


@dataclass
class DecodeStats:
    """Diagnostic counters for a decoding pass."""
    decoded: int = 0
    skipped: int = 0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted).

    The logged offset is kept, so dates and weekdays read as written.
    Timestamps without an offset are taken as UTC.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _coerce_count(value: Any) -> int:
    """Token counts: anything that is not a non-negative number counts as 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(int(value), 0)


def _user_text(content: Any) -> Optional[str]:
    if isinstance(content, str):
        return content or None
    if isinstance(content, list):
        parts = [
            block["text"]
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        ]
        return "\n".join(parts).strip() or None
    return None


def _tool_names(content: Any) -> List[str]:
    if not isinstance(content, list):
        return []
    return [
        str(block["name"])
        for block in content
        if isinstance(block, dict) and block.get("type") == "tool_use" and block.get("name")
    ]


def decode_entry(entry: Any) -> Optional[RawEvent]:
    """Decode an already-parsed JSON value.

    Returns:
        UserEvent, AssistantEvent or OtherEvent; None if the value is not
        an object
    """
    if not isinstance(entry, dict):
        return None

    timestamp = parse_timestamp(entry.get("timestamp"))
    entry_type = entry.get("type")
    message = entry.get("message")
    if not isinstance(message, dict):
        message = {}

    if entry_type == "user" and message.get("role") == "user":
        content = message.get("content")
        if entry.get("isMeta"):
            return OtherEvent(timestamp=timestamp, kind="meta")
        if isinstance(content, str) and content.startswith(CONTROL_MARKERS):
            return OtherEvent(timestamp=timestamp, kind="control")
        return UserEvent(timestamp=timestamp, text=_user_text(content))

    usage = message.get("usage")
    if entry_type == "assistant" and isinstance(usage, dict):
        return AssistantEvent(
            timestamp=timestamp,
            model=str(message.get("model") or UNKNOWN_MODEL),
            usage=TokenUsage(
                input_tokens=_coerce_count(usage.get("input_tokens")),
                output_tokens=_coerce_count(usage.get("output_tokens")),
                cache_creation_tokens=_coerce_count(usage.get("cache_creation_input_tokens")),
                cache_read_tokens=_coerce_count(usage.get("cache_read_input_tokens")),
            ),
            tools=tuple(_tool_names(message.get("content"))),
        )

    return OtherEvent(timestamp=timestamp, kind=str(entry_type or "other"))


def decode_line(line: str) -> Optional[RawEvent]:
    """Decode one log line, or return None if it is unparsable."""
    if not line or not line.strip():
        return None
    try:
        entry = json.loads(line)
    except ValueError:
        return None
    return decode_entry(entry)


def decode_lines(
    lines: Iterable[str],
    stats: Optional[DecodeStats] = None,
) -> Iterator[RawEvent]:
    """Decode a line stream in order, dropping unparsable lines."""
    for line in lines:
        event = decode_line(line)
        if event is None:
            if stats is not None and line.strip():
                stats.skipped += 1
            continue
        if stats is not None:
            stats.decoded += 1
        yield event
