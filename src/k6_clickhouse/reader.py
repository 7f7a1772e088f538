"""Read samples back from k6's JSON output (``k6 run --out json=FILE``)."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .sample import Sample

logger = logging.getLogger(__name__)

_FRACTION = re.compile(r"\.(\d+)")


def parse_time(value: str) -> datetime:
    """Parse an RFC 3339 timestamp with up to nanosecond precision."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # datetime only keeps microseconds
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _str_map(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}


def parse_k6_json_line(line: str) -> Sample | None:
    """Turn one ``Point`` line into a :class:`Sample`.

    Returns ``None`` for blank lines, metric declarations and anything that
    is not a well-formed point.
    """
    line = line.strip()
    if not line:
        return None
    try:
        obj = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(obj, dict) or obj.get("type") != "Point":
        return None

    data = obj.get("data")
    metric = obj.get("metric")
    if not isinstance(data, dict) or not metric:
        return None

    try:
        return Sample(
            time=parse_time(str(data["time"])),
            metric=str(metric),
            value=float(data["value"]),
            tags=_str_map(data.get("tags")),
            metadata=_str_map(data.get("metadata")),
        )
    except (KeyError, TypeError, ValueError):
        logger.debug("Skipping malformed point: %s", line[:200])
        return None


def read_k6_json(path: str | Path) -> Iterator[Sample]:
    """Yield every sample of a k6 JSON output file."""
    path = Path(path)
    with open(path, encoding="utf-8") as fh:
        for line in fh:
            sample = parse_k6_json_line(line)
            if sample is not None:
                yield sample
