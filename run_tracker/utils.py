"""General utility helpers shared across modules."""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any


def parse_utc_timestamp(raw: Any) -> int | None:
    """Return integer epoch seconds for an ISO-8601 UTC string, if parseable."""

    if not raw or not isinstance(raw, str):
        return None
    value = raw.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def round_half_up(value: float, places: int = 2) -> float:
    """Round ``value`` to ``places`` decimals, halves away from zero.

    Uses the shortest repr of the float so ``2.675`` rounds to ``2.68`` instead
    of the binary-representation result Python's ``round`` gives.
    """

    quantum = Decimal(1).scaleb(-places)
    try:
        return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))
    except InvalidOperation as exc:
        raise ValueError(f"Cannot round non-finite value {value!r}") from exc


def mask_tail(value: str | None, visible: int = 4) -> str:
    """Return ``****`` followed by the trailing ``visible`` characters."""

    if not value:
        return ""
    return f"****{value[-visible:]}"


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write ``payload`` as JSON to ``path`` via a temp file + replace."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=True, indent=2)
        Path(temp_name).replace(path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise
