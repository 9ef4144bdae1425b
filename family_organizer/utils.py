from __future__ import annotations

from datetime import date, datetime, tzinfo
from typing import Any, Optional
import re
import secrets
import time

from .config import LLM_DEBUG, DEFAULT_TZ, ISO_DATE_RE

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _log_debug(message: str) -> None:
    if LLM_DEBUG:
        print(message, flush=True)


def normalize_text(text: Optional[str]) -> str:
    t = (text or "").strip()
    t = re.sub(r"\s+", " ", t)
    return t


def _clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _clean_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except Exception:
        return None


def _clean_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = re.sub(r"[^\d.\-]", "", value.replace(",", ""))
        if not value or value in {"-", ".", "-."}:
            return None
    try:
        return float(value)
    except Exception:
        return None


def _clean_confidence(value: Any) -> Optional[float]:
    number = _clean_float(value)
    if number is None or not (0.0 <= number <= 1.0):
        return None
    return number


def generate_record_id(prefix: str = "event") -> str:
    """Time-based id with a random base36 suffix, e.g. ``event_1704074400000_k3j9a0q2z``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def coerce_reference(reference: Optional[datetime],
                     tz: Optional[tzinfo] = None) -> datetime:
    if reference is None:
        return datetime.now(tz or DEFAULT_TZ).replace(microsecond=0)
    if reference.tzinfo is None:
        return reference.replace(tzinfo=tz or DEFAULT_TZ)
    return reference


def try_parse_date(value: Any) -> Optional[date]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    # "2026-02-01T00:00:00Z" → "2026-02-01"
    if "T" in cleaned:
        cleaned = cleaned.split("T")[0]
    if " " in cleaned:
        cleaned = cleaned.split(" ")[0]
    if not ISO_DATE_RE.match(cleaned):
        return None
    try:
        return datetime.strptime(cleaned, "%Y-%m-%d").date()
    except Exception:
        return None


def weekday_index(day: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def truncate_title(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text
