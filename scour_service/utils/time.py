# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional

ABSOLUTE_FLOOR_UTC = datetime(2025, 1, 1, tzinfo=timezone.utc)

_RELATIVE_RE = re.compile(
    r"^\s*(\d+|an?|one)\s+(minute|min|hour|hr|day|week|month)s?\s+ago\s*$",
    re.IGNORECASE,
)
_URL_DATE_RES = (
    re.compile(r"(?<!\d)(20\d{2})[/\-_](0?[1-9]|1[0-2])[/\-_](0?[1-9]|[12]\d|3[01])(?!\d)"),
    re.compile(r"/(20\d{2})(0[1-9]|1[0-2])(0[1-9]|[12]\d|3[01])(?:/|-|_|\.|$)"),
)
_TEXT_DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%d %b %Y")


def utc_today(now: Optional[datetime] = None) -> date:
    return (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()


def day_start_utc(d: date) -> datetime:
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def to_iso_z(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso_utc(s: Optional[str]) -> Optional[datetime]:
    """
    Accept "YYYY-MM-DD", "YYYY-MM-DDTHH:MM[:SS][Z|+hh:mm]" or "YYYY-MM-DD HH:MM".
    Naive values are taken as UTC.
    """
    if not s:
        return None
    ss = str(s).strip()
    if ss.endswith("Z"):
        ss = ss[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(ss.replace(" ", "T", 1) if len(ss) > 10 else ss)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_recency_hint(hint: Optional[str], *, now: Optional[datetime] = None) -> Optional[date]:
    """
    Convert a search-result recency hint to a UTC calendar day.
    Handles ISO timestamps, "3 hours ago" style ages, "yesterday"/"today",
    and "March 14, 2025" style dates.
    """
    if not hint:
        return None
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    h = str(hint).strip()
    low = h.lower()

    if low in ("today", "just now"):
        return now.date()
    if low == "yesterday":
        return (now - timedelta(days=1)).date()

    m = _RELATIVE_RE.match(h)
    if m:
        qty_s, unit = m.group(1).lower(), m.group(2).lower()
        qty = 1 if qty_s in ("a", "an", "one") else int(qty_s)
        if unit in ("minute", "min"):
            delta = timedelta(minutes=qty)
        elif unit in ("hour", "hr"):
            delta = timedelta(hours=qty)
        elif unit == "day":
            delta = timedelta(days=qty)
        elif unit == "week":
            delta = timedelta(weeks=qty)
        else:
            delta = timedelta(days=30 * qty)
        return (now - delta).date()

    dt = parse_iso_utc(h)
    if dt is not None:
        return dt.date()

    for fmt in _TEXT_DATE_FORMATS:
        try:
            return datetime.strptime(h, fmt).date()
        except ValueError:
            continue
    return None


def date_from_url(url: Optional[str]) -> Optional[date]:
    if not url:
        return None
    for rx in _URL_DATE_RES:
        m = rx.search(url)
        if not m:
            continue
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            continue
    return None


def age_hours(hint: Optional[str], *, now: Optional[datetime] = None) -> Optional[float]:
    d = parse_recency_hint(hint, now=now)
    if d is None:
        return None
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return max(0.0, (now - day_start_utc(d)).total_seconds() / 3600.0)
