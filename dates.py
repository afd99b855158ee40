# dates.py
"""
Calendar helpers for ledger dates.

Ledger dates travel as 'YYYY-MM-DD' strings and are always treated as plain
calendar days. Nothing here goes through a timezone-aware datetime, so a date
never slips to the previous day on a server running west of UTC.
"""
import calendar
import re
from datetime import date, datetime
from typing import Optional, Union

_YMD_RE = re.compile(r"^(\d{4})-(\d{2})(?:-(\d{2}))?")

MESES_ABREV = ["Jan", "Fev", "Mar", "Abr", "Mai", "Jun", "Jul", "Ago", "Set", "Out", "Nov", "Dez"]

DateLike = Union[str, date, datetime, None]


def parse_ymd(value: DateLike, strict: bool = False) -> Optional[date]:
    """
    'YYYY-MM-DD', 'YYYY-MM' (first of month) or an ISO timestamp (date part only).
    Returns None for empty/garbage input unless strict=True, which raises ValueError.
    """
    if value is None or value == "":
        if strict:
            raise ValueError("empty date")
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    m = _YMD_RE.match(str(value).strip())
    if not m:
        if strict:
            raise ValueError(f"Bad ISO date: {value!r}")
        return None
    y, mo, d = int(m.group(1)), int(m.group(2)), int(m.group(3) or 1)
    try:
        return date(y, mo, d)
    except ValueError:
        if strict:
            raise
        return None


def to_ymd(d: DateLike) -> Optional[str]:
    d = parse_ymd(d)
    return d.isoformat() if d else None


def format_br(value: DateLike) -> str:
    d = parse_ymd(value)
    return d.strftime("%d/%m/%Y") if d else ""


def format_competencia(value: DateLike) -> str:
    d = parse_ymd(value)
    if not d:
        return ""
    return f"{MESES_ABREV[d.month - 1]}/{d.year}"


def last_day_of_month(y: int, m: int) -> int:
    return calendar.monthrange(y, m)[1]


def add_months(d: date, months: int) -> date:
    # clamps to month end: Jan 31 + 1 -> Feb 28/29
    y = d.year + (d.month - 1 + months) // 12
    m = (d.month - 1 + months) % 12 + 1
    return date(y, m, min(d.day, last_day_of_month(y, m)))


def with_day(d: date, day: int) -> date:
    return date(d.year, d.month, min(max(1, int(day)), last_day_of_month(d.year, d.month)))


def competencia_of(value: DateLike) -> Optional[date]:
    d = parse_ymd(value)
    return date(d.year, d.month, 1) if d else None


def mes_referencia(value: DateLike) -> Optional[str]:
    d = parse_ymd(value)
    return f"{d.year:04d}-{d.month:02d}" if d else None

