from __future__ import annotations

import re
from datetime import date
from typing import Optional

from .config import AGE_MAX, AGE_MIN


# m:ss.cc first, then ss.cc. Hundredths may be written with a single digit ("59.8").
# ss.cc never starts inside a minute time ("1:2.34" is 62.34, not 2.34).
_TIME_RE = re.compile(r"(?P<min>\d+):(?P<sec>\d{1,2})\.(?P<cs>\d{1,2})|(?<![\d:])(?P<ssec>\d+)\.(?P<scs>\d{1,2})")
_DATE_RE = re.compile(r"(?P<day>\d{2})/(?P<month>\d{2})/(?P<year>\d{4})")
_WS_RE = re.compile(r"\s+")


def clean_text(value: str | None) -> str:
    return _WS_RE.sub(" ", (value or "").replace("\u00a0", " ")).strip()


def parse_time(raw: str | None) -> Optional[float]:
    """Parse "1:02.34" / "59.82" style times into seconds (hundredth precision)."""
    m = _TIME_RE.search(raw or "")
    if not m:
        return None
    if m.group("min") is not None:
        minutes = int(m.group("min"))
        seconds = int(m.group("sec"))
        cs = int(m.group("cs").ljust(2, "0"))
    else:
        minutes = 0
        seconds = int(m.group("ssec"))
        cs = int(m.group("scs").ljust(2, "0"))
    return round(minutes * 60 + seconds + cs / 100, 2)


def parse_date(raw: str | None) -> Optional[str]:
    """dd/mm/yyyy -> ISO yyyy-mm-dd."""
    m = _DATE_RE.search(raw or "")
    if not m:
        return None
    try:
        parsed = date(int(m.group("year")), int(m.group("month")), int(m.group("day")))
    except ValueError:
        return None
    return parsed.isoformat()


def format_time_display(seconds: float) -> str:
    total_cs = int(round(float(seconds) * 100))
    total_s, cs = divmod(total_cs, 100)
    minutes, sec = divmod(total_s, 60)
    if minutes > 0:
        return f"{minutes}:{sec:02d}.{cs:02d}"
    return f"{sec}.{cs:02d}"


def parse_iso_date(value: str | date | None) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, date):
        return value
    text = value.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def calculate_age(birthdate: date, on_date: date) -> int:
    age = on_date.year - birthdate.year
    if (on_date.month, on_date.day) < (birthdate.month, birthdate.day):
        age -= 1
    return age


def clamp_age(age: int) -> int:
    return max(AGE_MIN, min(AGE_MAX, int(age)))
