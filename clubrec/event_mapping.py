from __future__ import annotations

import re
import unicodedata
from typing import Optional


# FFN labels come as "50 NL", "50 Nage Libre", "100 Dos", "200 Brasse", "100 Pap.", "200 4 Nages", ...
_EVENT_RE = re.compile(r"^(?P<dist>\d{2,4})\s*(?:m\b|m(?=[a-z]))?\s*(?P<stroke>.+)$")

_STROKES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("FREE", re.compile(r"^(?:nl|nage\s+libre|libre|crawl)$")),
    ("BACK", re.compile(r"^dos$")),
    ("BREAST", re.compile(r"^(?:br|brasse)$")),
    ("FLY", re.compile(r"^(?:pap|papillon)$")),
    ("IM", re.compile(r"^(?:4\s*n|4\s*nages|quatre\s+nages)$")),
)

_DISTANCES: dict[str, tuple[int, ...]] = {
    "FREE": (50, 100, 200, 400, 800, 1500),
    "BACK": (50, 100, 200),
    "BREAST": (50, 100, 200),
    "FLY": (50, 100, 200),
    "IM": (100, 200, 400),
}

_STROKE_LABELS = {"FREE": "NL", "BACK": "Dos", "BREAST": "Br", "FLY": "Pap", "IM": "4N"}

# Printing order of club record tables.
EVENT_ORDER: tuple[str, ...] = tuple(
    f"{dist}_{stroke}" for stroke in ("FREE", "BACK", "BREAST", "FLY", "IM") for dist in _DISTANCES[stroke]
)

EVENT_LABELS: dict[str, str] = {
    code: f"{code.split('_')[0]} {_STROKE_LABELS[code.split('_')[1]]}" for code in EVENT_ORDER
}


def normalize_event_code(label: str | None) -> Optional[str]:
    """Map a raw FFN event label to a code like "100_BACK"; None for relays and non-standard events."""
    text = _fold((label or "").strip()).lower()
    if not text or "x" in text.split()[0]:
        return None
    m = _EVENT_RE.match(text)
    if not m:
        return None
    stroke_text = re.sub(r"[.\s]+", " ", m.group("stroke")).strip()
    for stroke, pattern in _STROKES:
        if pattern.match(stroke_text):
            dist = int(m.group("dist"))
            return f"{dist}_{stroke}" if dist in _DISTANCES[stroke] else None
    return None


def event_label(code: str) -> str:
    return EVENT_LABELS.get(code, code)


def event_sort_key(code: str) -> tuple[int, str]:
    try:
        return (EVENT_ORDER.index(code), code)
    except ValueError:
        return (10_000, code)


def _fold(text: str) -> str:
    # "Épreuve" -> "Epreuve"
    return "".join(ch for ch in unicodedata.normalize("NFKD", text) if not unicodedata.combining(ch))
