from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import requests
from lxml import etree, html

from .config import FFN_BASE_URL, HTTP_TIMEOUT_S, POOL_LENGTHS, USER_AGENT
from .util import clean_text, parse_date, parse_time


logger = logging.getLogger(__name__)

_POOL_SPLIT_RE = re.compile(r"Bassin\s*:\s*(25|50)\s*m", re.IGNORECASE)
_HEADER_LABEL_RE = re.compile(r"^(?:[ée]preuve|nage)$", re.IGNORECASE)
_AGE_RE = re.compile(r"^\((?P<age>\d+)\s*ans?\)$", re.IGNORECASE)
_POINTS_RE = re.compile(r"(?P<pts>\d+)")
_NUMBER_RE = re.compile(r"^\d+$")
_IUF_RE = re.compile(r"^\d{5,10}$")


@dataclass(frozen=True)
class ParsedPerformance:
    event_name: str
    pool_length: int
    time_seconds: float
    competition_date: Optional[str]  # ISO YYYY-MM-DD
    ffn_points: Optional[int]
    competition_name: Optional[str]
    competition_location: Optional[str]
    swimmer_age: Optional[int]  # explicit "(NN ans)" annotation


FetchPerformances = Callable[[str], list[ParsedPerformance]]


def validate_iuf(iuf: str | None) -> str:
    cleaned = clean_text(iuf)
    if not _IUF_RE.match(cleaned):
        raise ValueError(f"Invalid IUF {iuf!r} (expected 5 to 10 digits)")
    return cleaned


def build_performance_url(*, iuf: str, pool_length: int) -> str:
    return f"{FFN_BASE_URL}?idrch_id={iuf}&idopt=prf&idbas={int(pool_length)}"


def fetch_performance_page(
    *,
    url: str,
    session: Optional[requests.Session] = None,
    timeout: float = HTTP_TIMEOUT_S,
) -> bytes:
    sess = session or requests.Session()
    headers = {"User-Agent": USER_AGENT, "Accept": "text/html,application/xhtml+xml"}
    resp = sess.get(url, headers=headers, timeout=timeout)
    resp.raise_for_status()
    return resp.content


def fetch_all_performances(iuf: str, *, session: Optional[requests.Session] = None) -> list[ParsedPerformance]:
    """Fetch every performance of a swimmer, 25 m then 50 m pool.

    A failed request for one pool size only drops that pool's rows.
    """
    iuf = validate_iuf(iuf)
    sess = session or requests.Session()
    out: list[ParsedPerformance] = []
    for pool_length in POOL_LENGTHS:
        url = build_performance_url(iuf=iuf, pool_length=pool_length)
        try:
            page = fetch_performance_page(url=url, session=sess)
        except requests.RequestException as exc:
            logger.warning("Failed to fetch pool=%s for IUF=%s: %s", pool_length, iuf, exc)
            continue
        out.extend(parse_performances(page, default_pool=pool_length))
    return out


def parse_performances(document: str | bytes, *, default_pool: Optional[int] = None) -> list[ParsedPerformance]:
    text = _decode(document) if isinstance(document, bytes) else (document or "")
    out: list[ParsedPerformance] = []
    for pool_length, section in _pool_sections(text, default_pool=default_pool):
        for cells in _row_cells(section):
            row = _parse_row(cells, pool_length=pool_length)
            if row is not None:
                out.append(row)
    return out


def parse_bests(document: str | bytes, *, default_pool: Optional[int] = None) -> list[ParsedPerformance]:
    """Best time per (event, pool). Ties keep the row seen first."""
    return best_per_event(parse_performances(document, default_pool=default_pool))


def best_per_event(rows: Iterable[ParsedPerformance]) -> list[ParsedPerformance]:
    best: dict[tuple[str, int], ParsedPerformance] = {}
    for row in rows:
        key = (row.event_name, row.pool_length)
        current = best.get(key)
        if current is None or row.time_seconds < current.time_seconds:
            best[key] = row
    return list(best.values())


def _decode(document: bytes) -> str:
    # extranat pages are not consistently UTF-8
    try:
        return document.decode("utf-8")
    except UnicodeDecodeError:
        return document.decode("latin-1")


def _pool_sections(text: str, *, default_pool: Optional[int]) -> Iterable[tuple[int, str]]:
    # re.split keeps the captured pool lengths: [before, "25", section, "50", section, ...]
    parts = _POOL_SPLIT_RE.split(text)
    if default_pool is not None:
        yield int(default_pool), parts[0]
    for i in range(1, len(parts) - 1, 2):
        yield int(parts[i]), parts[i + 1]


def _row_cells(section: str) -> Iterable[list[str]]:
    if "<tr" not in section.lower():
        return
    try:
        root = html.document_fromstring(f"<html><body>{section}</body></html>")
    except (etree.ParserError, ValueError):
        return
    for tr in root.iter("tr"):
        yield [clean_text(cell.text_content()) for cell in tr if cell.tag in ("td", "th")]


def _parse_row(cells: list[str], *, pool_length: int) -> Optional[ParsedPerformance]:
    if len(cells) < 2:
        return None
    time_seconds = parse_time(cells[1])
    if time_seconds is None or _HEADER_LABEL_RE.match(cells[0]):
        return None

    competition_date: Optional[str] = None
    ffn_points: Optional[int] = None
    competition_name: Optional[str] = None
    swimmer_age: Optional[int] = None
    for cell in cells[2:]:
        cell_date = parse_date(cell)
        if competition_date is None:
            competition_date = cell_date
        has_points = "pts" in cell.lower()
        if ffn_points is None and has_points:
            m = _POINTS_RE.search(cell)
            if m:
                ffn_points = int(m.group("pts"))
        age_match = _AGE_RE.match(cell)
        if age_match:
            swimmer_age = int(age_match.group("age"))
            continue
        if competition_name is None and len(cell) > 3 and cell_date is None and not has_points and not _NUMBER_RE.match(cell):
            competition_name = cell

    return ParsedPerformance(
        event_name=cells[0],
        pool_length=int(pool_length),
        time_seconds=time_seconds,
        competition_date=competition_date,
        ffn_points=ffn_points,
        competition_name=competition_name,
        competition_location=None,
        swimmer_age=swimmer_age,
    )
