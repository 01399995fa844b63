from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Iterable

from . import db as store
from .config import INSERT_CHUNK_SIZE, PERFORMANCE_SOURCE
from .ffn import ParsedPerformance
from .util import format_time_display


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestSummary:
    found: int
    imported: int
    already_existed: int


def performance_rows(*, iuf: str, performances: Iterable[ParsedPerformance]) -> list[dict[str, Any]]:
    return [
        {
            "swimmer_iuf": iuf,
            "event_code": p.event_name,
            "pool_length": p.pool_length,
            "time_seconds": p.time_seconds,
            "time_display": format_time_display(p.time_seconds),
            "competition_name": p.competition_name,
            "competition_date": p.competition_date,
            "competition_location": p.competition_location,
            "ffn_points": p.ffn_points,
            "swimmer_age": p.swimmer_age,
            "source": PERFORMANCE_SOURCE,
        }
        for p in performances
    ]


def ingest_performances(
    *,
    con: sqlite3.Connection,
    iuf: str,
    performances: Iterable[ParsedPerformance],
    chunk_size: int = INSERT_CHUNK_SIZE,
) -> IngestSummary:
    """Store a swimmer's scraped performances; rows already stored are left as they are."""
    rows = performance_rows(iuf=iuf, performances=performances)
    step = max(1, int(chunk_size))
    imported = 0
    for i in range(0, len(rows), step):
        imported += store.insert_performances_ignore(con=con, rows=rows[i : i + step])
        con.commit()
    logger.debug("IUF=%s: %d performances found, %d new", iuf, len(rows), imported)
    return IngestSummary(found=len(rows), imported=imported, already_existed=len(rows) - imported)
