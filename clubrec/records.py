"""Personal bests and club records.

Both tiers are recomputed from scratch on every run from the full performance
table and the current roster:

1. one best per (swimmer, category), category being
   (normalized event, pool length, sex, age bracket);
2. one club record per category, the fastest of the swimmers' bests.

Phase 1 fully replaces `club_performance_bests` inside a single transaction.
Phase 2 is upserted into `club_records`, so a category that lost all of its
performances keeps its last known record, with its best-row reference cleared.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Iterable, Optional

from . import db as store
from .config import INSERT_CHUNK_SIZE, PERFORMANCE_SOURCE
from .event_mapping import event_label, event_sort_key, normalize_event_code
from .roster import Swimmer, load_roster
from .util import calculate_age, clamp_age, format_time_display, parse_iso_date


logger = logging.getLogger(__name__)

# Sorts after any real date when breaking ties.
_NO_DATE = "9999-12-31"


@dataclass(frozen=True)
class StoredPerformance:
    id: int
    swimmer_iuf: str
    event_code: str  # raw FFN label
    pool_length: int
    time_seconds: float
    competition_date: Optional[str]
    swimmer_age: Optional[int]


@dataclass(frozen=True)
class CategoryKey:
    event_code: str  # normalized, e.g. "100_BACK"
    pool_length: int
    sex: str
    age_bracket: int

    def sort_key(self) -> tuple:
        return (self.pool_length, self.sex, event_sort_key(self.event_code), self.age_bracket)


@dataclass(frozen=True)
class PersonalBest:
    category: CategoryKey
    swimmer_iuf: str
    athlete_name: str
    time_seconds: float
    record_date: Optional[str]
    performance_id: int

    def rank(self) -> tuple[float, str, str, int]:
        # Equal times: earliest competition, then lowest IUF, then first stored row.
        return (self.time_seconds, self.record_date or _NO_DATE, self.swimmer_iuf, self.performance_id)


@dataclass(frozen=True)
class RecalculateSummary:
    performances_seen: int
    performances_used: int
    personal_bests: int
    club_records: int


def resolve_age(performance: StoredPerformance, swimmer: Swimmer) -> Optional[int]:
    """Explicit "(NN ans)" annotation first, then birthdate vs competition date."""
    if performance.swimmer_age is not None:
        return int(performance.swimmer_age)
    competition_date = parse_iso_date(performance.competition_date)
    if swimmer.birthdate is None or competition_date is None:
        return None
    return calculate_age(swimmer.birthdate, competition_date)


def category_key(performance: StoredPerformance, swimmer: Optional[Swimmer]) -> Optional[CategoryKey]:
    if swimmer is None or not swimmer.is_active or swimmer.sex not in ("M", "F"):
        return None
    code = normalize_event_code(performance.event_code)
    if code is None:
        return None
    age = resolve_age(performance, swimmer)
    if age is None:
        return None
    return CategoryKey(
        event_code=code,
        pool_length=int(performance.pool_length),
        sex=swimmer.sex,
        age_bracket=clamp_age(age),
    )


def compute_personal_bests(
    performances: Iterable[StoredPerformance],
    swimmers: Iterable[Swimmer],
) -> list[PersonalBest]:
    by_iuf = {s.iuf: s for s in swimmers if s.iuf}
    best: dict[tuple[str, CategoryKey], PersonalBest] = {}
    for perf in performances:
        swimmer = by_iuf.get(perf.swimmer_iuf)
        key = category_key(perf, swimmer)
        if key is None or swimmer is None:
            continue
        candidate = PersonalBest(
            category=key,
            swimmer_iuf=perf.swimmer_iuf,
            athlete_name=swimmer.display_name,
            time_seconds=float(perf.time_seconds),
            record_date=perf.competition_date,
            performance_id=int(perf.id),
        )
        slot = (perf.swimmer_iuf, key)
        current = best.get(slot)
        if current is None or candidate.rank() < current.rank():
            best[slot] = candidate
    return sorted(best.values(), key=lambda b: (b.category.sort_key(), b.swimmer_iuf))


def compute_club_records(bests: Iterable[PersonalBest]) -> list[PersonalBest]:
    records: dict[CategoryKey, PersonalBest] = {}
    for b in bests:
        current = records.get(b.category)
        if current is None or b.rank() < current.rank():
            records[b.category] = b
    return sorted(records.values(), key=lambda b: b.category.sort_key())


def load_performances(con: sqlite3.Connection) -> list[StoredPerformance]:
    rows = con.execute(
        """
        SELECT id, swimmer_iuf, event_code, pool_length, time_seconds, competition_date, swimmer_age
        FROM swimmer_performances
        ORDER BY id
        """
    ).fetchall()
    return [
        StoredPerformance(
            id=int(r["id"]),
            swimmer_iuf=str(r["swimmer_iuf"]),
            event_code=str(r["event_code"]),
            pool_length=int(r["pool_length"]),
            time_seconds=float(r["time_seconds"]),
            competition_date=r["competition_date"],
            swimmer_age=int(r["swimmer_age"]) if r["swimmer_age"] is not None else None,
        )
        for r in rows
    ]


def recalculate_records(con: sqlite3.Connection, *, chunk_size: int = INSERT_CHUNK_SIZE) -> RecalculateSummary:
    performances = load_performances(con)
    swimmers = load_roster(con, active_only=True)

    bests = compute_personal_bests(performances, swimmers)
    records = compute_club_records(bests)

    # Readers on other connections keep seeing the previous snapshot until commit.
    con.commit()
    with con:
        ids = store.replace_performance_bests(
            con=con,
            rows=(_best_row(b) for b in bests),
            chunk_size=chunk_size,
        )
        for rec in records:
            c = rec.category
            store.upsert_club_record(
                con=con,
                performance_id=ids[(rec.swimmer_iuf, c.pool_length, c.sex, c.age_bracket, c.event_code)],
                swimmer_iuf=rec.swimmer_iuf,
                athlete_name=rec.athlete_name,
                sex=c.sex,
                pool_length=c.pool_length,
                event_code=c.event_code,
                event_label=event_label(c.event_code),
                age_bracket=c.age_bracket,
                time_seconds=rec.time_seconds,
                time_display=format_time_display(rec.time_seconds),
                record_date=rec.record_date,
            )
        store.detach_stale_club_records(con=con)

    by_iuf = {s.iuf: s for s in swimmers if s.iuf}
    used = sum(1 for p in performances if category_key(p, by_iuf.get(p.swimmer_iuf)) is not None)
    logger.info(
        "Recalculated records: %d performances (%d usable), %d personal bests, %d club records",
        len(performances),
        used,
        len(bests),
        len(records),
    )
    return RecalculateSummary(
        performances_seen=len(performances),
        performances_used=used,
        personal_bests=len(bests),
        club_records=len(records),
    )


def _best_row(b: PersonalBest) -> dict[str, object]:
    c = b.category
    return {
        "swimmer_iuf": b.swimmer_iuf,
        "athlete_name": b.athlete_name,
        "sex": c.sex,
        "pool_length": c.pool_length,
        "event_code": c.event_code,
        "event_label": event_label(c.event_code),
        "age_bracket": c.age_bracket,
        "time_seconds": b.time_seconds,
        "time_display": format_time_display(b.time_seconds),
        "record_date": b.record_date,
        "performance_id": b.performance_id,
        "source": PERFORMANCE_SOURCE,
    }
