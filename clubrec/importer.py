from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from . import db as store
from .audit import (
    Caller,
    check_import_quota,
    finish_import_log_error,
    finish_import_log_success,
    start_import_log,
    to_iso,
    utcnow,
)
from .config import POLITE_DELAY_S, ImportQuotas
from .ffn import FetchPerformances, best_per_event, fetch_all_performances, validate_iuf
from .ingest import IngestSummary, ingest_performances
from .records import recalculate_records
from .roster import find_swimmer, load_roster, mark_imported


logger = logging.getLogger(__name__)

FULL = "full"
RECALCULATE = "recalculate"

ALLOWED_ROLES = ("coach", "admin")


class PermissionDenied(Exception):
    pass


@dataclass(frozen=True)
class ImportSummary:
    imported: int
    errors: int
    swimmers_processed: int
    mode: str = FULL

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "imported": self.imported,
            "errors": self.errors,
            "swimmers_processed": self.swimmers_processed,
        }
        if self.mode == RECALCULATE:
            out["mode"] = RECALCULATE
        return out


def parse_mode(body: Optional[Mapping[str, Any]]) -> str:
    if isinstance(body, Mapping) and body.get("mode") == RECALCULATE:
        return RECALCULATE
    return FULL


def check_role(caller: Caller) -> None:
    if not caller.role or caller.user_id is None:
        raise PermissionDenied("User has no app role assigned")
    if caller.role not in ALLOWED_ROLES:
        raise PermissionDenied("Forbidden: coach or admin only")


def run_import(
    con: sqlite3.Connection,
    caller: Caller,
    *,
    mode: str = FULL,
    quotas: ImportQuotas = ImportQuotas(),
    fetch: FetchPerformances = fetch_all_performances,
    sleep: Callable[[float], None] = time.sleep,
    polite_delay_s: float = POLITE_DELAY_S,
    now: Optional[Callable[[], datetime]] = None,
) -> ImportSummary:
    """Run one import.

    recalculate: rebuild personal bests and club records from stored performances.
    full: fetch, store and log every active swimmer one at a time, then rebuild.

    Per-swimmer failures are logged and counted; sqlite3 errors abort the run.
    """
    clock = now or utcnow
    check_role(caller)

    if mode == RECALCULATE:
        recalculate_records(con)
        return ImportSummary(imported=0, errors=0, swimmers_processed=0, mode=RECALCULATE)

    check_import_quota(con, caller, quotas, now=clock())

    swimmers = [s for s in load_roster(con, active_only=True) if s.iuf]
    total_imported = 0
    total_errors = 0
    for i, swimmer in enumerate(swimmers):
        iuf = str(swimmer.iuf)
        log_id = start_import_log(
            con,
            triggered_by=caller.user_id,
            swimmer_iuf=iuf,
            swimmer_name=swimmer.display_name,
            now=clock(),
        )
        try:
            performances = fetch(iuf)
            res = ingest_performances(con=con, iuf=iuf, performances=performances)
        except sqlite3.Error:
            raise
        except Exception as exc:  # noqa: BLE001 - one swimmer must not stop the run
            total_errors += 1
            logger.error("Import failed for swimmer %s (%s): %s", iuf, swimmer.display_name, exc)
            finish_import_log_error(con, log_id, message=f"{type(exc).__name__}: {exc}", now=clock())
        else:
            total_imported += res.imported
            finish_import_log_success(con, log_id, found=res.found, imported=res.imported, now=clock())
            mark_imported(con, iuf=iuf, when=to_iso(clock()))
            con.commit()
            logger.info("Imported %s (%s): %d found, %d new", iuf, swimmer.display_name, res.found, res.imported)

        if i < len(swimmers) - 1:
            sleep(max(0.0, polite_delay_s))

    recalculate_records(con)
    return ImportSummary(imported=total_imported, errors=total_errors, swimmers_processed=len(swimmers))


def import_single_swimmer(
    con: sqlite3.Connection,
    iuf: str,
    *,
    fetch: FetchPerformances = fetch_all_performances,
) -> IngestSummary:
    """Fetch and store one swimmer's performances, without logging or recomputing records."""
    iuf = validate_iuf(iuf)
    return ingest_performances(con=con, iuf=iuf, performances=fetch(iuf))


@dataclass(frozen=True)
class SyncSummary:
    inserted: int
    updated: int
    skipped: int

    def as_dict(self) -> dict[str, Any]:
        return {"inserted": self.inserted, "updated": self.updated, "skipped": self.skipped}


def sync_personal_records(
    con: sqlite3.Connection,
    iuf: str,
    *,
    athlete_name: Optional[str] = None,
    fetch: FetchPerformances = fetch_all_performances,
) -> SyncSummary:
    """Keep one best FFN time per (event, pool) for a swimmer in swim_records.

    A stored time is only replaced by a strictly faster one. Events are kept under
    their raw FFN label, so this works for swimmers outside the club roster too.
    """
    iuf = validate_iuf(iuf)
    if athlete_name is None:
        swimmer = find_swimmer(con, iuf)
        athlete_name = swimmer.display_name if swimmer else None

    bests = best_per_event(fetch(iuf))
    if not bests:
        logger.info("No FFN records found for IUF %s", iuf)
        return SyncSummary(inserted=0, updated=0, skipped=0)

    inserted = updated = skipped = 0
    with con:
        for rec in bests:
            notes = _sync_notes(athlete_name, rec.ffn_points)
            existing = store.get_swim_record(
                con=con, swimmer_iuf=iuf, event_name=rec.event_name, pool_length=rec.pool_length
            )
            if existing is None:
                store.insert_swim_record(
                    con=con,
                    swimmer_iuf=iuf,
                    event_name=rec.event_name,
                    pool_length=rec.pool_length,
                    time_seconds=rec.time_seconds,
                    record_date=rec.competition_date,
                    notes=notes,
                )
                inserted += 1
            elif store.update_swim_record_if_faster(
                con=con,
                record_id=int(existing["id"]),
                time_seconds=rec.time_seconds,
                record_date=rec.competition_date,
                notes=notes,
            ):
                updated += 1
            else:
                skipped += 1

    logger.info("Synced records for %s: %d inserted, %d updated, %d skipped", iuf, inserted, updated, skipped)
    return SyncSummary(inserted=inserted, updated=updated, skipped=skipped)


def _sync_notes(athlete_name: Optional[str], ffn_points: Optional[int]) -> Optional[str]:
    parts = []
    if athlete_name:
        parts.append(f"Nageur: {athlete_name}")
    if ffn_points:
        parts.append(f"{ffn_points} pts FFN")
    return " | ".join(parts) or None
