from __future__ import annotations

import csv
import sqlite3
from pathlib import Path
from typing import Any, Optional

from .event_mapping import event_sort_key


DEFAULT_LOG_LIMIT = 50


def club_records(
    *,
    con: sqlite3.Connection,
    pool_length: Optional[int] = None,
    sex: Optional[str] = None,
    age_bracket: Optional[int] = None,
    event_code: Optional[str] = None,
) -> list[dict[str, Any]]:
    where_parts: list[str] = []
    params: list[object] = []
    if pool_length:
        where_parts.append("pool_length = ?")
        params.append(int(pool_length))
    if sex:
        where_parts.append("sex = ?")
        params.append(sex)
    if age_bracket:
        where_parts.append("age_bracket = ?")
        params.append(int(age_bracket))
    if event_code:
        where_parts.append("event_code = ?")
        params.append(event_code)
    where = ("WHERE " + " AND ".join(where_parts)) if where_parts else ""

    rows = con.execute(
        f"""
        SELECT id, performance_id, swimmer_iuf, athlete_name, sex, pool_length, event_code,
               event_label, age_bracket, time_seconds, time_display, record_date, updated_at
        FROM club_records
        {where}
        """,
        params,
    ).fetchall()
    out = [dict(r) for r in rows]
    out.sort(key=lambda r: (r["pool_length"], r["sex"], event_sort_key(r["event_code"]), r["age_bracket"]))
    return out


def personal_bests(*, con: sqlite3.Connection, swimmer_iuf: str) -> list[dict[str, Any]]:
    rows = con.execute(
        """
        SELECT swimmer_iuf, athlete_name, sex, pool_length, event_code, event_label,
               age_bracket, time_seconds, time_display, record_date
        FROM club_performance_bests
        WHERE swimmer_iuf = ?
        """,
        (swimmer_iuf,),
    ).fetchall()
    out = [dict(r) for r in rows]
    out.sort(key=lambda r: (r["pool_length"], event_sort_key(r["event_code"]), r["age_bracket"]))
    return out


def swim_records(*, con: sqlite3.Connection, swimmer_iuf: str) -> list[dict[str, Any]]:
    rows = con.execute(
        """
        SELECT swimmer_iuf, event_name, pool_length, time_seconds, record_date, record_type, notes, updated_at
        FROM swim_records
        WHERE swimmer_iuf = ?
        ORDER BY pool_length, event_name
        """,
        (swimmer_iuf,),
    ).fetchall()
    return [dict(r) for r in rows]


def import_logs(
    *,
    con: sqlite3.Connection,
    swimmer_iuf: Optional[str] = None,
    limit: int = DEFAULT_LOG_LIMIT,
) -> list[dict[str, Any]]:
    params: list[object] = []
    where = ""
    if swimmer_iuf:
        where = "WHERE swimmer_iuf = ?"
        params.append(swimmer_iuf)
    params.append(max(1, min(int(limit), 500)))
    rows = con.execute(
        f"""
        SELECT id, triggered_by, swimmer_iuf, swimmer_name, import_type, status,
               performances_found, performances_imported, error_message, started_at, completed_at
        FROM import_logs
        {where}
        ORDER BY started_at DESC, id DESC
        LIMIT ?
        """,
        params,
    ).fetchall()
    return [dict(r) for r in rows]


def write_club_records_csv(rows: list[dict[str, Any]], out_path: Path) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fieldnames = ["pool_length", "sex", "event_code", "event_label", "age_bracket", "time_display", "athlete_name", "record_date"]
    with out_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
        writer.writeheader()
        for r in rows:
            writer.writerow(r)
