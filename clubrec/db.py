from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Iterable, Optional

SCHEMA_VERSION = 2

SCHEMA = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    description TEXT
);

CREATE TABLE IF NOT EXISTS swimmers (
    id INTEGER PRIMARY KEY,
    iuf TEXT UNIQUE,
    display_name TEXT NOT NULL,
    sex TEXT CHECK(sex IN ('M','F')),
    birthdate TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_imported_at TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_swimmers_active ON swimmers(is_active);

CREATE TABLE IF NOT EXISTS swimmer_performances (
    id INTEGER PRIMARY KEY,
    swimmer_iuf TEXT NOT NULL,
    event_code TEXT NOT NULL,
    pool_length INTEGER NOT NULL CHECK(pool_length IN (25, 50)),
    time_seconds REAL NOT NULL,
    time_display TEXT,
    competition_name TEXT,
    competition_date TEXT,
    competition_location TEXT,
    ffn_points INTEGER,
    swimmer_age INTEGER,
    source TEXT NOT NULL,
    imported_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_performances_swimmer ON swimmer_performances(swimmer_iuf);

CREATE TABLE IF NOT EXISTS club_performance_bests (
    id INTEGER PRIMARY KEY,
    swimmer_iuf TEXT NOT NULL,
    athlete_name TEXT NOT NULL,
    sex TEXT NOT NULL,
    pool_length INTEGER NOT NULL,
    event_code TEXT NOT NULL,
    event_label TEXT,
    age_bracket INTEGER NOT NULL,
    time_seconds REAL NOT NULL,
    time_display TEXT NOT NULL,
    record_date TEXT,
    performance_id INTEGER,
    source TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(swimmer_iuf, pool_length, sex, age_bracket, event_code)
);
CREATE INDEX IF NOT EXISTS idx_bests_filters ON club_performance_bests(pool_length, sex, age_bracket, event_code);

CREATE TABLE IF NOT EXISTS club_records (
    id INTEGER PRIMARY KEY,
    performance_id INTEGER,
    swimmer_iuf TEXT NOT NULL,
    athlete_name TEXT NOT NULL,
    sex TEXT NOT NULL,
    pool_length INTEGER NOT NULL,
    event_code TEXT NOT NULL,
    event_label TEXT,
    age_bracket INTEGER NOT NULL,
    time_seconds REAL NOT NULL,
    time_display TEXT NOT NULL,
    record_date TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(pool_length, sex, age_bracket, event_code)
);

-- Per-swimmer best FFN time per raw event label and pool, kept only when faster.
CREATE TABLE IF NOT EXISTS swim_records (
    id INTEGER PRIMARY KEY,
    swimmer_iuf TEXT NOT NULL,
    event_name TEXT NOT NULL,
    pool_length INTEGER NOT NULL CHECK(pool_length IN (25, 50)),
    time_seconds REAL NOT NULL,
    record_date TEXT,
    record_type TEXT NOT NULL DEFAULT 'comp',
    notes TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(swimmer_iuf, event_name, pool_length)
);

CREATE TABLE IF NOT EXISTS import_logs (
    id INTEGER PRIMARY KEY,
    triggered_by INTEGER,
    swimmer_iuf TEXT,
    swimmer_name TEXT,
    import_type TEXT NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('pending','running','success','error')),
    performances_found INTEGER,
    performances_imported INTEGER,
    error_message TEXT,
    started_at TEXT NOT NULL,
    completed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_import_logs_user ON import_logs(triggered_by, started_at);
"""

# SQLite UNIQUE treats NULLs as distinct, so a missing competition date would never conflict.
PERFORMANCE_DEDUP_INDEX_SQL = """
CREATE UNIQUE INDEX IF NOT EXISTS uix_performances_dedup
ON swimmer_performances(
    swimmer_iuf,
    event_code,
    pool_length,
    IFNULL(competition_date, ''),
    time_seconds
);
"""

_PERFORMANCE_COLUMNS = (
    "swimmer_iuf",
    "event_code",
    "pool_length",
    "time_seconds",
    "time_display",
    "competition_name",
    "competition_date",
    "competition_location",
    "ffn_points",
    "swimmer_age",
    "source",
)

_BEST_COLUMNS = (
    "swimmer_iuf",
    "athlete_name",
    "sex",
    "pool_length",
    "event_code",
    "event_label",
    "age_bracket",
    "time_seconds",
    "time_display",
    "record_date",
    "performance_id",
    "source",
)


def connect(db_path: Path) -> sqlite3.Connection:
    if str(db_path) != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(db_path)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys = ON;")
    return con


_CLUB_RECORD_COLUMNS = (
    "id",
    "performance_id",
    "swimmer_iuf",
    "athlete_name",
    "sex",
    "pool_length",
    "event_code",
    "event_label",
    "age_bracket",
    "time_seconds",
    "time_display",
    "record_date",
    "created_at",
    "updated_at",
)


def _not_null_columns(con: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in con.execute(f"PRAGMA table_info({table})").fetchall() if row[3]}


def _migrate_to_v2(con: sqlite3.Connection) -> None:
    """club_records.performance_id became nullable; SQLite needs a table rebuild for that."""
    if "performance_id" not in _not_null_columns(con, "club_records"):
        return
    cols = ", ".join(_CLUB_RECORD_COLUMNS)
    con.execute("ALTER TABLE club_records RENAME TO club_records_v1")
    con.executescript(SCHEMA)
    con.execute(f"INSERT INTO club_records ({cols}) SELECT {cols} FROM club_records_v1")
    con.execute("DROP TABLE club_records_v1")


def init_db(con: sqlite3.Connection) -> None:
    con.executescript(SCHEMA)
    # Migrate existing tables that CREATE TABLE IF NOT EXISTS won't touch.
    _migrate_to_v2(con)
    con.executescript(PERFORMANCE_DEDUP_INDEX_SQL)
    row = con.execute("SELECT MAX(version) AS v FROM schema_version").fetchone()
    if row["v"] is None or row["v"] < SCHEMA_VERSION:
        con.execute(
            "INSERT INTO schema_version (version, description) VALUES (?, ?)",
            (SCHEMA_VERSION, "Nullable club record reference, swim_records"),
        )
    con.commit()


def upsert_swimmer(
    *,
    con: sqlite3.Connection,
    iuf: str | None,
    display_name: str,
    sex: str | None,
    birthdate: str | None,
    is_active: bool = True,
) -> int:
    if iuf is None:
        cur = con.execute(
            "INSERT INTO swimmers (iuf, display_name, sex, birthdate, is_active) VALUES (NULL, ?, ?, ?, ?)",
            (display_name, sex, birthdate, int(bool(is_active))),
        )
        return int(cur.lastrowid)
    con.execute(
        """
        INSERT INTO swimmers (iuf, display_name, sex, birthdate, is_active)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(iuf) DO UPDATE SET
            display_name=excluded.display_name,
            sex=COALESCE(excluded.sex, swimmers.sex),
            birthdate=COALESCE(excluded.birthdate, swimmers.birthdate),
            is_active=excluded.is_active,
            updated_at=CURRENT_TIMESTAMP
        """,
        (iuf, display_name, sex, birthdate, int(bool(is_active))),
    )
    row = con.execute("SELECT id FROM swimmers WHERE iuf = ?", (iuf,)).fetchone()
    if not row:
        raise RuntimeError("Failed to upsert swimmer")
    return int(row["id"])


def set_last_imported(*, con: sqlite3.Connection, iuf: str, when: str) -> None:
    con.execute(
        "UPDATE swimmers SET last_imported_at = ?, updated_at = CURRENT_TIMESTAMP WHERE iuf = ?",
        (when, iuf),
    )


def insert_performances_ignore(*, con: sqlite3.Connection, rows: list[dict[str, Any]]) -> int:
    """Insert rows, leaving already-stored performances untouched. Returns rows actually inserted."""
    if not rows:
        return 0
    placeholders = ", ".join("?" for _ in _PERFORMANCE_COLUMNS)
    before = con.total_changes
    con.executemany(
        f"""
        INSERT INTO swimmer_performances ({", ".join(_PERFORMANCE_COLUMNS)})
        VALUES ({placeholders})
        ON CONFLICT DO NOTHING
        """,
        [tuple(row.get(col) for col in _PERFORMANCE_COLUMNS) for row in rows],
    )
    return con.total_changes - before


def replace_performance_bests(
    *,
    con: sqlite3.Connection,
    rows: Iterable[dict[str, Any]],
    chunk_size: int = 100,
) -> dict[tuple[str, int, str, int, str], int]:
    """Replace the whole bests table. Caller owns the transaction.

    Returns the new row id per (swimmer_iuf, pool_length, sex, age_bracket, event_code).
    """
    con.execute("DELETE FROM club_performance_bests")
    placeholders = ", ".join("?" for _ in _BEST_COLUMNS)
    sql = f"INSERT INTO club_performance_bests ({', '.join(_BEST_COLUMNS)}) VALUES ({placeholders})"
    batch: list[tuple[Any, ...]] = []
    for row in rows:
        batch.append(tuple(row.get(col) for col in _BEST_COLUMNS))
        if len(batch) >= chunk_size:
            con.executemany(sql, batch)
            batch = []
    if batch:
        con.executemany(sql, batch)

    ids: dict[tuple[str, int, str, int, str], int] = {}
    for r in con.execute(
        "SELECT id, swimmer_iuf, pool_length, sex, age_bracket, event_code FROM club_performance_bests"
    ).fetchall():
        ids[(r["swimmer_iuf"], int(r["pool_length"]), r["sex"], int(r["age_bracket"]), r["event_code"])] = int(r["id"])
    return ids


def upsert_club_record(
    *,
    con: sqlite3.Connection,
    performance_id: int,
    swimmer_iuf: str,
    athlete_name: str,
    sex: str,
    pool_length: int,
    event_code: str,
    event_label: str | None,
    age_bracket: int,
    time_seconds: float,
    time_display: str,
    record_date: str | None,
) -> None:
    con.execute(
        """
        INSERT INTO club_records (
            performance_id, swimmer_iuf, athlete_name, sex, pool_length, event_code,
            event_label, age_bracket, time_seconds, time_display, record_date
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(pool_length, sex, age_bracket, event_code) DO UPDATE SET
            performance_id=excluded.performance_id,
            swimmer_iuf=excluded.swimmer_iuf,
            athlete_name=excluded.athlete_name,
            event_label=excluded.event_label,
            time_seconds=excluded.time_seconds,
            time_display=excluded.time_display,
            record_date=excluded.record_date,
            updated_at=CURRENT_TIMESTAMP
        WHERE club_records.performance_id IS NOT excluded.performance_id
           OR club_records.swimmer_iuf IS NOT excluded.swimmer_iuf
           OR club_records.athlete_name IS NOT excluded.athlete_name
           OR club_records.event_label IS NOT excluded.event_label
           OR club_records.time_seconds IS NOT excluded.time_seconds
           OR club_records.time_display IS NOT excluded.time_display
           OR club_records.record_date IS NOT excluded.record_date
        """,
        (
            performance_id,
            swimmer_iuf,
            athlete_name,
            sex,
            pool_length,
            event_code,
            event_label,
            age_bracket,
            time_seconds,
            time_display,
            record_date,
        ),
    )


def detach_stale_club_records(*, con: sqlite3.Connection) -> int:
    """Clear the best-row reference of records whose category has no personal best left.

    Best row ids are reused after a swap, so a leftover id may point at another category's row.
    """
    cur = con.execute(
        """
        UPDATE club_records SET performance_id = NULL, updated_at = CURRENT_TIMESTAMP
        WHERE performance_id IS NOT NULL
          AND NOT EXISTS (
            SELECT 1 FROM club_performance_bests b
            WHERE b.id = club_records.performance_id
              AND b.swimmer_iuf = club_records.swimmer_iuf
              AND b.pool_length = club_records.pool_length
              AND b.sex = club_records.sex
              AND b.age_bracket = club_records.age_bracket
              AND b.event_code = club_records.event_code
          )
        """
    )
    return cur.rowcount


def get_swim_record(
    *,
    con: sqlite3.Connection,
    swimmer_iuf: str,
    event_name: str,
    pool_length: int,
) -> Optional[sqlite3.Row]:
    return con.execute(
        """
        SELECT id, time_seconds FROM swim_records
        WHERE swimmer_iuf = ? AND event_name = ? AND pool_length = ?
        """,
        (swimmer_iuf, event_name, int(pool_length)),
    ).fetchone()


def insert_swim_record(
    *,
    con: sqlite3.Connection,
    swimmer_iuf: str,
    event_name: str,
    pool_length: int,
    time_seconds: float,
    record_date: str | None,
    notes: str | None,
) -> int:
    cur = con.execute(
        """
        INSERT INTO swim_records (swimmer_iuf, event_name, pool_length, time_seconds, record_date, record_type, notes)
        VALUES (?, ?, ?, ?, ?, 'comp', ?)
        """,
        (swimmer_iuf, event_name, int(pool_length), time_seconds, record_date, notes),
    )
    return int(cur.lastrowid)


def update_swim_record_if_faster(
    *,
    con: sqlite3.Connection,
    record_id: int,
    time_seconds: float,
    record_date: str | None,
    notes: str | None,
) -> bool:
    """Overwrite a stored record only with a strictly faster time. True when the row changed."""
    cur = con.execute(
        """
        UPDATE swim_records SET
            time_seconds = ?,
            record_date = ?,
            record_type = 'comp',
            notes = ?,
            updated_at = CURRENT_TIMESTAMP
        WHERE id = ? AND time_seconds > ?
        """,
        (time_seconds, record_date, notes, record_id, time_seconds),
    )
    return cur.rowcount == 1


def insert_import_log(
    *,
    con: sqlite3.Connection,
    triggered_by: int | None,
    swimmer_iuf: str | None,
    swimmer_name: str | None,
    import_type: str,
    status: str,
    started_at: str,
) -> int:
    cur = con.execute(
        """
        INSERT INTO import_logs (triggered_by, swimmer_iuf, swimmer_name, import_type, status, started_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (triggered_by, swimmer_iuf, swimmer_name, import_type, status, started_at),
    )
    return int(cur.lastrowid)


def update_import_log(
    *,
    con: sqlite3.Connection,
    log_id: int,
    from_status: str,
    status: str,
    completed_at: Optional[str] = None,
    performances_found: Optional[int] = None,
    performances_imported: Optional[int] = None,
    error_message: Optional[str] = None,
) -> bool:
    """Move a log row from one status to another. False when the row is not in `from_status`."""
    cur = con.execute(
        """
        UPDATE import_logs SET
            status = ?,
            completed_at = COALESCE(?, completed_at),
            performances_found = COALESCE(?, performances_found),
            performances_imported = COALESCE(?, performances_imported),
            error_message = COALESCE(?, error_message)
        WHERE id = ? AND status = ?
        """,
        (status, completed_at, performances_found, performances_imported, error_message, log_id, from_status),
    )
    return cur.rowcount == 1


def count_import_logs_since(*, con: sqlite3.Connection, triggered_by: int, since: str) -> int:
    row = con.execute(
        "SELECT COUNT(*) AS n FROM import_logs WHERE triggered_by = ? AND started_at >= ?",
        (triggered_by, since),
    ).fetchone()
    return int(row["n"] or 0)
