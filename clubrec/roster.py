from __future__ import annotations

import csv
import re
import sqlite3
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Mapping, Optional

from . import db as store
from .util import clean_text, parse_date, parse_iso_date


_IUF_RE = re.compile(r"^\d{5,10}$")

_SEX_ALIASES = {
    "m": "M",
    "h": "M",  # homme
    "male": "M",
    "f": "F",
    "female": "F",
}

_TRUE_STRINGS = {"1", "true", "yes", "y", "oui", "t"}
_FALSE_STRINGS = {"0", "false", "no", "n", "non", "f"}


class RosterError(ValueError):
    pass


@dataclass(frozen=True)
class Swimmer:
    iuf: Optional[str]
    display_name: str
    sex: Optional[str]  # "M" | "F"
    birthdate: Optional[date]
    is_active: bool = True
    last_imported_at: Optional[str] = None


def swimmer_from_row(row: Mapping[str, Any]) -> Swimmer:
    """Build a Swimmer from a loosely-typed mapping (store row, CSV line, JSON object)."""
    data = {str(k).strip().lower(): v for k, v in dict(row).items()}

    iuf_raw = _first(data, "iuf", "swimmer_iuf", "idrch_id")
    iuf = clean_text(str(iuf_raw)) if iuf_raw is not None else ""
    if iuf and not _IUF_RE.match(iuf):
        raise RosterError(f"Invalid IUF {iuf_raw!r} (expected 5 to 10 digits)")

    name = clean_text(str(_first(data, "display_name", "name", "athlete_name") or ""))
    if not name:
        raise RosterError("Swimmer is missing a display name")

    sex_raw = clean_text(str(_first(data, "sex", "gender") or "")).lower()
    sex: Optional[str] = None
    if sex_raw:
        sex = _SEX_ALIASES.get(sex_raw)
        if sex is None:
            raise RosterError(f"Unknown sex value {sex_raw!r} for {name}")

    return Swimmer(
        iuf=iuf or None,
        display_name=name,
        sex=sex,
        birthdate=_parse_birthdate(_first(data, "birthdate", "birth_date", "date_of_birth")),
        is_active=_parse_bool(_first(data, "is_active", "active"), default=True),
        last_imported_at=_first(data, "last_imported_at"),
    )


def load_roster(con: sqlite3.Connection, *, active_only: bool = True) -> list[Swimmer]:
    where = "WHERE is_active = 1" if active_only else ""
    rows = con.execute(
        f"""
        SELECT iuf, display_name, sex, birthdate, is_active, last_imported_at
        FROM swimmers
        {where}
        ORDER BY id
        """
    ).fetchall()
    return [swimmer_from_row(r) for r in (dict(row) for row in rows)]


def find_swimmer(con: sqlite3.Connection, iuf: str) -> Optional[Swimmer]:
    row = con.execute(
        "SELECT iuf, display_name, sex, birthdate, is_active, last_imported_at FROM swimmers WHERE iuf = ?",
        (iuf,),
    ).fetchone()
    return swimmer_from_row(dict(row)) if row else None


def save_swimmer(con: sqlite3.Connection, swimmer: Swimmer) -> int:
    return store.upsert_swimmer(
        con=con,
        iuf=swimmer.iuf,
        display_name=swimmer.display_name,
        sex=swimmer.sex,
        birthdate=swimmer.birthdate.isoformat() if swimmer.birthdate else None,
        is_active=swimmer.is_active,
    )


def import_roster_csv(con: sqlite3.Connection, path: Path) -> int:
    """Upsert every line of a roster CSV (header row required). Returns swimmers saved."""
    with path.open(newline="", encoding="utf-8-sig") as fh:
        reader = csv.DictReader(fh, delimiter=_sniff_delimiter(path))
        swimmers = [swimmer_from_row(line) for line in reader if any((v or "").strip() for v in line.values())]
    for swimmer in swimmers:
        save_swimmer(con, swimmer)
    con.commit()
    return len(swimmers)


def mark_imported(con: sqlite3.Connection, *, iuf: str, when: str) -> None:
    store.set_last_imported(con=con, iuf=iuf, when=when)


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _parse_birthdate(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    text = clean_text(str(value))
    if not text:
        return None
    parsed = parse_iso_date(text)
    if parsed is None:
        iso = parse_date(text)
        parsed = parse_iso_date(iso) if iso else None
    if parsed is None:
        raise RosterError(f"Invalid birthdate {value!r}")
    return parsed


def _parse_bool(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if not text:
        return default
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise RosterError(f"Invalid active flag {value!r}")


def _sniff_delimiter(path: Path) -> str:
    with path.open(encoding="utf-8-sig") as fh:
        header = fh.readline()
    return ";" if header.count(";") > header.count(",") else ","
