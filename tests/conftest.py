from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Optional

import pytest

from clubrec import db
from clubrec.ffn import ParsedPerformance
from clubrec.roster import Swimmer, save_swimmer


@pytest.fixture
def con():
    conn = db.connect(Path(":memory:"))
    db.init_db(conn)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def make_perf():
    def _make(
        event_name: str = "100 NL",
        time_seconds: float = 62.10,
        *,
        pool_length: int = 25,
        competition_date: Optional[str] = "2023-03-12",
        swimmer_age: Optional[int] = None,
        competition_name: Optional[str] = "Meeting de Lyon",
        ffn_points: Optional[int] = None,
    ) -> ParsedPerformance:
        return ParsedPerformance(
            event_name=event_name,
            pool_length=pool_length,
            time_seconds=time_seconds,
            competition_date=competition_date,
            ffn_points=ffn_points,
            competition_name=competition_name,
            competition_location=None,
            swimmer_age=swimmer_age,
        )

    return _make


@pytest.fixture
def add_swimmer(con):
    def _add(
        iuf: Optional[str],
        name: str,
        *,
        sex: Optional[str] = "F",
        birthdate: Optional[date] = date(2010, 6, 1),
        is_active: bool = True,
    ) -> int:
        swimmer_id = save_swimmer(
            con,
            Swimmer(iuf=iuf, display_name=name, sex=sex, birthdate=birthdate, is_active=is_active),
        )
        con.commit()
        return swimmer_id

    return _add
