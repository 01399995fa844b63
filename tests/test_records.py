from __future__ import annotations

from datetime import date

from clubrec.ingest import ingest_performances
from clubrec.queries import club_records, personal_bests
from clubrec.records import (
    StoredPerformance,
    compute_club_records,
    compute_personal_bests,
    recalculate_records,
    resolve_age,
)
from clubrec.roster import Swimmer, save_swimmer


def _swimmer(iuf, name, *, sex="F", birthdate=date(2010, 6, 1), is_active=True):
    return Swimmer(iuf=iuf, display_name=name, sex=sex, birthdate=birthdate, is_active=is_active)


def _perf(pid, iuf, time_seconds, *, event="100 NL", pool=25, day="2023-03-12", age=None):
    return StoredPerformance(
        id=pid,
        swimmer_iuf=iuf,
        event_code=event,
        pool_length=pool,
        time_seconds=time_seconds,
        competition_date=day,
        swimmer_age=age,
    )


class TestComputePersonalBests:
    def test_keeps_fastest_time_per_category(self):
        bests = compute_personal_bests(
            [_perf(1, "1111111", 62.10), _perf(2, "1111111", 61.95, day="2023-05-02")],
            [_swimmer("1111111", "Alice")],
        )
        assert len(bests) == 1
        assert bests[0].time_seconds == 61.95
        assert bests[0].performance_id == 2
        assert bests[0].category.event_code == "100_FREE"
        assert bests[0].category.age_bracket == 12

    def test_age_is_clamped_to_brackets(self):
        swimmers = [_swimmer("1111111", "Alice", birthdate=date(2015, 1, 1)), _swimmer("2222222", "Bea", birthdate=date(2000, 1, 1))]
        bests = compute_personal_bests(
            [_perf(1, "1111111", 80.0, day="2022-06-01"), _perf(2, "2222222", 60.0, day="2020-06-01")],
            swimmers,
        )
        assert {b.swimmer_iuf: b.category.age_bracket for b in bests} == {"1111111": 8, "2222222": 17}

    def test_performance_without_age_is_excluded(self):
        swimmers = [_swimmer("1111111", "Alice", birthdate=None)]
        bests = compute_personal_bests(
            [_perf(1, "1111111", 62.0), _perf(2, "1111111", 63.0, day=None, age=14)],
            swimmers,
        )
        assert [(b.performance_id, b.category.age_bracket) for b in bests] == [(2, 14)]

    def test_explicit_age_does_not_need_a_date(self):
        assert resolve_age(_perf(1, "1111111", 60.0, day=None, age=11), _swimmer("1111111", "Alice")) == 11
        assert resolve_age(_perf(1, "1111111", 60.0, day=None), _swimmer("1111111", "Alice")) is None

    def test_unmapped_events_inactive_and_unsexed_swimmers_are_skipped(self):
        swimmers = [
            _swimmer("1111111", "Alice"),
            _swimmer("2222222", "Bea", is_active=False),
            _swimmer("3333333", "Cleo", sex=None),
        ]
        perfs = [
            _perf(1, "1111111", 120.0, event="4x50 NL"),
            _perf(2, "2222222", 60.0),
            _perf(3, "3333333", 60.0),
            _perf(4, "9999999", 60.0),
        ]
        assert compute_personal_bests(perfs, swimmers) == []

    def test_pools_and_ages_are_separate_categories(self):
        bests = compute_personal_bests(
            [
                _perf(1, "1111111", 62.0, pool=25, day="2022-09-01"),
                _perf(2, "1111111", 64.0, pool=50, day="2022-09-01"),
                _perf(3, "1111111", 61.0, pool=25, day="2023-09-01"),
            ],
            [_swimmer("1111111", "Alice")],
        )
        assert [(b.category.pool_length, b.category.age_bracket, b.time_seconds) for b in bests] == [
            (25, 12, 62.0),
            (25, 13, 61.0),
            (50, 12, 64.0),
        ]


class TestComputeClubRecords:
    def test_fastest_personal_best_wins(self):
        swimmers = [_swimmer("1111111", "Alice"), _swimmer("2222222", "Bea")]
        bests = compute_personal_bests(
            [_perf(1, "1111111", 62.10), _perf(2, "1111111", 61.95), _perf(3, "2222222", 60.80)],
            swimmers,
        )
        (record,) = compute_club_records(bests)
        assert (record.athlete_name, record.time_seconds) == ("Bea", 60.80)

    def test_tie_goes_to_earliest_date(self):
        swimmers = [_swimmer("2222222", "Bea"), _swimmer("1111111", "Alice")]
        bests = compute_personal_bests(
            [_perf(1, "2222222", 60.0, day="2023-04-01"), _perf(2, "1111111", 60.0, day="2023-02-01")],
            swimmers,
        )
        (record,) = compute_club_records(bests)
        assert record.swimmer_iuf == "1111111"

    def test_is_independent_of_input_order(self):
        swimmers = [_swimmer("1111111", "Alice"), _swimmer("2222222", "Bea")]
        perfs = [_perf(1, "1111111", 60.0), _perf(2, "2222222", 60.0), _perf(3, "1111111", 58.0, pool=50)]
        forward = compute_club_records(compute_personal_bests(perfs, swimmers))
        backward = compute_club_records(compute_personal_bests(list(reversed(perfs)), list(reversed(swimmers))))
        assert forward == backward


def _seed(con, make_perf):
    save_swimmer(con, _swimmer("1111111", "Alice"))
    save_swimmer(con, _swimmer("2222222", "Bea"))
    con.commit()
    ingest_performances(con=con, iuf="1111111", performances=[make_perf("100 NL", 62.10), make_perf("100 NL", 61.95)])
    ingest_performances(con=con, iuf="2222222", performances=[make_perf("100 NL", 60.80, competition_date="2023-03-20")])


class TestRecalculateRecords:
    def test_writes_bests_and_records(self, con, make_perf):
        _seed(con, make_perf)

        summary = recalculate_records(con)

        assert (summary.performances_seen, summary.personal_bests, summary.club_records) == (3, 2, 1)
        (record,) = club_records(con=con)
        assert record["athlete_name"] == "Bea"
        assert record["time_display"] == "1:00.80"
        assert record["event_label"] == "100 NL"
        assert record["age_bracket"] == 12
        assert record["record_date"] == "2023-03-20"
        assert [b["time_seconds"] for b in personal_bests(con=con, swimmer_iuf="1111111")] == [61.95]

    def test_record_points_at_stored_personal_best(self, con, make_perf):
        _seed(con, make_perf)
        recalculate_records(con)

        row = con.execute(
            """
            SELECT b.swimmer_iuf, b.time_seconds
            FROM club_records r JOIN club_performance_bests b ON b.id = r.performance_id
            """
        ).fetchone()
        assert (row["swimmer_iuf"], row["time_seconds"]) == ("2222222", 60.80)

    def test_recalculating_twice_gives_same_result(self, con, make_perf):
        _seed(con, make_perf)
        recalculate_records(con)
        first = [(r["swimmer_iuf"], r["time_seconds"]) for r in club_records(con=con)]
        recalculate_records(con)
        second = [(r["swimmer_iuf"], r["time_seconds"]) for r in club_records(con=con)]
        assert first == second
        assert con.execute("SELECT COUNT(*) AS n FROM club_performance_bests").fetchone()["n"] == 2

    def test_deactivated_swimmer_leaves_no_bests(self, con, make_perf):
        _seed(con, make_perf)
        recalculate_records(con)

        save_swimmer(con, _swimmer("2222222", "Bea", is_active=False))
        con.commit()
        recalculate_records(con)

        assert personal_bests(con=con, swimmer_iuf="2222222") == []
        (record,) = club_records(con=con)
        assert (record["athlete_name"], record["time_seconds"]) == ("Alice", 61.95)

    def test_record_survives_when_its_category_empties(self, con, make_perf):
        _seed(con, make_perf)
        recalculate_records(con)

        for iuf, name in (("1111111", "Alice"), ("2222222", "Bea")):
            save_swimmer(con, _swimmer(iuf, name, is_active=False))
        con.commit()
        summary = recalculate_records(con)

        assert summary.personal_bests == 0
        (record,) = club_records(con=con)
        assert record["athlete_name"] == "Bea"

    def test_emptied_category_record_does_not_point_at_another_category(self, con, make_perf):
        save_swimmer(con, _swimmer("1111111", "Alice"))
        save_swimmer(con, _swimmer("2222222", "Bea"))
        con.commit()
        ingest_performances(con=con, iuf="1111111", performances=[make_perf("100 NL", 61.95)])
        ingest_performances(con=con, iuf="2222222", performances=[make_perf("50 Dos", 34.20)])
        recalculate_records(con)

        save_swimmer(con, _swimmer("1111111", "Alice", is_active=False))
        con.commit()
        recalculate_records(con)

        rows = con.execute(
            """
            SELECT r.event_code, r.performance_id, b.event_code AS best_event, b.swimmer_iuf AS best_iuf
            FROM club_records r LEFT JOIN club_performance_bests b ON b.id = r.performance_id
            ORDER BY r.event_code
            """
        ).fetchall()
        by_event = {r["event_code"]: r for r in rows}
        assert set(by_event) == {"100_FREE", "50_BACK"}
        assert by_event["100_FREE"]["performance_id"] is None
        assert by_event["100_FREE"]["best_event"] is None
        assert (by_event["50_BACK"]["best_event"], by_event["50_BACK"]["best_iuf"]) == ("50_BACK", "2222222")

    def test_unchanged_rerun_leaves_record_rows_untouched(self, con, make_perf):
        _seed(con, make_perf)
        recalculate_records(con)
        con.execute("UPDATE club_records SET updated_at = '2000-01-01 00:00:00'")
        con.commit()
        before = [tuple(r) for r in con.execute("SELECT * FROM club_records ORDER BY id").fetchall()]

        recalculate_records(con)

        after = [tuple(r) for r in con.execute("SELECT * FROM club_records ORDER BY id").fetchall()]
        assert after == before
        assert after[0][-1] == "2000-01-01 00:00:00"
