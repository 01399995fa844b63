from datetime import datetime, timezone

import pytest

from clubrec import db
from clubrec.audit import (
    Caller,
    InvalidTransition,
    QuotaExceeded,
    check_import_quota,
    finish_import_log_error,
    finish_import_log_success,
    month_start,
    start_import_log,
)
from clubrec.config import ImportQuotas


NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def _log(con, user_id, started_at, status="success"):
    db.insert_import_log(
        con=con,
        triggered_by=user_id,
        swimmer_iuf="1234567",
        swimmer_name="Alice",
        import_type="performances",
        status=status,
        started_at=started_at,
    )
    con.commit()


def test_month_start():
    assert month_start(NOW) == datetime(2024, 3, 1, tzinfo=timezone.utc)


class TestImportQuota:
    def test_coach_over_quota_is_rejected(self, con):
        for day in ("01", "05", "14"):
            _log(con, 7, f"2024-03-{day}T10:00:00+00:00")

        with pytest.raises(QuotaExceeded):
            check_import_quota(con, Caller(role="coach", user_id=7), ImportQuotas(coach=3), now=NOW)

    def test_last_month_and_other_users_do_not_count(self, con):
        _log(con, 7, "2024-02-28T10:00:00+00:00")
        _log(con, 7, "2024-02-29T23:59:59+00:00")
        _log(con, 8, "2024-03-02T10:00:00+00:00")
        _log(con, 7, "2024-03-02T10:00:00+00:00")

        check_import_quota(con, Caller(role="coach", user_id=7), ImportQuotas(coach=2), now=NOW)

    def test_unlimited_quota(self, con):
        for _ in range(5):
            _log(con, 7, "2024-03-02T10:00:00+00:00")
        check_import_quota(con, Caller(role="coach", user_id=7), ImportQuotas(coach=-1), now=NOW)

    def test_admin_is_never_limited(self, con):
        for _ in range(5):
            _log(con, 1, "2024-03-02T10:00:00+00:00")
        check_import_quota(con, Caller(role="admin", user_id=1), ImportQuotas(coach=0, default=0), now=NOW)

    def test_other_roles_use_default_quota(self, con):
        _log(con, 9, "2024-03-02T10:00:00+00:00")
        with pytest.raises(QuotaExceeded):
            check_import_quota(con, Caller(role="viewer", user_id=9), ImportQuotas(default=1), now=NOW)


class TestImportLog:
    def test_success_lifecycle(self, con):
        log_id = start_import_log(con, triggered_by=7, swimmer_iuf="1234567", swimmer_name="Alice", now=NOW)
        assert con.execute("SELECT status FROM import_logs WHERE id = ?", (log_id,)).fetchone()["status"] == "running"

        finish_import_log_success(con, log_id, found=12, imported=4, now=NOW)

        row = con.execute("SELECT * FROM import_logs WHERE id = ?", (log_id,)).fetchone()
        assert row["status"] == "success"
        assert (row["performances_found"], row["performances_imported"]) == (12, 4)
        assert row["started_at"] == "2024-03-15T12:00:00+00:00"
        assert row["completed_at"] == "2024-03-15T12:00:00+00:00"
        assert row["import_type"] == "performances"

    def test_error_lifecycle(self, con):
        log_id = start_import_log(con, triggered_by=7, swimmer_iuf="1234567", swimmer_name="Alice", now=NOW)
        finish_import_log_error(con, log_id, message="HTTPError: 503", now=NOW)

        row = con.execute("SELECT status, error_message FROM import_logs WHERE id = ?", (log_id,)).fetchone()
        assert (row["status"], row["error_message"]) == ("error", "HTTPError: 503")

    def test_terminal_log_is_not_changed(self, con):
        log_id = start_import_log(con, triggered_by=7, swimmer_iuf="1234567", swimmer_name="Alice", now=NOW)
        finish_import_log_success(con, log_id, found=3, imported=3, now=NOW)

        with pytest.raises(InvalidTransition):
            finish_import_log_error(con, log_id, message="late failure", now=NOW)
        with pytest.raises(InvalidTransition):
            finish_import_log_success(con, log_id, found=9, imported=9, now=NOW)

        row = con.execute("SELECT status, error_message, performances_found FROM import_logs WHERE id = ?", (log_id,)).fetchone()
        assert (row["status"], row["error_message"], row["performances_found"]) == ("success", None, 3)
