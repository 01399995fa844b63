"""
Monthly import quotas and the per-swimmer import log.

Log rows move pending -> running -> success | error and are never touched
again once terminal; every update is conditioned on the current status.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from . import db as store
from .config import IMPORT_TYPE, ImportQuotas


logger = logging.getLogger(__name__)

PENDING = "pending"
RUNNING = "running"
SUCCESS = "success"
ERROR = "error"

UNLIMITED = -1


class QuotaExceeded(Exception):
    pass


class InvalidTransition(Exception):
    pass


@dataclass(frozen=True)
class Caller:
    role: Optional[str]
    user_id: Optional[int]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def month_start(now: datetime) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def check_import_quota(
    con: sqlite3.Connection,
    caller: Caller,
    quotas: ImportQuotas,
    *,
    now: Optional[datetime] = None,
) -> None:
    """Raise QuotaExceeded when the caller already used this month's full imports."""
    role = caller.role or ""
    if role == "admin":
        return
    quota = quotas.for_role(role)
    if quota == UNLIMITED:
        return
    since = to_iso(month_start(now or utcnow()))
    used = store.count_import_logs_since(con=con, triggered_by=int(caller.user_id or 0), since=since)
    if used >= quota:
        logger.info("Import quota reached for user %s (%s): %d/%d", caller.user_id, role, used, quota)
        raise QuotaExceeded(
            f"Monthly import limit reached for role {role or 'unknown'}: {used} of {quota} imports used since {since[:10]}"
        )


def start_import_log(
    con: sqlite3.Connection,
    *,
    triggered_by: Optional[int],
    swimmer_iuf: str,
    swimmer_name: str,
    now: Optional[datetime] = None,
) -> int:
    log_id = store.insert_import_log(
        con=con,
        triggered_by=triggered_by,
        swimmer_iuf=swimmer_iuf,
        swimmer_name=swimmer_name,
        import_type=IMPORT_TYPE,
        status=PENDING,
        started_at=to_iso(now or utcnow()),
    )
    _transition(con, log_id, PENDING, RUNNING)
    con.commit()
    return log_id


def finish_import_log_success(
    con: sqlite3.Connection,
    log_id: int,
    *,
    found: int,
    imported: int,
    now: Optional[datetime] = None,
) -> None:
    _transition(
        con,
        log_id,
        RUNNING,
        SUCCESS,
        completed_at=to_iso(now or utcnow()),
        performances_found=int(found),
        performances_imported=int(imported),
    )
    con.commit()


def finish_import_log_error(
    con: sqlite3.Connection,
    log_id: int,
    *,
    message: str,
    now: Optional[datetime] = None,
) -> None:
    _transition(con, log_id, RUNNING, ERROR, completed_at=to_iso(now or utcnow()), error_message=message)
    con.commit()


def _transition(con: sqlite3.Connection, log_id: int, from_status: str, to_status: str, **fields: object) -> None:
    if not store.update_import_log(con=con, log_id=log_id, from_status=from_status, status=to_status, **fields):
        raise InvalidTransition(f"Import log {log_id} is not {from_status}; cannot move to {to_status}")
