from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from . import db as results_db
from .audit import Caller, QuotaExceeded
from .config import POLITE_DELAY_S, ImportQuotas, default_db_path, default_tokens_path, quotas_from_env
from .ffn import parse_bests, parse_performances, validate_iuf
from .importer import FULL, RECALCULATE, PermissionDenied, import_single_swimmer, run_import, sync_personal_records
from .queries import club_records, import_logs, personal_bests, swim_records, write_club_records_csv
from .roster import RosterError, import_roster_csv, save_swimmer, swimmer_from_row
from .util import format_time_display
from .webapp import ImportContext, load_token_resolver, run_web


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m clubrec", description="FFN performances -> SQLite -> club records")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    init = sub.add_parser("init-db", help="Create or migrate the database")
    init.add_argument("--db", type=Path, default=default_db_path(), help="SQLite database file")

    add = sub.add_parser("add-swimmer", help="Add or update a tracked swimmer")
    add.add_argument("--name", required=True, help="Display name")
    add.add_argument("--iuf", default=None, help="FFN IUF (5-10 digits)")
    add.add_argument("--sex", default=None, help="M or F")
    add.add_argument("--birthdate", default=None, help="YYYY-MM-DD or DD/MM/YYYY")
    add.add_argument("--inactive", action="store_true", help="Store the swimmer as inactive")
    add.add_argument("--db", type=Path, default=default_db_path(), help="SQLite database file")

    roster = sub.add_parser("import-roster", help="Upsert swimmers from a CSV file (iuf, display_name, sex, birthdate, is_active)")
    roster.add_argument("csv", type=Path, help="Roster CSV file")
    roster.add_argument("--db", type=Path, default=default_db_path(), help="SQLite database file")

    run = sub.add_parser("import", help="Full import: fetch every active swimmer, then recalculate records")
    _add_run_args(run)
    run.add_argument("--polite-delay", type=float, default=POLITE_DELAY_S, help="Pause between swimmers (seconds)")

    recalc = sub.add_parser("recalculate", help="Recalculate personal bests and club records from stored performances")
    _add_run_args(recalc)

    single = sub.add_parser("import-swimmer", help="Fetch and store one swimmer's performances (no records recalculation)")
    single.add_argument("--iuf", required=True, help="FFN IUF")
    single.add_argument("--db", type=Path, default=default_db_path(), help="SQLite database file")

    sync = sub.add_parser("sync-records", help="Keep a swimmer's best FFN time per event and pool, replaced only when faster")
    sync.add_argument("--iuf", required=True, help="FFN IUF")
    sync.add_argument("--name", default=None, help="Athlete name for the record notes (defaults to the roster name)")
    sync.add_argument("--db", type=Path, default=default_db_path(), help="SQLite database file")

    recs = sub.add_parser("records", help="Show club records")
    recs.add_argument("--pool", type=int, choices=[25, 50], default=None, help="Pool length")
    recs.add_argument("--sex", choices=["M", "F"], default=None, help="Sex")
    recs.add_argument("--age", type=int, default=None, help="Age bracket (8-17)")
    recs.add_argument("--event", default=None, help="Event code, e.g. 100_FREE")
    recs.add_argument("--csv", type=Path, default=None, help="Write to CSV instead of printing")
    recs.add_argument("--db", type=Path, default=default_db_path(), help="SQLite database file")

    bests = sub.add_parser("bests", help="Show a swimmer's personal bests per category")
    bests.add_argument("--iuf", required=True, help="FFN IUF")
    bests.add_argument("--db", type=Path, default=default_db_path(), help="SQLite database file")

    logs = sub.add_parser("logs", help="Show recent import log rows")
    logs.add_argument("--iuf", default=None, help="Only this swimmer")
    logs.add_argument("--limit", type=int, default=20, help="Max rows")
    logs.add_argument("--db", type=Path, default=default_db_path(), help="SQLite database file")

    parse = sub.add_parser("parse", help="Parse a saved FFN results page (offline)")
    parse.add_argument("html", type=Path, help="HTML file")
    parse.add_argument("--pool", type=int, choices=[25, 50], default=None, help="Pool length before the first 'Bassin' marker")
    parse.add_argument("--bests", action="store_true", help="Only the best time per event and pool")

    web = sub.add_parser("web", help="Serve the import trigger endpoint and read API")
    web.add_argument("--db", type=Path, default=default_db_path(), help="SQLite database file")
    web.add_argument("--tokens", type=Path, default=default_tokens_path(), help="JSON file mapping bearer tokens to {role, user_id}")
    web.add_argument("--host", type=str, default="127.0.0.1", help="Host, e.g. 127.0.0.1")
    web.add_argument("--port", type=int, default=8000, help="Port, e.g. 8000")
    web.add_argument("--polite-delay", type=float, default=POLITE_DELAY_S, help="Pause between swimmers (seconds)")
    _add_quota_args(web)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "init-db":
        con = results_db.connect(args.db)
        try:
            results_db.init_db(con)
        finally:
            con.close()
        print(f"Database ready: {args.db}")
        return 0

    if args.cmd == "add-swimmer":
        try:
            swimmer = swimmer_from_row(
                {
                    "iuf": args.iuf,
                    "display_name": args.name,
                    "sex": args.sex,
                    "birthdate": args.birthdate,
                    "is_active": not args.inactive,
                }
            )
        except RosterError as exc:
            parser.error(str(exc))
        con = _open(args.db)
        try:
            swimmer_id = save_swimmer(con, swimmer)
            con.commit()
        finally:
            con.close()
        print(f"Saved swimmer #{swimmer_id}: {swimmer.display_name} (IUF {swimmer.iuf or '-'})")
        return 0

    if args.cmd == "import-roster":
        con = _open(args.db)
        try:
            count = import_roster_csv(con, args.csv)
        except RosterError as exc:
            print(f"Roster rejected: {exc}")
            return 1
        finally:
            con.close()
        print(f"Saved {count} swimmers from {args.csv}")
        return 0

    if args.cmd in ("import", "recalculate"):
        caller = Caller(role=args.role, user_id=args.user_id)
        mode = FULL if args.cmd == "import" else RECALCULATE
        con = _open(args.db)
        try:
            summary = run_import(
                con,
                caller,
                mode=mode,
                quotas=_quotas(args),
                polite_delay_s=float(getattr(args, "polite_delay", POLITE_DELAY_S)),
            )
        except (PermissionDenied, QuotaExceeded) as exc:
            print(f"Rejected: {exc}")
            return 2
        finally:
            con.close()
        print(
            "Import done:" if mode == FULL else "Recalculation done:",
            f"imported={summary.imported}",
            f"errors={summary.errors}",
            f"swimmers={summary.swimmers_processed}",
            sep=" ",
        )
        return 0

    if args.cmd == "import-swimmer":
        con = _open(args.db)
        try:
            res = import_single_swimmer(con, args.iuf)
        except ValueError as exc:
            parser.error(str(exc))
        finally:
            con.close()
        print(f"IUF {args.iuf}: found={res.found} new={res.imported} already_existed={res.already_existed}")
        return 0

    if args.cmd == "sync-records":
        con = _open(args.db)
        try:
            iuf = validate_iuf(args.iuf)
            res = sync_personal_records(con, iuf, athlete_name=args.name)
            rows = swim_records(con=con, swimmer_iuf=iuf)
        except ValueError as exc:
            parser.error(str(exc))
        finally:
            con.close()
        for r in rows:
            print(f"{r['pool_length']}m | {r['event_name']} | {format_time_display(r['time_seconds'])} | {r['record_date'] or '-'}")
        print(f"IUF {iuf}: inserted={res.inserted} updated={res.updated} skipped={res.skipped}")
        return 0

    if args.cmd == "records":
        con = _open(args.db)
        try:
            rows = club_records(con=con, pool_length=args.pool, sex=args.sex, age_bracket=args.age, event_code=args.event)
        finally:
            con.close()
        if args.csv:
            write_club_records_csv(rows, args.csv)
            print(f"Wrote {len(rows)} records to {args.csv}")
            return 0
        if not rows:
            print("No records.")
            return 0
        for r in rows:
            print(
                f"{r['pool_length']}m {r['sex']} {_age_label(r['age_bracket'])} | {r['event_label'] or r['event_code']} | "
                f"{r['time_display']} | {r['athlete_name']} | {r['record_date'] or '-'}"
            )
        return 0

    if args.cmd == "bests":
        con = _open(args.db)
        try:
            rows = personal_bests(con=con, swimmer_iuf=args.iuf)
        finally:
            con.close()
        if not rows:
            print("No personal bests.")
            return 0
        for r in rows:
            print(f"{r['pool_length']}m {_age_label(r['age_bracket'])} | {r['event_label']} | {r['time_display']} | {r['record_date'] or '-'}")
        return 0

    if args.cmd == "logs":
        con = _open(args.db)
        try:
            rows = import_logs(con=con, swimmer_iuf=args.iuf, limit=args.limit)
        finally:
            con.close()
        if not rows:
            print("No import logs.")
            return 0
        for r in rows:
            counts = f"{r['performances_imported'] or 0}/{r['performances_found'] or 0}"
            print(
                f"#{r['id']} {r['started_at']} | {r['status']} | {r['swimmer_iuf']} {r['swimmer_name'] or ''} | "
                f"{counts} | {r['error_message'] or ''}"
            )
        return 0

    if args.cmd == "parse":
        html_bytes = args.html.read_bytes()
        rows = parse_bests(html_bytes, default_pool=args.pool) if args.bests else parse_performances(html_bytes, default_pool=args.pool)
        for p in rows:
            print(
                f"{p.pool_length}m | {p.event_name} | {format_time_display(p.time_seconds)} | {p.competition_date or '-'} | "
                f"{p.ffn_points if p.ffn_points is not None else '-'} pts | {p.competition_name or '-'}"
            )
        print(json.dumps({"rows": len(rows)}))
        return 0

    if args.cmd == "web":
        ctx = ImportContext(
            db_path=args.db,
            resolve_token=load_token_resolver(args.tokens),
            quotas=_quotas(args),
            polite_delay_s=float(args.polite_delay),
        )
        run_web(ctx=ctx, host=args.host, port=int(args.port))
        return 0

    parser.error("Unknown command")
    return 2


def _add_run_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--db", type=Path, default=default_db_path(), help="SQLite database file")
    p.add_argument("--role", default="admin", help="Role of the triggering user (coach, admin)")
    p.add_argument("--user-id", type=int, default=0, help="App user id of the triggering user")
    _add_quota_args(p)


def _add_quota_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--coach-quota", type=int, default=None, help="Monthly full imports for coaches (-1 = unlimited)")
    p.add_argument("--default-quota", type=int, default=None, help="Monthly full imports for other roles (-1 = unlimited)")


def _quotas(args: argparse.Namespace) -> ImportQuotas:
    env = quotas_from_env()
    return ImportQuotas(
        coach=args.coach_quota if args.coach_quota is not None else env.coach,
        default=args.default_quota if args.default_quota is not None else env.default,
    )


def _open(db_path: Path):
    con = results_db.connect(db_path)
    results_db.init_db(con)
    return con


def _age_label(age: int) -> str:
    if age <= 8:
        return "<=8"
    if age >= 17:
        return "17+"
    return str(age)
