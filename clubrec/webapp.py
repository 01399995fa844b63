from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable, Mapping, Optional
from urllib.parse import parse_qs, urlparse

from . import db as results_db
from .audit import Caller, QuotaExceeded
from .config import POLITE_DELAY_S, ImportQuotas
from .ffn import FetchPerformances, fetch_all_performances
from .importer import PermissionDenied, parse_mode, run_import
from .queries import DEFAULT_LOG_LIMIT, club_records, import_logs


logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

IMPORT_PATHS = {"/", "/import"}

TokenResolver = Callable[[str], Optional[Caller]]


@dataclass
class ImportContext:
    db_path: Path
    resolve_token: TokenResolver
    quotas: ImportQuotas = ImportQuotas()
    fetch: FetchPerformances = fetch_all_performances
    polite_delay_s: float = POLITE_DELAY_S
    sleep: Callable[[float], None] = time.sleep
    lock: threading.Lock = field(default_factory=threading.Lock)


class _ApiError(Exception):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = int(status)
        self.message = message


def load_token_resolver(path: Path) -> TokenResolver:
    """Tokens file: {"<token>": {"role": "coach", "user_id": 7}, ...}."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Tokens file must contain a JSON object: {path}")
    table: dict[str, Caller] = {}
    for token, meta in raw.items():
        meta = meta if isinstance(meta, dict) else {}
        user_id = meta.get("user_id")
        table[str(token)] = Caller(
            role=meta.get("role") or None,
            user_id=int(user_id) if user_id is not None else None,
        )
    return table.get


def handle_import_request(
    *,
    ctx: ImportContext,
    method: str,
    headers: Mapping[str, str],
    body: bytes,
) -> tuple[int, dict[str, Any]]:
    """Trigger endpoint logic. Returns (status, JSON payload)."""
    try:
        if method != "POST":
            raise _ApiError(405, "Method not allowed. Use POST.")
        caller = _authenticate(ctx, headers)
        mode = parse_mode(_json_body(body))
        with ctx.lock:
            con = results_db.connect(ctx.db_path)
            try:
                results_db.init_db(con)
                summary = run_import(
                    con,
                    caller,
                    mode=mode,
                    quotas=ctx.quotas,
                    fetch=ctx.fetch,
                    sleep=ctx.sleep,
                    polite_delay_s=ctx.polite_delay_s,
                )
            finally:
                con.close()
    except _ApiError as exc:
        return exc.status, {"error": exc.message}
    except PermissionDenied as exc:
        return 403, {"error": str(exc)}
    except QuotaExceeded as exc:
        return 429, {"error": str(exc)}
    except Exception as exc:  # noqa: BLE001 - reported to the caller as 500
        logger.exception("Import run failed")
        return 500, {"error": f"Internal error: {exc}"}
    return 200, {"summary": summary.as_dict()}


def _authenticate(ctx: ImportContext, headers: Mapping[str, str]) -> Caller:
    auth = _header(headers, "authorization")
    if not auth or not auth.startswith("Bearer "):
        raise _ApiError(401, "Missing or invalid Authorization header")
    token = auth[len("Bearer ") :].strip()
    caller = ctx.resolve_token(token) if token else None
    if caller is None:
        raise _ApiError(401, "Invalid or expired token")
    return caller


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    getter = getattr(headers, "get", None)
    value = getter(name) if getter else None
    if value is None:
        for key, val in headers.items():
            if key.lower() == name:
                return val
    return value


def _json_body(body: bytes) -> Optional[dict[str, Any]]:
    if not body or not body.strip():
        return None
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def run_web(
    *,
    ctx: ImportContext,
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    server = make_server(ctx=ctx, host=host, port=port)
    logger.info("Serving on http://%s:%s/", host, port)
    server.serve_forever()


def make_server(*, ctx: ImportContext, host: str, port: int) -> ThreadingHTTPServer:
    class Handler(_Handler):
        _ctx = ctx

    return ThreadingHTTPServer((host, int(port)), Handler)


class _Handler(BaseHTTPRequestHandler):
    _ctx: ImportContext

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), fmt % args)

    def do_OPTIONS(self) -> None:  # noqa: N802
        raw = b"ok"
        self.send_response(200)
        for key, val in CORS_HEADERS.items():
            self.send_header(key, val)
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def do_POST(self) -> None:  # noqa: N802
        path = urlparse(self.path).path
        if path not in IMPORT_PATHS:
            return self._json({"error": "Not found"}, status=404)
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length > 0 else b""
        status, payload = handle_import_request(ctx=self._ctx, method="POST", headers=self.headers, body=body)
        return self._json(payload, status=status)

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if parsed.path.startswith("/api/"):
            try:
                payload = self._handle_api(parsed.path, parse_qs(parsed.query))
            except _ApiError as exc:
                return self._json({"error": exc.message}, status=exc.status)
            except Exception as exc:  # noqa: BLE001
                logger.exception("API request failed: %s", self.path)
                return self._json({"error": f"Internal error: {exc}"}, status=500)
            return self._json(payload)
        return self._method_not_allowed()

    def do_PUT(self) -> None:  # noqa: N802
        self._method_not_allowed()

    def do_DELETE(self) -> None:  # noqa: N802
        self._method_not_allowed()

    def do_PATCH(self) -> None:  # noqa: N802
        self._method_not_allowed()

    def do_HEAD(self) -> None:  # noqa: N802
        self._method_not_allowed()

    def _method_not_allowed(self) -> None:
        status, payload = handle_import_request(ctx=self._ctx, method=self.command, headers=self.headers, body=b"")
        self._json(payload, status=status)

    def _handle_api(self, path: str, qs: dict[str, list[str]]) -> Any:
        if path == "/api/records":
            with sqlite3.connect(self._ctx.db_path) as con:
                con.row_factory = sqlite3.Row
                return club_records(
                    con=con,
                    pool_length=_get_int(qs, "pool"),
                    sex=_get_one(qs, "sex"),
                    age_bracket=_get_int(qs, "age"),
                    event_code=_get_one(qs, "event"),
                )

        if path == "/api/import_logs":
            limit = _get_int(qs, "limit") or DEFAULT_LOG_LIMIT
            with sqlite3.connect(self._ctx.db_path) as con:
                con.row_factory = sqlite3.Row
                return import_logs(con=con, swimmer_iuf=_get_one(qs, "iuf"), limit=limit)

        raise _ApiError(404, "Unknown API endpoint")

    def _json(self, data: Any, *, status: int = 200) -> None:
        raw = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self.send_response(int(status))
        for key, val in CORS_HEADERS.items():
            self.send_header(key, val)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(raw)


def _get_one(qs: dict[str, list[str]], key: str) -> Optional[str]:
    values = qs.get(key)
    if not values or not values[0].strip():
        return None
    return values[0].strip()


def _get_int(qs: dict[str, list[str]], key: str) -> Optional[int]:
    value = _get_one(qs, key)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        raise _ApiError(400, f"Parameter {key} must be an integer") from None
