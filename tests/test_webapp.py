from __future__ import annotations

import json
import threading

import pytest
import requests

from clubrec import db
from clubrec.audit import Caller
from clubrec.config import ImportQuotas
from clubrec.roster import Swimmer, save_swimmer
from clubrec.webapp import ImportContext, handle_import_request, load_token_resolver, make_server


TOKENS = {
    "tok-coach": Caller(role="coach", user_id=7),
    "tok-admin": Caller(role="admin", user_id=1),
    "tok-viewer": Caller(role="viewer", user_id=3),
    "tok-norole": Caller(role=None, user_id=None),
}


@pytest.fixture
def ctx(tmp_path, make_perf):
    db_path = tmp_path / "clubrec.sqlite3"
    con = db.connect(db_path)
    try:
        db.init_db(con)
        save_swimmer(con, Swimmer(iuf="1111111", display_name="Alice", sex="F", birthdate=None))
        con.commit()
    finally:
        con.close()
    return ImportContext(
        db_path=db_path,
        resolve_token=TOKENS.get,
        fetch=lambda iuf: [make_perf("100 NL", 61.95, swimmer_age=13)],
        sleep=lambda seconds: None,
    )


def _post(ctx, token=None, body=b""):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return handle_import_request(ctx=ctx, method="POST", headers=headers, body=body)


class TestHandleImportRequest:
    def test_only_post_is_allowed(self, ctx):
        status, payload = handle_import_request(ctx=ctx, method="GET", headers={}, body=b"")
        assert (status, payload) == (405, {"error": "Method not allowed. Use POST."})

    def test_missing_bearer_token(self, ctx):
        assert _post(ctx) == (401, {"error": "Missing or invalid Authorization header"})
        status, _ = handle_import_request(ctx=ctx, method="POST", headers={"authorization": "Basic abc"}, body=b"")
        assert status == 401

    def test_unknown_token(self, ctx):
        assert _post(ctx, "nope") == (401, {"error": "Invalid or expired token"})

    def test_roles(self, ctx):
        assert _post(ctx, "tok-norole") == (403, {"error": "User has no app role assigned"})
        assert _post(ctx, "tok-viewer") == (403, {"error": "Forbidden: coach or admin only"})

    def test_full_import(self, ctx):
        status, payload = _post(ctx, "tok-coach")
        assert status == 200
        assert payload == {"summary": {"imported": 1, "errors": 0, "swimmers_processed": 1}}

    def test_recalculate(self, ctx):
        status, payload = _post(ctx, "tok-admin", json.dumps({"mode": "recalculate"}).encode())
        assert status == 200
        assert payload["summary"]["mode"] == "recalculate"

    def test_malformed_body_means_full_import(self, ctx):
        status, payload = _post(ctx, "tok-admin", b"{not json")
        assert status == 200
        assert "mode" not in payload["summary"]

    def test_quota_exceeded(self, ctx):
        ctx.quotas = ImportQuotas(coach=1)
        assert _post(ctx, "tok-coach")[0] == 200
        status, payload = _post(ctx, "tok-coach")
        assert status == 429
        assert "Monthly import limit" in payload["error"]

    def test_unexpected_failure_is_500(self, ctx, tmp_path):
        ctx.db_path = tmp_path / "missing" / "dir"
        ctx.db_path.mkdir(parents=True)
        status, payload = _post(ctx, "tok-admin")
        assert status == 500
        assert payload["error"].startswith("Internal error:")


def test_load_token_resolver(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text(json.dumps({"abc": {"role": "coach", "user_id": 7}, "def": {}}), encoding="utf-8")
    resolve = load_token_resolver(path)
    assert resolve("abc") == Caller(role="coach", user_id=7)
    assert resolve("def") == Caller(role=None, user_id=None)
    assert resolve("zzz") is None


@pytest.fixture
def server(ctx):
    srv = make_server(ctx=ctx, host="127.0.0.1", port=0)
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{srv.server_address[1]}"
    finally:
        srv.shutdown()
        srv.server_close()


class TestServer:
    def test_preflight(self, server):
        resp = requests.options(f"{server}/import", timeout=5)
        assert resp.status_code == 200
        assert resp.text == "ok"
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "authorization" in resp.headers["Access-Control-Allow-Headers"]

    def test_get_on_trigger_is_405(self, server):
        resp = requests.get(f"{server}/", timeout=5)
        assert resp.status_code == 405

    def test_import_then_read_records(self, server):
        resp = requests.post(f"{server}/import", headers={"Authorization": "Bearer tok-coach"}, json={}, timeout=5)
        assert resp.status_code == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert resp.json()["summary"]["imported"] == 1

        records = requests.get(f"{server}/api/records", params={"pool": 25, "sex": "F"}, timeout=5).json()
        assert [(r["athlete_name"], r["age_bracket"], r["time_display"]) for r in records] == [("Alice", 13, "1:01.95")]

        logs = requests.get(f"{server}/api/import_logs", params={"iuf": "1111111"}, timeout=5).json()
        assert [r["status"] for r in logs] == ["success"]

    def test_bad_query_parameter(self, server):
        resp = requests.get(f"{server}/api/records", params={"pool": "long"}, timeout=5)
        assert resp.status_code == 400

    def test_non_post_outside_api_is_405(self, server):
        assert requests.get(f"{server}/nothing", timeout=5).status_code == 405
        assert requests.get(f"{server}/import", timeout=5).status_code == 405
        assert requests.delete(f"{server}/import", timeout=5).status_code == 405

    def test_head_is_405_without_body(self, server):
        resp = requests.head(f"{server}/import", timeout=5)
        assert resp.status_code == 405
        assert resp.content == b""

    def test_post_to_unknown_path(self, server):
        assert requests.post(f"{server}/nothing", timeout=5).status_code == 404
