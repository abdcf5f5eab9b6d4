import logging

from fastapi.testclient import TestClient

from app.main import app
from app.services import scoreboard


def test_unexpected_score_failure_is_logged_and_hidden(caplog, monkeypatch):
    async def broken_snapshot(session, match_id):
        raise RuntimeError("scoreboard replica password=hunter2")

    monkeypatch.setattr(scoreboard, "get_score_snapshot", broken_snapshot)

    client = TestClient(app, raise_server_exceptions=False)
    with caplog.at_level(logging.ERROR):
        response = client.get("/api/v0/matches/m-1/score")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/problem+json")
    body = response.json()
    assert body["code"] == "internal_server_error"
    assert body["kind"] == "fatal"
    assert "hunter2" not in response.text
    assert "poolStatus" not in body
    record = next((r for r in caplog.records if r.message == "Unhandled exception"), None)
    assert record is not None
    assert record.exc_info[0] is RuntimeError
    assert "RuntimeError: scoreboard replica password=hunter2" in caplog.text
