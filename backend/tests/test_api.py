import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.routers import matches
from app.services.youtube import get_broadcast_provider

API = "/api/v0"


@pytest.fixture
def published(monkeypatch):
    sent = []

    async def fake_broadcast(mid, payload):
        sent.append((mid, payload))

    monkeypatch.setattr(matches, "broadcast", fake_broadcast)
    return sent


@pytest.fixture
def client(provider, published):
    app.dependency_overrides[get_broadcast_provider] = lambda: provider
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _team(client, admin_headers, slug="falcons", name="Falcons"):
    resp = client.post(
        f"{API}/teams", json={"slug": slug, "displayName": name}, headers=admin_headers
    )
    assert resp.status_code == 201
    return resp.json()


def _provision(client, admin_headers, count=1):
    resp = client.post(
        f"{API}/stream-pool/provision", json={"count": count}, headers=admin_headers
    )
    assert resp.status_code == 200
    return resp.json()


def _create_match(client, admin_headers, team_id, **extra):
    body = {
        "teamId": team_id,
        "opponentName": "Hawks",
        "scheduledStart": "2026-02-07T18:00:00Z",
        **extra,
    }
    return client.post(f"{API}/matches", json=body, headers=admin_headers)


def test_admin_routes_require_bearer_token(client):
    resp = client.post(f"{API}/teams", json={"slug": "x", "displayName": "X"})
    assert resp.status_code == 401
    assert resp.headers["content-type"].startswith("application/problem+json")
    assert resp.headers["www-authenticate"] == "Bearer"
    assert resp.json()["code"] == "auth_missing_token"

    resp = client.get(
        f"{API}/stream-pool/status", headers={"Authorization": "Bearer " + "b" * 40}
    )
    assert resp.status_code == 401
    assert resp.json()["code"] == "auth_invalid_token"


def test_teams_and_tournaments(client, admin_headers):
    team = _team(client, admin_headers)
    assert team["displayName"] == "Falcons"

    dup = client.post(
        f"{API}/teams", json={"slug": "Falcons", "displayName": "Again"}, headers=admin_headers
    )
    assert dup.status_code == 409
    assert dup.json()["code"] == "team_exists"

    assert [t["slug"] for t in client.get(f"{API}/teams").json()] == ["falcons"]

    bad = client.post(
        f"{API}/tournaments",
        json={"name": "Spring", "startsOn": "2026-03-02", "endsOn": "2026-03-01"},
        headers=admin_headers,
    )
    assert bad.status_code == 422
    assert bad.json()["code"] == "tournament_invalid_dates"

    ok = client.post(
        f"{API}/tournaments",
        json={"name": "Spring Classic", "startsOn": "2026-03-01"},
        headers=admin_headers,
    )
    assert ok.status_code == 201
    assert client.get(f"{API}/tournaments").json()[0]["name"] == "Spring Classic"


def test_stream_pool_administration(client, admin_headers, provider):
    provider.fail("create_physical_stream", "quota exceeded", on_calls={2})
    result = _provision(client, admin_headers, count=3)
    assert result["created"] == 2
    assert result["errors"][0]["index"] == 2
    assert result["status"]["available"] == 2
    assert result["status"]["total"] == 2

    streams = client.get(f"{API}/stream-pool/streams", headers=admin_headers).json()
    assert len(streams) == 2
    assert "streamName" not in streams[0]

    entry_id = streams[0]["id"]
    resp = client.post(f"{API}/stream-pool/streams/{entry_id}/disable", headers=admin_headers)
    assert resp.json()["status"] == "disabled"
    disabled = client.get(
        f"{API}/stream-pool/streams", params={"status": "disabled"}, headers=admin_headers
    ).json()
    assert [s["id"] for s in disabled] == [entry_id]

    resp = client.post(f"{API}/stream-pool/streams/{entry_id}/enable", headers=admin_headers)
    assert resp.json()["status"] == "available"

    resp = client.post(f"{API}/stream-pool/purge", headers=admin_headers)
    assert resp.json() == {"deleted": 0}

    missing = client.post(f"{API}/stream-pool/streams/nope/disable", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["kind"] == "not_found"

    too_many = client.post(
        f"{API}/stream-pool/provision", json={"count": 21}, headers=admin_headers
    )
    assert too_many.status_code == 422


def test_match_creation_and_idempotent_retry(client, admin_headers):
    team = _team(client, admin_headers)
    _provision(client, admin_headers, count=2)

    first = _create_match(client, admin_headers, team["id"], idempotencyKey="req-1")
    assert first.status_code == 201
    body = first.json()
    assert body["reused"] is False
    assert body["stream"]["ingestAddress"] == "rtmp://a.rtmp.youtube.com/live2"
    assert body["stream"]["streamName"].startswith("key-")
    assert body["stream"]["title"] == "Clubstream, Falcons vs Hawks, Feb 7, 2026"
    assert body["match"]["status"] == "draft"
    assert body["match"]["rules"] == {
        "bestOf": 3,
        "pointsToWin": 25,
        "finalSetPoints": 15,
        "winBy": 2,
    }

    again = _create_match(client, admin_headers, team["id"], idempotencyKey="req-1")
    assert again.status_code == 200
    assert again.json()["reused"] is True
    assert again.json()["match"]["id"] == body["match"]["id"]

    listed = client.get(f"{API}/matches", params={"teamId": team["id"]}).json()
    assert [m["id"] for m in listed] == [body["match"]["id"]]
    fetched = client.get(f"{API}/matches/{body['match']['id']}").json()
    assert fetched["teamDisplayName"] == "Falcons"


def test_match_creation_errors_are_problem_details(client, admin_headers):
    team = _team(client, admin_headers)

    exhausted = _create_match(client, admin_headers, team["id"])
    assert exhausted.status_code == 503
    problem = exhausted.json()
    assert problem["code"] == "stream_pool_exhausted"
    assert problem["kind"] == "exhaustion"
    assert problem["instance"] == f"{API}/matches"
    assert problem["poolStatus"]["available"] == 0
    assert problem["poolStatus"]["total"] == 0

    _provision(client, admin_headers)
    bad_rules = _create_match(client, admin_headers, team["id"], bestOf=4)
    assert bad_rules.status_code == 400
    assert bad_rules.json()["detail"] == "Best of must be an odd number"

    naive = _create_match(
        client, admin_headers, team["id"], scheduledStart="2026-02-07T18:00:00"
    )
    assert naive.status_code == 422

    unknown = client.get(f"{API}/matches/nope")
    assert unknown.status_code == 404
    assert unknown.json()["code"] == "match_not_found"


def test_broadcast_failure_maps_to_external_error(client, admin_headers, provider):
    team = _team(client, admin_headers)
    _provision(client, admin_headers)
    provider.fail("create_broadcast", "quota exceeded")

    resp = _create_match(client, admin_headers, team["id"])

    assert resp.status_code == 502
    assert resp.json()["kind"] == "external"
    status = client.get(f"{API}/stream-pool/status", headers=admin_headers).json()
    assert status["available"] == 1


def test_auto_live_then_end(client, admin_headers, provider):
    team = _team(client, admin_headers)
    _provision(client, admin_headers)
    mid = _create_match(client, admin_headers, team["id"]).json()["match"]["id"]

    waiting = client.post(f"{API}/matches/{mid}/auto-live")
    assert waiting.json() == {
        "status": "waiting",
        "streamStatus": "inactive",
        "healthStatus": "noData",
    }
    throttled = client.post(f"{API}/matches/{mid}/auto-live")
    assert throttled.json() == {"status": "waiting", "reason": "throttled"}

    (entry,) = client.get(
        f"{API}/stream-pool/streams", params={"status": "reserved"}, headers=admin_headers
    ).json()
    provider.set_health(entry["externalStreamId"], "active", "good")

    assert client.post(f"{API}/admin/matches/{mid}/auto-live").status_code == 401
    live = client.post(f"{API}/admin/matches/{mid}/auto-live", headers=admin_headers)
    assert live.json()["status"] == "live"
    assert client.get(f"{API}/matches/{mid}").json()["status"] == "live"

    cancel = client.delete(f"{API}/matches/{mid}", headers=admin_headers)
    assert cancel.status_code == 409
    assert cancel.json()["detail"] == "Cannot cancel a live match"

    ended = client.post(f"{API}/matches/{mid}/end")
    assert ended.status_code == 200
    assert ended.json()["streamReleased"] is True
    assert ended.json()["match"]["status"] == "ended"
    assert ended.json()["match"]["streamPoolId"] is None
    status = client.get(f"{API}/stream-pool/status", headers=admin_headers).json()
    assert status["available"] == 1


def test_patch_and_cancel(client, admin_headers, provider):
    team = _team(client, admin_headers)
    _provision(client, admin_headers)
    mid = _create_match(client, admin_headers, team["id"]).json()["match"]["id"]

    resp = client.patch(
        f"{API}/matches/{mid}",
        json={"status": "scheduled", "courtLabel": "Court 2"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["courtLabel"] == "Court 2"

    resp = client.patch(
        f"{API}/matches/{mid}", json={"opponentName": "Eagles"}, headers=admin_headers
    )
    assert resp.status_code == 409

    resp = client.delete(f"{API}/matches/{mid}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["broadcastOk"] is True
    assert resp.json()["match"]["status"] == "canceled"
    assert provider.deleted


def test_end_is_rate_limited(client, admin_headers, seed, session_loop):
    team = session_loop.run_until_complete(seed.team())
    match = session_loop.run_until_complete(seed.match(team, status="ended"))

    for _ in range(10):
        assert client.post(f"{API}/matches/{match.id}/end").status_code == 200
    resp = client.post(f"{API}/matches/{match.id}/end")
    assert resp.status_code == 429
    assert resp.json()["kind"] == "exhaustion"


def test_scoring_over_http(client, admin_headers, published, seed, session_loop):
    team = session_loop.run_until_complete(seed.team())
    match = session_loop.run_until_complete(seed.match(team, status="live"))

    resp = client.post(f"{API}/matches/{match.id}/score", json={"action": "home_plus"})
    assert resp.status_code == 200
    state = resp.json()["state"]
    assert state["sets"][0]["homeScore"] == 1
    assert published == [(match.id, resp.json())]

    snapshot = client.get(f"{API}/matches/{match.id}/score").json()
    assert snapshot["state"] == state
    assert snapshot["match"]["teamDisplayName"] == "Falcons"

    conflict = client.post(f"{API}/matches/{match.id}/score", json={"action": "next_set"})
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "score_conflict"
    assert conflict.json()["kind"] == "conflict"
    assert len(published) == 1

    invalid = client.post(f"{API}/matches/{match.id}/score", json={"action": "home_double"})
    assert invalid.status_code == 422
