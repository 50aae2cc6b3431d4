"""Tests for the HTTP API."""
import pytest

from web.auth import create_access_token, decode_token


@pytest.mark.asyncio
async def test_health(client):
    """Health endpoint returns ok."""
    r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_token_round_trip():
    token = create_access_token("owner")
    assert decode_token(token)["sub"] == "owner"
    assert decode_token(token + "x") is None


@pytest.mark.asyncio
async def test_mutations_require_token(client):
    r = await client.post("/api/tournaments", json={"name": "Cup"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_unknown_user_token_rejected(client):
    headers = {"Authorization": f"Bearer {create_access_token('nobody')}"}
    r = await client.post("/api/tournaments", json={"name": "Cup"}, headers=headers)
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_x_auth_token_header(client, auth_headers, users):
    token = create_access_token("owner")
    r = await client.post("/api/tournaments", json={"name": "Cup"}, headers={"X-Auth-Token": token})
    assert r.status_code == 201


async def _setup(client, auth_headers, users, n=4, bracket_format="DoubleElimination"):
    owner = auth_headers["owner"]
    r = await client.post("/api/tournaments", json={"name": "API Cup", "format": bracket_format}, headers=owner)
    assert r.status_code == 201, r.text
    tid = r.json()["id"]
    r = await client.post(
        f"/api/tournaments/{tid}/admins", json={"user_id": users["scorekeeper"], "role": "Scorekeeper"}, headers=owner
    )
    assert r.status_code == 201, r.text
    for seed in range(1, n + 1):
        r = await client.post(f"/api/tournaments/{tid}/teams", json={"name": f"Team {seed}", "seed": seed}, headers=owner)
        assert r.status_code == 201, r.text
    for action in ("Publish", "CloseRegistration"):
        r = await client.post(f"/api/tournaments/{tid}/transition", json={"action": action}, headers=owner)
        assert r.status_code == 200, r.text
    return tid


@pytest.mark.asyncio
async def test_bracket_flow(client, auth_headers, users):
    tid = await _setup(client, auth_headers, users)
    owner = auth_headers["owner"]
    sk = auth_headers["scorekeeper"]

    r = await client.post(f"/api/tournaments/{tid}/bracket/generate", headers=sk)
    assert r.status_code == 403
    assert r.json()["error"] == "authorization"

    r = await client.post(f"/api/tournaments/{tid}/bracket/generate", headers=owner)
    assert r.status_code == 201, r.text
    assert len(r.json()) == 7

    r = await client.post(f"/api/tournaments/{tid}/bracket/generate", headers=owner)
    assert r.status_code == 409
    assert r.json()["error"] == "state"

    r = await client.get(f"/api/tournaments/{tid}/matches")
    matches = {m["bracket_position"]: m for m in r.json()}
    assert "GF2" not in matches
    first = matches["W-R1-M1"]
    assert first["next_match_id"] == matches["W-R2-M1"]["id"]
    assert first["loser_next_match_id"] == matches["L-R1-M1"]["id"]

    # Not started yet
    r = await client.post(
        f"/api/tournaments/{tid}/matches/{first['id']}/score", json={"home_score": 2, "away_score": 1}, headers=sk
    )
    assert r.status_code == 409

    r = await client.post(f"/api/tournaments/{tid}/transition", json={"action": "Start"}, headers=owner)
    assert r.status_code == 200
    assert r.json()["status"] == "InProgress"

    r = await client.post(
        f"/api/tournaments/{tid}/matches/{first['id']}/score", json={"home_score": 2, "away_score": 2}, headers=sk
    )
    assert r.status_code == 400
    assert r.json()["error"] == "validation"

    r = await client.post(
        f"/api/tournaments/{tid}/matches/{first['id']}/score", json={"home_score": 2, "away_score": 1}, headers=sk
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "Completed"
    assert body["winner_team_id"] == first["home_team_id"]

    r = await client.post(
        f"/api/tournaments/{tid}/matches/{first['id']}/score", json={"home_score": 0, "away_score": 1}, headers=sk
    )
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"

    second = matches["W-R1-M2"]
    r = await client.post(
        f"/api/tournaments/{tid}/matches/{second['id']}/forfeit",
        json={"forfeiting_team_id": second["away_team_id"], "reason": "Bus broke down"},
        headers=sk,
    )
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "Forfeit"
    assert r.json()["home_score"] is None

    r = await client.get(f"/api/tournaments/{tid}/matches/{matches['W-R2-M1']['id']}")
    assert (r.json()["home_team_id"], r.json()["away_team_id"]) == (first["home_team_id"], second["home_team_id"])

    r = await client.get(f"/api/tournaments/{tid}/standings")
    assert r.status_code == 200
    data = r.json()
    assert data["champion_team_id"] is None
    assert all(t["status"] == "active" for t in data["teams"])

    r = await client.get(f"/api/tournaments/{tid}/audit-log", params={"limit": 3}, headers=sk)
    assert r.status_code == 200
    log = r.json()
    assert [rec["action"] for rec in log["records"]] == ["ForfeitMatch", "EnterScore", "Start"]
    assert log["records"][1]["description"] == "EnterScore: Scheduled -> Completed"
    assert log["has_more"] is True

    r = await client.get(f"/api/tournaments/{tid}/audit-log", headers=auth_headers["outsider"])
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_not_found_errors(client, auth_headers, users):
    r = await client.get("/api/tournaments/999")
    assert r.status_code == 404
    assert r.json() == {"detail": "Tournament not found", "error": "not_found"}

    tid = await _setup(client, auth_headers, users, n=2)
    r = await client.get(f"/api/tournaments/{tid}/matches/999")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_admin_routes(client, auth_headers, users):
    tid = await _setup(client, auth_headers, users, n=2)
    owner = auth_headers["owner"]

    r = await client.get(f"/api/tournaments/{tid}/admins", headers=auth_headers["scorekeeper"])
    assert r.status_code == 200
    assert [a["role"] for a in r.json()] == ["Owner", "Scorekeeper"]

    r = await client.post(f"/api/tournaments/{tid}/admins", json={"user_id": users["admin"], "role": "Admin"}, headers=owner)
    assert r.status_code == 201
    r = await client.patch(f"/api/tournaments/{tid}/admins/{users['scorekeeper']}", json={"role": "Admin"}, headers=auth_headers["admin"])
    assert r.status_code == 403
    r = await client.delete(f"/api/tournaments/{tid}/admins/{users['owner']}", headers=owner)
    assert r.status_code == 409

    r = await client.post(
        f"/api/tournaments/{tid}/admins/transfer-ownership", json={"new_owner_user_id": users["admin"]}, headers=owner
    )
    assert r.status_code == 200, r.text
    assert r.json()["role"] == "Owner"
    r = await client.delete(f"/api/tournaments/{tid}/admins/{users['owner']}", headers=auth_headers["admin"])
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_resolve_ties_route(client, auth_headers, users):
    tid = await _setup(client, auth_headers, users, n=3)
    r = await client.get(f"/api/tournaments/{tid}/teams")
    ids = [t["id"] for t in r.json()]
    r = await client.post(
        f"/api/tournaments/{tid}/standings/resolve-ties", json={"manual_order": ids[:2]}, headers=auth_headers["owner"]
    )
    assert r.status_code == 200
    r = await client.get(f"/api/tournaments/{tid}/teams")
    assert [t["manual_tie_rank"] for t in r.json()] == [1, 2, None]
