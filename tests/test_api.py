"""Tests for the JSON API."""

from prediction_pool import db
from prediction_pool.models import Match
from tests.conftest import SEASON_ID

BASE = f"/api/seasons/{SEASON_ID}"


def _round_with_bets(pool, client):
    m1, m2 = pool.round(1)
    for user_id, bets in (
        ("alice", [(m1, 2, 1), (m2, 0, 0)]),
        ("bob", [(m1, 0, 1), (m2, 1, 1)]),
    ):
        response = client.put(
            f"{BASE}/rounds/1/bets/{user_id}",
            json={
                "display_name": user_id.title(),
                "bets": [
                    {"match_id": match_id, "home_score": home, "away_score": away}
                    for match_id, home, away in bets
                ],
            },
        )
        assert response.status_code == 200
    return m1, m2


def test_current_season(client, app):
    response = client.get("/api/seasons/current")
    assert response.status_code == 200
    assert "season_id" in response.get_json()


def test_submit_and_read_round_bets(client, pool):
    m1, _ = _round_with_bets(pool, client)

    response = client.get(f"{BASE}/rounds/1/bets/alice")
    assert response.status_code == 200
    assert response.get_json()["bets"][0] == {"match_id": m1, "home_score": 2, "away_score": 1}


def test_submit_invalid_bets(client, pool):
    pool.round(1)
    response = client.put(f"{BASE}/rounds/1/bets/alice", json={"bets": "2-1"})
    assert response.status_code == 400
    assert response.get_json()["type"] == "invalid_prediction"


def test_preseason_submission_after_season_start_is_rejected(client, pool):
    response = client.put(f"{BASE}/preseason/alice", json={"picks": {"champion": "Arsenal"}})
    assert response.status_code == 403
    assert response.get_json()["type"] == "betting_closed"


def test_score_round_and_leaderboard(client, pool):
    m1, m2 = _round_with_bets(pool, client)
    pool.results(1, {m1: (2, 1), m2: (1, 1)})

    response = client.post(f"{BASE}/rounds/1/score", json={})
    assert response.status_code == 200
    report = response.get_json()
    assert report["status"] == "completed"
    # m1 2-1: alice is the only home predictor (3 doubled); m2 1-1: both called a draw
    assert report["round_points"] == {"alice": 7, "bob": 3}

    response = client.get(f"{BASE}/leaderboard")
    entries = response.get_json()["leaderboard"]
    assert [(e["user_id"], e["total_points"], e["rank"]) for e in entries] == [
        ("alice", 7, 1),
        ("bob", 3, 2),
    ]
    assert entries[0]["display_name"] == "Alice"

    response = client.get(f"{BASE}/players/alice")
    assert response.status_code == 200
    assert response.get_json()["round_points"] == {"1": 7}


def test_score_round_needs_confirmation(client, pool):
    m1, m2 = _round_with_bets(pool, client)
    pool.results(1, {m1: (2, 1)})

    response = client.post(f"{BASE}/rounds/1/score")
    assert response.status_code == 200
    assert response.get_json()["status"] == "needs_confirmation"
    assert response.get_json()["incomplete_matches"] == [m2]

    response = client.post(f"{BASE}/rounds/1/score", json={"confirm_incomplete": True})
    assert response.get_json()["status"] == "completed"


def test_score_round_invalid_state(client, pool):
    m1, _ = pool.round(1)
    db.session.get(Match, m1).actual_away_score = 3
    db.session.commit()

    response = client.post(f"{BASE}/rounds/1/score")
    assert response.status_code == 409
    body = response.get_json()
    assert body["type"] == "invalid_state"
    assert body["details"]["match_ids"] == [m1]


def test_unknown_round_and_player(client, pool):
    assert client.post(f"{BASE}/rounds/9/score").status_code == 404
    assert client.get(f"{BASE}/rounds/9").status_code == 404
    response = client.get(f"{BASE}/players/nobody")
    assert response.status_code == 404
    assert response.get_json()["type"] == "not_found"


def test_unknown_season_leaderboard(client, app):
    assert client.get("/api/seasons/1990-1991/leaderboard").status_code == 404


def test_delete_recompute_and_audit(client, pool):
    m1, m2 = _round_with_bets(pool, client)
    pool.results(1, {m1: (2, 1), m2: (1, 1)})
    client.post(f"{BASE}/rounds/1/score")

    response = client.post(f"{BASE}/players/alice/recompute")
    assert response.status_code == 200
    assert response.get_json()["total_points"] == 7

    response = client.get(f"{BASE}/audit")
    assert response.get_json() == {"season_id": SEASON_ID, "consistent": True, "issues": []}

    response = client.delete(f"{BASE}/rounds/1")
    assert response.status_code == 200
    assert response.get_json()["points_removed"] == {"alice": 7, "bob": 3}
    assert client.get(f"{BASE}/rounds/1").status_code == 404

    runs = client.get(f"{BASE}/runs").get_json()
    assert [run["action_type"] for run in runs[:3]] == [
        "delete_round",
        "recompute_player",
        "score_round",
    ]


def test_score_preseason(client, pool):
    response = client.post(f"{BASE}/preseason/score")
    assert response.status_code == 200
    assert response.get_json()["has_outcomes"] is False


def test_scheduler_status(client, app):
    response = client.get("/api/scheduler/status")
    assert response.status_code == 200
    assert response.get_json()["is_running"] is False
