from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session, select

from conftest import sign_in
from predictor.database import Match, Prediction, Tournament, User, engine, set_registration_enabled


def _match(number: int) -> Match:
    with Session(engine) as session:
        return session.exec(select(Match).where(Match.match_number == number)).one()


def _close_predictions() -> None:
    with Session(engine) as session:
        tournament = session.exec(select(Tournament)).one()
        tournament.prediction_deadline = datetime.now(timezone.utc) - timedelta(hours=1)
        session.add(tournament)
        session.commit()


@pytest.mark.asyncio
async def test_predictions_require_login(async_client):
    listed = await async_client.get("/api/predictions")
    saved = await async_client.post("/api/predictions", json={"matchId": _match(1).id, "predictedHome": 1, "predictedAway": 0})
    assert listed.status_code == 401
    assert saved.status_code == 401


@pytest.mark.asyncio
async def test_save_prediction_upserts(async_client, regular_user):
    sign_in(async_client, regular_user)
    match = _match(1)
    first = await async_client.post("/api/predictions", json={"matchId": match.id, "predictedHome": 1, "predictedAway": 0})
    assert first.status_code == 200
    assert first.json()["predictedHome"] == 1

    second = await async_client.post("/api/predictions", json={"matchId": match.id, "predictedHome": 2, "predictedAway": 2})
    assert second.json()["id"] == first.json()["id"]

    with Session(engine) as session:
        stored = session.exec(select(Prediction).where(Prediction.user_id == regular_user.id)).all()
    assert len(stored) == 1
    assert (stored[0].predicted_home, stored[0].predicted_away) == (2, 2)

    listed = await async_client.get("/api/predictions")
    assert listed.status_code == 200
    [entry] = listed.json()
    assert entry["match"]["matchNumber"] == 1
    assert entry["match"]["group"] == "A"


@pytest.mark.asyncio
async def test_save_prediction_validation(async_client, regular_user):
    sign_in(async_client, regular_user)
    match = _match(80)
    missing = await async_client.post("/api/predictions", json={"matchId": match.id, "predictedHome": 1})
    assert missing.status_code == 400
    assert missing.json() == {"error": "Match ID and scores are required"}

    negative = await async_client.post("/api/predictions", json={"matchId": match.id, "predictedHome": -1, "predictedAway": 0})
    assert negative.json() == {"error": "Scores must be between 0 and 20"}

    bad_winner = await async_client.post(
        "/api/predictions",
        json={"matchId": match.id, "predictedHome": 1, "predictedAway": 1, "predictedWinner": "both"},
    )
    assert bad_winner.status_code == 400

    unknown = await async_client.post("/api/predictions", json={"matchId": "nope", "predictedHome": 1, "predictedAway": 0})
    assert unknown.status_code == 404

    knockout = await async_client.post(
        "/api/predictions",
        json={"matchId": match.id, "predictedHome": 1, "predictedAway": 1, "predictedWinner": "away"},
    )
    assert knockout.status_code == 200
    assert knockout.json()["predictedWinner"] == "away"


@pytest.mark.asyncio
async def test_predictions_locked_after_deadline(async_client, regular_user):
    _close_predictions()
    sign_in(async_client, regular_user)
    response = await async_client.post("/api/predictions", json={"matchId": _match(3).id, "predictedHome": 1, "predictedAway": 0})
    assert response.status_code == 403
    assert response.json() == {"error": "Predictions are locked. Deadline has passed."}


@pytest.mark.asyncio
async def test_api_register(async_client):
    response = await async_client.post(
        "/api/register",
        json={"name": "Nana", "email": " Nana@Example.com ", "password": "Granny2026"},
    )
    assert response.status_code == 201
    assert response.json()["user"]["email"] == "nana@example.com"

    duplicate = await async_client.post(
        "/api/register",
        json={"name": "Nana", "email": "nana@example.com", "password": "Granny2026"},
    )
    assert duplicate.status_code == 400
    assert duplicate.json() == {"error": "Email already registered"}

    with Session(engine) as session:
        user = session.exec(select(User).where(User.email == "nana@example.com")).one()
    assert user.role == "user"


@pytest.mark.asyncio
async def test_api_register_rejects_weak_or_missing(async_client):
    missing = await async_client.post("/api/register", json={"email": "kid@example.com"})
    assert missing.json() == {"error": "Name, email, and password are required"}

    weak = await async_client.post("/api/register", json={"name": "Kid", "email": "kid@example.com", "password": "abc"})
    assert weak.status_code == 400
    assert "at least 8 characters" in weak.json()["error"]

    common = await async_client.post(
        "/api/register",
        json={"name": "Kid", "email": "kid@example.com", "password": "Password123"},
    )
    assert common.status_code == 400
    assert "too common" in common.json()["error"]


@pytest.mark.asyncio
async def test_api_register_when_disabled(async_client):
    with Session(engine) as session:
        set_registration_enabled(session, False)
    response = await async_client.post(
        "/api/register",
        json={"name": "Late", "email": "late@example.com", "password": "Granny2026"},
    )
    assert response.status_code == 403
    assert response.json() == {"error": "Registration is currently disabled"}


@pytest.mark.asyncio
async def test_leaderboard_api(async_client, regular_user):
    response = await async_client.get("/api/leaderboard")
    assert response.status_code == 200
    assert [row["name"] for row in response.json()] == ["Player"]

    knockout = await async_client.get("/api/leaderboard", params={"phase": "knockout"})
    assert knockout.status_code == 200

    invalid = await async_client.get("/api/leaderboard", params={"phase": "weekly"})
    assert invalid.status_code == 400


@pytest.mark.asyncio
async def test_matches_api(async_client):
    response = await async_client.get("/api/matches")
    payload = response.json()
    assert len(payload) == 104
    assert payload[72]["homeTeam"] == "Winner A"
    assert payload[0]["kickoff"] is not None
