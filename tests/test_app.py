import pytest
from sqlmodel import Session, select

from conftest import create_user, sign_in
from predictor.auth import SESSION_COOKIE_NAME, decode_session
from predictor.database import Match, Team, Tournament, User, engine


@pytest.mark.asyncio
async def test_index_returns_200(async_client):
    response = await async_client.get("/")
    assert response.status_code == 200
    assert "Family Cup 2026" in response.text
    assert "Round of 32" in response.text


@pytest.mark.asyncio
async def test_index_shows_admin_state(async_client, admin_user):
    sign_in(async_client, admin_user)
    response = await async_client.get("/")
    assert response.status_code == 200
    assert "Admin" in response.text


def test_schedule_seeded():
    with Session(engine) as session:
        teams = session.exec(select(Team)).all()
        matches = session.exec(select(Match)).all()
        tournaments = session.exec(select(Tournament)).all()
    assert len(teams) == 48
    assert {team.name for team in teams} >= {"United States", "Mexico", "Canada"}
    assert len(matches) == 104
    assert len(tournaments) == 1
    assert tournaments[0].is_active


@pytest.mark.asyncio
async def test_health(async_client):
    response = await async_client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "predictionDeadline": "2099-01-01T00:00:00+00:00"}


@pytest.mark.asyncio
async def test_leaderboard_page(async_client, regular_user):
    response = await async_client.get("/leaderboard", params={"phase": "bogus"})
    assert response.status_code == 200
    assert "Player" in response.text


@pytest.mark.asyncio
async def test_login_sets_session_cookie(async_client, regular_user):
    response = await async_client.post(
        "/login",
        data={"email": "Player@Example.com", "password": "Secret123", "next": "/leaderboard"},
    )
    assert response.status_code == 303
    assert response.headers["location"].endswith("/leaderboard")
    cookie = response.cookies.get(SESSION_COOKIE_NAME)
    assert decode_session(cookie) == regular_user.id


@pytest.mark.asyncio
async def test_login_rejects_bad_password_and_open_redirect(async_client, regular_user):
    bad = await async_client.post("/login", data={"email": "player@example.com", "password": "wrong"})
    assert bad.status_code == 401
    assert "Invalid email or password." in bad.text

    good = await async_client.post(
        "/login",
        data={"email": "player@example.com", "password": "Secret123", "next": "//evil.example.com"},
    )
    assert good.headers["location"] == "http://testserver/"


@pytest.mark.asyncio
async def test_login_rate_limited(async_client, regular_user):
    for _ in range(5):
        response = await async_client.post("/login", data={"email": "player@example.com", "password": "nope"})
        assert response.status_code == 401
    blocked = await async_client.post("/login", data={"email": "player@example.com", "password": "Secret123"})
    assert blocked.status_code == 429
    assert "Too many login attempts" in blocked.text


@pytest.mark.asyncio
async def test_logout_clears_cookie(async_client, regular_user):
    sign_in(async_client, regular_user)
    response = await async_client.post("/logout")
    assert response.status_code == 303
    set_cookie = response.headers["set-cookie"]
    assert set_cookie.startswith(f"{SESSION_COOKIE_NAME}=")
    assert "Max-Age=0" in set_cookie


@pytest.mark.asyncio
async def test_register_form(async_client):
    page = await async_client.get("/register")
    assert page.status_code == 200

    response = await async_client.post(
        "/register",
        data={"name": "Uncle Bob", "email": "bob@example.com", "password": "Football26"},
    )
    assert response.status_code == 303
    assert response.headers["location"].endswith("/login?registered=1")
    with Session(engine) as session:
        assert session.exec(select(User).where(User.email == "bob@example.com")).one().name == "Uncle Bob"


@pytest.mark.asyncio
async def test_register_form_shows_errors(async_client):
    create_user("taken@example.com")
    response = await async_client.post(
        "/register",
        data={"name": "Copy", "email": "taken@example.com", "password": "Football26"},
    )
    assert response.status_code == 400
    assert "Email already registered" in response.text
