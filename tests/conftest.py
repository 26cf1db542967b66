import os
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio
import httpx
from sqlmodel import Session


TEST_DB = Path(tempfile.gettempdir()) / "predictor_test_app.sqlite3"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB}"
os.environ["SESSION_SECRET"] = "test-secret"
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["PREDICTION_DEADLINE"] = "2099-01-01T00:00:00+00:00"
os.environ.pop("ADMIN_PASSWORD", None)

from predictor import app  # noqa: E402
from predictor.auth import SESSION_COOKIE_NAME, encode_session, hash_password, login_limiter  # noqa: E402
from predictor.database import User, engine, init_db  # noqa: E402


@pytest.fixture(autouse=True)
def _cleanup_db():
    if TEST_DB.exists():
        TEST_DB.unlink()
    init_db()
    login_limiter.clear()
    yield
    engine.dispose()
    if TEST_DB.exists():
        TEST_DB.unlink()


@pytest_asyncio.fixture
async def async_client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


def create_user(email: str, role: str = "user", password: str = "Secret123", name: str | None = None) -> User:
    with Session(engine, expire_on_commit=False) as session:
        user = User(
            name=name or email.split("@")[0].title(),
            email=email,
            password_hash=hash_password(password),
            role=role,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user


def sign_in(client: httpx.AsyncClient, user: User) -> None:
    client.cookies.set(SESSION_COOKIE_NAME, encode_session(user.id))


@pytest.fixture
def admin_user() -> User:
    return create_user("admin@example.com", role="admin", name="Admin")


@pytest.fixture
def regular_user() -> User:
    return create_user("player@example.com", name="Player")
