import time

import pytest

from predictor.auth import (
    LoginRateLimiter,
    Principal,
    SESSION_MAX_AGE,
    decode_session,
    encode_session,
    ensure_admin,
    ensure_user,
    generate_password,
    hash_password,
    is_common_password,
    validate_password,
    verify_password,
)
from predictor.results import FailureKind


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_session_roundtrip():
    assert decode_session(encode_session("user-1")) == "user-1"


def test_session_rejects_tampering_and_expiry():
    cookie = encode_session("user-1")
    user_id, timestamp, signature = cookie.split("|")
    assert decode_session(f"user-2|{timestamp}|{signature}") is None
    assert decode_session(f"{user_id}|{timestamp}") is None
    assert decode_session("garbage") is None

    stale = encode_session("user-1", issued_at=int(time.time()) - SESSION_MAX_AGE - 5)
    assert decode_session(stale) is None


def test_guards():
    player = Principal(id="p", name="P", email="p@example.com", role="user")
    admin = Principal(id="a", name="A", email="a@example.com", role="admin")

    assert ensure_user(None).kind is FailureKind.UNAUTHORIZED
    assert ensure_user(player) is None
    assert ensure_admin(player).status == 401
    assert ensure_admin(None).message == "Unauthorized"
    assert ensure_admin(admin) is None


def test_password_hashing():
    stored = hash_password("Secret123")
    assert verify_password("Secret123", stored)
    assert not verify_password("secret123", stored)
    assert not verify_password("Secret123", "not-a-bcrypt-hash")


def test_generated_password_is_usable():
    password = generate_password()
    assert len(password) == 8
    assert password.isalnum()
    assert generate_password(12) != generate_password(12)


@pytest.mark.parametrize(
    "password, valid, strength",
    [
        ("abc", False, "weak"),
        ("abcdefgh", False, "weak"),
        ("Abcdefg1", True, "medium"),
        ("Abcdefgh1234!", True, "strong"),
    ],
)
def test_validate_password(password, valid, strength):
    check = validate_password(password)
    assert check.valid is valid
    assert check.strength == strength


def test_validate_password_reports_each_problem():
    check = validate_password("short")
    assert "Password must be at least 8 characters" in check.errors
    assert "Password must contain at least one uppercase letter" in check.errors
    assert "Password must contain at least one number" in check.errors
    assert not validate_password("Aa1" + "x" * 80).valid


def test_common_passwords():
    assert is_common_password("Password123")
    assert is_common_password("QWERTY")
    assert not is_common_password("Blue-Llama-42")


def test_rate_limiter_locks_after_max_attempts():
    clock = FakeClock()
    limiter = LoginRateLimiter(max_attempts=3, window_seconds=60, lockout_seconds=120, clock=clock)

    remaining = [limiter.check("a@example.com").remaining for _ in range(3)]
    assert remaining == [2, 1, 0]

    blocked = limiter.check("a@example.com")
    assert not blocked.allowed
    assert blocked.locked
    assert blocked.reset_in == 120

    # Other identifiers are unaffected.
    assert limiter.check("b@example.com").allowed

    clock.now += 60
    still_locked = limiter.check("a@example.com")
    assert not still_locked.allowed
    assert still_locked.reset_in == 60

    clock.now += 61
    assert limiter.check("a@example.com").allowed


def test_rate_limiter_window_expires_and_reset():
    clock = FakeClock()
    limiter = LoginRateLimiter(max_attempts=2, window_seconds=60, lockout_seconds=60, clock=clock)
    limiter.check("x")
    limiter.check("x")
    clock.now += 61
    assert limiter.check("x").remaining == 1

    limiter.check("x")
    limiter.reset("x")
    assert limiter.check("x").remaining == 1
