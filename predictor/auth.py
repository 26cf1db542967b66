"""Session cookies, principals, passwords, and login throttling."""

from __future__ import annotations

import hmac
import logging
import os
import re
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable

import bcrypt
from fastapi import Depends, Request
from sqlmodel import Session

from .database import User, get_session
from .results import Failure, unauthorized

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "predictor_session")
SESSION_SECRET = os.getenv("SESSION_SECRET") or os.getenv("SECRET_KEY") or secrets.token_hex(32)
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", "43200"))  # 12 hours default
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "true").lower() != "false"
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

ADMIN_ROLE = "admin"
USER_ROLE = "user"
ROLES = {ADMIN_ROLE, USER_ROLE}

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72  # bcrypt only looks at the first 72 bytes
COMMON_PASSWORDS = {
    "password",
    "password1",
    "password123",
    "12345678",
    "123456789",
    "1234567890",
    "qwerty",
    "qwerty123",
    "letmein",
    "welcome",
    "admin",
    "admin123",
}

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    id: str
    name: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def _sign_payload(payload: str) -> str:
    secret = SESSION_SECRET.encode("utf-8")
    return hmac.new(secret, payload.encode("utf-8"), "sha256").hexdigest()


def encode_session(user_id: str, issued_at: int | None = None) -> str:
    timestamp = str(int(time.time()) if issued_at is None else issued_at)
    payload = f"{user_id}|{timestamp}"
    signature = _sign_payload(payload)
    return f"{payload}|{signature}"


def decode_session(raw: str) -> str | None:
    """Return the user id carried by a valid, unexpired cookie value."""
    try:
        user_id, timestamp, signature = raw.split("|")
    except ValueError:
        return None
    payload = f"{user_id}|{timestamp}"
    expected = _sign_payload(payload)
    if not hmac.compare_digest(expected, signature):
        return None
    try:
        issued_at = int(timestamp)
    except ValueError:
        return None
    if int(time.time()) - issued_at > SESSION_MAX_AGE:
        return None
    return user_id or None


def current_principal(request: Request, session: Session = Depends(get_session)) -> Principal | None:
    """Resolve the signed-in user for this request, if any."""
    cookie_value = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie_value:
        return None
    user_id = decode_session(cookie_value)
    if not user_id:
        return None
    user = session.get(User, user_id)
    if not user:
        return None
    return Principal(id=user.id, name=user.name, email=user.email, role=user.role)


def ensure_user(principal: Principal | None) -> Failure | None:
    if principal is None:
        return unauthorized()
    return None


def ensure_admin(principal: Principal | None) -> Failure | None:
    if principal is None or not principal.is_admin:
        return unauthorized()
    return None


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or an over-long password.
        return False


def generate_password(length: int = 8) -> str:
    alphabet = "abcdefghijkmnopqrstuvwxyzABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    return "".join(secrets.choice(alphabet) for _ in range(length))


@dataclass(frozen=True)
class PasswordCheck:
    valid: bool
    errors: list[str]
    strength: str


def validate_password(password: str) -> PasswordCheck:
    errors: list[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    has_upper = bool(re.search(r"[A-Z]", password))
    has_lower = bool(re.search(r"[a-z]", password))
    has_digit = bool(re.search(r"[0-9]", password))
    if not has_upper:
        errors.append("Password must contain at least one uppercase letter")
    if not has_lower:
        errors.append("Password must contain at least one lowercase letter")
    if not has_digit:
        errors.append("Password must contain at least one number")

    score = sum(
        [
            len(password) >= MIN_PASSWORD_LENGTH,
            len(password) >= 12,
            has_upper,
            has_lower,
            has_digit,
            bool(re.search(r"[^A-Za-z0-9]", password)),
        ]
    )
    if score <= 2:
        strength = "weak"
    elif score <= 4:
        strength = "medium"
    else:
        strength = "strong"
    return PasswordCheck(valid=not errors, errors=errors, strength=strength)


def is_common_password(password: str) -> bool:
    return password.lower() in COMMON_PASSWORDS


@dataclass
class _Attempts:
    count: int
    first_attempt: float
    locked_until: float | None = None


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    remaining: int
    reset_in: int
    locked: bool


class LoginRateLimiter:
    """Fixed-window login throttle keyed by identifier, with a lockout once exceeded."""

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 15 * 60,
        lockout_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.lockout_seconds = lockout_seconds
        self._clock = clock
        self._entries: dict[str, _Attempts] = {}
        self._lock = threading.Lock()

    def check(self, identifier: str) -> RateLimitStatus:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(identifier)
            if entry and entry.locked_until is not None:
                if now < entry.locked_until:
                    return RateLimitStatus(False, 0, _ceil(entry.locked_until - now), True)
                del self._entries[identifier]
                entry = None

            if entry is None or now - entry.first_attempt > self.window_seconds:
                self._entries[identifier] = _Attempts(count=1, first_attempt=now)
                return RateLimitStatus(True, self.max_attempts - 1, _ceil(self.window_seconds), False)

            entry.count += 1
            if entry.count > self.max_attempts:
                entry.locked_until = now + self.lockout_seconds
                logger.warning("Login locked out for %s", identifier)
                return RateLimitStatus(False, 0, _ceil(self.lockout_seconds), True)

            return RateLimitStatus(
                True,
                self.max_attempts - entry.count,
                _ceil(entry.first_attempt + self.window_seconds - now),
                False,
            )

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._entries.pop(identifier, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def _ceil(seconds: float) -> int:
    return int(-(-seconds // 1))


login_limiter = LoginRateLimiter()
