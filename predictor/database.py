"""Database models and helpers for teams, matches, predictions, and users."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Iterator
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, create_engine, select

DEFAULT_SQLITE_PATH = "sqlite:///./predictor.db"
TOURNAMENT_NAME = os.getenv("TOURNAMENT_NAME", "Family Cup 2026")
PREDICTION_DEADLINE = os.getenv("PREDICTION_DEADLINE", "2026-06-11T16:00:00+00:00")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Admin")

REGISTRATION_ENABLED = "REGISTRATION_ENABLED"

logger = logging.getLogger(__name__)

GROUPS = ("A", "B", "C", "D", "E", "F", "G", "H", "I", "J", "K", "L")
HOST_TEAMS = {
    "A": ("United States", "USA", "🇺🇸"),
    "B": ("Mexico", "MEX", "🇲🇽"),
    "C": ("Canada", "CAN", "🇨🇦"),
}


def _new_id() -> str:
    return uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _build_engine_url() -> str:
    """Return the configured database URL or fall back to SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_SQLITE_PATH)


def _build_engine() -> Engine:
    url = _build_engine_url()
    engine_kwargs = {}
    if url.startswith("sqlite"):
        # SQLite needs check_same_thread disabled for FastAPI concurrency,
        # but passing this flag to other drivers (e.g., psycopg2) raises errors.
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **engine_kwargs)


engine = _build_engine()


class Team(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str = Field(nullable=False, unique=True, max_length=128)
    code: str = Field(nullable=False, max_length=8)
    group: str = Field(nullable=False, max_length=1, index=True)
    flag_emoji: str | None = Field(default=None, max_length=16)


class Match(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    match_number: int = Field(nullable=False, unique=True, index=True)
    stage: str = Field(nullable=False, index=True, max_length=16)
    group: str | None = Field(default=None, max_length=1)
    home_team_id: str | None = Field(default=None, foreign_key="team.id")
    away_team_id: str | None = Field(default=None, foreign_key="team.id")
    home_placeholder: str | None = Field(default=None, max_length=64)
    away_placeholder: str | None = Field(default=None, max_length=64)
    kickoff: datetime | None = Field(default=None)
    real_score_home: int | None = Field(default=None)
    real_score_away: int | None = Field(default=None)
    winner_team_id: str | None = Field(default=None, foreign_key="team.id")
    is_bonus_match: bool = Field(default=False, nullable=False)


class User(SQLModel, table=True):
    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str = Field(nullable=False, max_length=120)
    email: str = Field(nullable=False, unique=True, index=True, max_length=255)
    password_hash: str = Field(nullable=False)
    role: str = Field(default="user", nullable=False, max_length=16)
    created_at: datetime = Field(default_factory=_utcnow, nullable=False)


class Prediction(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "match_id"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(foreign_key="user.id", nullable=False, index=True)
    match_id: str = Field(foreign_key="match.id", nullable=False, index=True)
    predicted_home: int = Field(nullable=False)
    predicted_away: int = Field(nullable=False)
    predicted_winner: str | None = Field(default=None, max_length=8)
    points_earned: int = Field(default=0, nullable=False)
    updated_at: datetime = Field(default_factory=_utcnow, nullable=False)


class Tournament(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(nullable=False)
    is_active: bool = Field(default=True, nullable=False)
    prediction_deadline: datetime = Field(nullable=False)


class SystemSetting(SQLModel, table=True):
    key: str = Field(primary_key=True, max_length=64)
    value: bool = Field(default=True, nullable=False)


def init_db() -> None:
    """Create tables if they don't already exist and seed the tournament."""
    SQLModel.metadata.create_all(engine)
    _ensure_match_columns()
    with Session(engine) as session:
        _ensure_tournament(session)
        _ensure_fixtures(session)
        _ensure_admin(session)


def get_session() -> Iterator[Session]:
    """Yield a SQLModel session for dependency injection."""
    with Session(engine) as session:
        yield session


def get_active_tournament(session: Session) -> Tournament | None:
    return session.exec(select(Tournament).where(Tournament.is_active == True)).first()  # noqa: E712


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on the way back out; treat naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def predictions_locked(session: Session, now: datetime | None = None) -> bool:
    tournament = get_active_tournament(session)
    if not tournament:
        return False
    current = now or _utcnow()
    return current > as_utc(tournament.prediction_deadline)


def is_registration_enabled(session: Session) -> bool:
    setting = session.get(SystemSetting, REGISTRATION_ENABLED)
    # Default to open sign-up when the flag has never been written.
    return True if setting is None else setting.value


def set_registration_enabled(session: Session, enabled: bool) -> None:
    setting = session.get(SystemSetting, REGISTRATION_ENABLED)
    if setting is None:
        setting = SystemSetting(key=REGISTRATION_ENABLED, value=enabled)
    else:
        setting.value = enabled
    session.add(setting)
    session.commit()


def default_teams() -> list[Team]:
    """Return the 48 seeded teams: the three hosts plus placeholders per group."""
    teams: list[Team] = []
    for group in GROUPS:
        for position in range(1, 5):
            if position == 1 and group in HOST_TEAMS:
                name, code, flag = HOST_TEAMS[group]
            else:
                name, code, flag = f"Team {group}{position}", f"{group}{position}", "🏳️"
            teams.append(Team(name=name, code=code, group=group, flag_emoji=flag))
    return teams


def _ensure_tournament(session: Session) -> None:
    if get_active_tournament(session):
        return
    deadline = as_utc(datetime.fromisoformat(PREDICTION_DEADLINE))
    session.add(Tournament(name=TOURNAMENT_NAME, is_active=True, prediction_deadline=deadline))
    session.commit()


def _ensure_fixtures(session: Session) -> None:
    from .bracket import generate_fixtures

    if session.exec(select(Match).limit(1)).first():
        return
    teams = session.exec(select(Team)).all()
    if not teams:
        teams = default_teams()
        for team in teams:
            session.add(team)
        session.commit()
        teams = session.exec(select(Team)).all()
    first_kickoff = as_utc(datetime.fromisoformat(PREDICTION_DEADLINE))
    for match in generate_fixtures(teams, first_kickoff=first_kickoff):
        session.add(match)
    session.commit()
    logger.info("Seeded %d teams and the full match schedule", len(teams))


def _ensure_admin(session: Session) -> None:
    from .auth import hash_password

    if not ADMIN_PASSWORD:
        logger.info("ADMIN_PASSWORD not configured. Skipping admin account seed.")
        return
    existing = session.exec(select(User).where(User.email == ADMIN_EMAIL.lower())).first()
    if existing:
        return
    session.add(
        User(
            name=ADMIN_NAME,
            email=ADMIN_EMAIL.lower(),
            password_hash=hash_password(ADMIN_PASSWORD),
            role="admin",
        )
    )
    session.commit()
    logger.info("Seeded admin account %s", ADMIN_EMAIL)


def _ensure_match_columns() -> None:
    with engine.begin() as conn:
        dialect = conn.dialect.name
        if dialect == "sqlite":
            rows = conn.exec_driver_sql("PRAGMA table_info('match')")
            existing_columns = {row[1] for row in rows}
        else:
            rows = conn.exec_driver_sql(
                "SELECT column_name FROM information_schema.columns "
                "WHERE table_name='match' AND table_schema = current_schema()"
            )
            existing_columns = {row[0] for row in rows}

        statements: list[str] = []
        if "is_bonus_match" not in existing_columns:
            if dialect == "sqlite":
                statements.append("ALTER TABLE match ADD COLUMN is_bonus_match INTEGER DEFAULT 0 NOT NULL")
            else:
                statements.append("ALTER TABLE match ADD COLUMN is_bonus_match BOOLEAN DEFAULT FALSE NOT NULL")
        if "winner_team_id" not in existing_columns:
            column_type = "TEXT" if dialect == "sqlite" else "VARCHAR"
            statements.append(f"ALTER TABLE match ADD COLUMN winner_team_id {column_type}")

        for stmt in statements:
            conn.exec_driver_sql(stmt)
