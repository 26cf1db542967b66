"""Persistence capabilities handed to the admin actions."""

from __future__ import annotations

from typing import Any, Protocol

from sqlmodel import Session

from .bracket import override_knockout_team
from .database import Match, Team


class MatchStore(Protocol):
    def update_by_id(self, match_id: str, **fields: Any) -> dict[str, Any]:
        """Update the named attributes of one match and return its representation."""
        ...

    def assign_slot(self, match_id: str, team_id: str, slot: str) -> None:
        """Put a team into the home or away slot of a knockout match."""
        ...


def match_to_dict(match: Match) -> dict[str, Any]:
    return {
        "id": match.id,
        "matchNumber": match.match_number,
        "stage": match.stage,
        "group": match.group,
        "homeTeamId": match.home_team_id,
        "awayTeamId": match.away_team_id,
        "homePlaceholder": match.home_placeholder,
        "awayPlaceholder": match.away_placeholder,
        "kickoff": match.kickoff.isoformat() if match.kickoff else None,
        "realScoreHome": match.real_score_home,
        "realScoreAway": match.real_score_away,
        "winnerTeamId": match.winner_team_id,
        "isBonusMatch": match.is_bonus_match,
    }


def team_to_dict(team: Team) -> dict[str, Any]:
    return {
        "id": team.id,
        "name": team.name,
        "code": team.code,
        "group": team.group,
        "flagEmoji": team.flag_emoji,
    }


class SqlMatchStore:
    """MatchStore backed by a request-scoped SQLModel session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def update_by_id(self, match_id: str, **fields: Any) -> dict[str, Any]:
        match = self.session.get(Match, match_id)
        if match is None:
            raise LookupError(f"Match {match_id} not found")
        for name, value in fields.items():
            if not hasattr(match, name):
                raise AttributeError(f"Match has no attribute {name!r}")
            setattr(match, name, value)
        self.session.add(match)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(match)
        return match_to_dict(match)

    def assign_slot(self, match_id: str, team_id: str, slot: str) -> None:
        override_knockout_team(self.session, match_id, team_id, slot)
