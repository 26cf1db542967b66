"""Fixture generation and knockout progression for the 48-team tournament."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Sequence, Tuple, TypedDict

from sqlmodel import Session, select

from .database import GROUPS, Match, Team

logger = logging.getLogger(__name__)

SLOTS = ("home", "away")
GROUP_STAGE = "group"
GROUP_MATCH_COUNT = 72
THIRD_PLACE_MATCH = 103
FINAL_MATCH = 104

# (stage, first match number, match count)
KNOCKOUT_ROUNDS = (
    ("round32", 73, 16),
    ("round16", 89, 8),
    ("quarter", 97, 4),
    ("semi", 101, 2),
)

ROUND_OF_32 = [
    ("Winner A", "3rd place 1"),
    ("Winner B", "3rd place 2"),
    ("Winner C", "3rd place 3"),
    ("Winner D", "3rd place 4"),
    ("Winner E", "3rd place 5"),
    ("Winner F", "3rd place 6"),
    ("Winner G", "3rd place 7"),
    ("Winner H", "3rd place 8"),
    ("Winner I", "Runner-up A"),
    ("Winner J", "Runner-up B"),
    ("Winner K", "Runner-up C"),
    ("Winner L", "Runner-up D"),
    ("Runner-up E", "Runner-up F"),
    ("Runner-up G", "Runner-up H"),
    ("Runner-up I", "Runner-up J"),
    ("Runner-up K", "Runner-up L"),
]


class Standing(TypedDict):
    id: str
    name: str
    pts: int
    gp: int
    w: int
    d: int
    l: int
    gf: int
    ga: int
    gd: int


def generate_fixtures(teams: Sequence[Team], first_kickoff: datetime | None = None) -> List[Match]:
    """Create all 104 matches: group round robins followed by the knockout tree."""
    by_group: dict[str, list[Team]] = {group: [] for group in GROUPS}
    for team in teams:
        by_group.setdefault(team.group, []).append(team)

    group_rounds = {
        group: _round_robin_pairings([team.id for team in members], 3)
        for group, members in by_group.items()
        if len(members) >= 2
    }

    matches: List[Match] = []
    number = 1
    for round_index in range(3):
        for group in GROUPS:
            for home_id, away_id in group_rounds.get(group, [[]] * 3)[round_index]:
                if home_id is None or away_id is None:
                    continue
                matches.append(
                    Match(
                        match_number=number,
                        stage=GROUP_STAGE,
                        group=group,
                        home_team_id=home_id,
                        away_team_id=away_id,
                    )
                )
                number += 1

    for offset, (home, away) in enumerate(ROUND_OF_32):
        matches.append(_knockout_match(GROUP_MATCH_COUNT + 1 + offset, "round32", home, away))
    for stage, first, count in KNOCKOUT_ROUNDS[1:]:
        previous_first = first - count * 2
        for offset in range(count):
            feeder = previous_first + offset * 2
            matches.append(
                _knockout_match(first + offset, stage, f"Winner Match {feeder}", f"Winner Match {feeder + 1}")
            )
    matches.append(_knockout_match(THIRD_PLACE_MATCH, "third", "Loser Match 101", "Loser Match 102"))
    matches.append(_knockout_match(FINAL_MATCH, "final", "Winner Match 101", "Winner Match 102"))

    if first_kickoff is not None:
        for match in matches:
            index = match.match_number - 1
            match.kickoff = first_kickoff + timedelta(days=index // 4, hours=3 * (index % 4))
    return matches


def _knockout_match(number: int, stage: str, home: str, away: str) -> Match:
    return Match(match_number=number, stage=stage, home_placeholder=home, away_placeholder=away)


def _round_robin_pairings(teams: Sequence[str], round_count: int) -> List[List[Tuple[str | None, str | None]]]:
    """Return pairings for each round using the circle method rotation."""
    roster: list[str | None] = list(teams)
    if len(roster) % 2 == 1:
        roster.append(None)

    working = roster[:]
    rounds: List[List[Tuple[str | None, str | None]]] = []
    for _ in range(round_count):
        pairs: List[Tuple[str | None, str | None]] = []
        for idx in range(len(working) // 2):
            pairs.append((working[idx], working[-(idx + 1)]))
        rounds.append(pairs)

        if len(working) <= 2:
            continue
        # Rotate all but the first position.
        working = [working[0]] + [working[-1]] + working[1:-1]

    return rounds


def calculate_group_standings(matches: Iterable[Match], team_names: dict[str, str]) -> List[Standing]:
    """Return the group table for the given matches, best team first."""
    table: dict[str, Standing] = {}

    def _row(team_id: str) -> Standing:
        if team_id not in table:
            table[team_id] = Standing(
                id=team_id,
                name=team_names.get(team_id, team_id),
                pts=0, gp=0, w=0, d=0, l=0, gf=0, ga=0, gd=0,
            )
        return table[team_id]

    for match in matches:
        if not match.home_team_id or not match.away_team_id:
            continue
        home = _row(match.home_team_id)
        away = _row(match.away_team_id)
        if match.real_score_home is None or match.real_score_away is None:
            continue

        home_goals = match.real_score_home
        away_goals = match.real_score_away
        home["gp"] += 1
        away["gp"] += 1
        home["gf"] += home_goals
        home["ga"] += away_goals
        away["gf"] += away_goals
        away["ga"] += home_goals

        if home_goals > away_goals:
            home["pts"] += 3
            home["w"] += 1
            away["l"] += 1
        elif home_goals < away_goals:
            away["pts"] += 3
            away["w"] += 1
            home["l"] += 1
        else:
            home["pts"] += 1
            away["pts"] += 1
            home["d"] += 1
            away["d"] += 1

    standings = list(table.values())
    for row in standings:
        row["gd"] = row["gf"] - row["ga"]
    standings.sort(key=lambda row: (-row["pts"], -row["gd"], -row["gf"], row["name"]))
    return standings


def update_knockout_bracket(session: Session) -> int:
    """Fill group winner and runner-up slots once a group has finished.

    Best third-placed slots stay empty; admins fill them with an override.
    Returns the number of round of 32 matches that changed.
    """
    group_matches = session.exec(select(Match).where(Match.stage == GROUP_STAGE)).all()
    team_names = {team.id: team.name for team in session.exec(select(Team)).all()}

    qualifiers: dict[str, Standing] = {}
    for group in GROUPS:
        played = [match for match in group_matches if match.group == group]
        if not played or any(match.real_score_home is None or match.real_score_away is None for match in played):
            continue
        standings = calculate_group_standings(played, team_names)
        if len(standings) > 0:
            qualifiers[f"Winner {group}"] = standings[0]
        if len(standings) > 1:
            qualifiers[f"Runner-up {group}"] = standings[1]

    changed = 0
    round32 = session.exec(select(Match).where(Match.stage == "round32")).all()
    for match in round32:
        home_id = match.home_team_id
        away_id = match.away_team_id
        if match.home_placeholder in qualifiers:
            home_id = qualifiers[match.home_placeholder]["id"]
        if match.away_placeholder in qualifiers:
            away_id = qualifiers[match.away_placeholder]["id"]
        if home_id != match.home_team_id or away_id != match.away_team_id:
            match.home_team_id = home_id
            match.away_team_id = away_id
            session.add(match)
            changed += 1
    if changed:
        session.commit()
        logger.info("Knockout bracket updated: %d round of 32 matches resolved", changed)
    return changed


def next_knockout_slot(match_number: int) -> Tuple[int, str] | None:
    """Return (match number, slot) that the winner of ``match_number`` moves into."""
    for stage, first, count in KNOCKOUT_ROUNDS:
        if first <= match_number < first + count:
            offset = match_number - first
            slot = SLOTS[offset % 2]
            if stage == "semi":
                return FINAL_MATCH, slot
            return first + count + offset // 2, slot
    return None


def match_winner(match: Match, home_score: int, away_score: int, winner_id: str | None = None) -> str | None:
    """Return the team that won a knockout match; draws fall back to ``winner_id``."""
    if home_score > away_score:
        return match.home_team_id
    if away_score > home_score:
        return match.away_team_id
    if winner_id in (match.home_team_id, match.away_team_id):
        return winner_id
    return None


def advance_knockout_winner(session: Session, match: Match, winner_id: str) -> None:
    """Move the winner into the next round; semi-final losers drop into the third-place match."""
    match.winner_team_id = winner_id
    session.add(match)

    target = next_knockout_slot(match.match_number)
    if target:
        next_number, slot = target
        _assign(session, next_number, slot, winner_id)
        if match.stage == "semi":
            loser_id = match.away_team_id if winner_id == match.home_team_id else match.home_team_id
            if loser_id:
                _assign(session, THIRD_PLACE_MATCH, slot, loser_id)
    session.commit()


def _assign(session: Session, match_number: int, slot: str, team_id: str) -> None:
    target = session.exec(select(Match).where(Match.match_number == match_number)).first()
    if not target:
        raise LookupError(f"Match {match_number} not found")
    setattr(target, f"{slot}_team_id", team_id)
    session.add(target)


def override_knockout_team(session: Session, match_id: str, team_id: str, slot: str) -> Match:
    """Put ``team_id`` into the ``slot`` of a knockout match, replacing whatever was there."""
    if slot not in SLOTS:
        raise ValueError(f"Invalid slot: {slot!r}")
    match = session.get(Match, match_id)
    if not match:
        raise LookupError(f"Match {match_id} not found")
    if not session.get(Team, team_id):
        raise LookupError(f"Team {team_id} not found")

    setattr(match, f"{slot}_team_id", team_id)
    session.add(match)
    session.commit()
    session.refresh(match)
    logger.info("Match %s %s slot overridden with team %s", match.match_number, slot, team_id)
    return match
