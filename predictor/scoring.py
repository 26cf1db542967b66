"""Prediction scoring and leaderboard aggregation."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlmodel import Session, select

from .bracket import GROUP_STAGE, advance_knockout_winner, match_winner, update_knockout_bracket
from .database import Match, Prediction, User

logger = logging.getLogger(__name__)

EXACT_SCORE_POINTS = 3
CORRECT_RESULT_POINTS = 1
KNOCKOUT_WINNER_POINTS = 1
MIN_SCORE = 0
MAX_SCORE = 20

PHASES = ("all", "group", "knockout", "bonus")


def outcome(home: int, away: int) -> str:
    if home > away:
        return "home"
    if home < away:
        return "away"
    return "draw"


def predicted_winner_id(prediction: Prediction, match: Match) -> str | None:
    side = outcome(prediction.predicted_home, prediction.predicted_away)
    if side == "draw":
        side = prediction.predicted_winner
    if side == "home":
        return match.home_team_id
    if side == "away":
        return match.away_team_id
    return None


def calculate_points(
    prediction: Prediction,
    match: Match,
    home_score: int,
    away_score: int,
    actual_winner_id: str | None = None,
) -> int:
    if prediction.predicted_home == home_score and prediction.predicted_away == away_score:
        points = EXACT_SCORE_POINTS
    elif outcome(prediction.predicted_home, prediction.predicted_away) == outcome(home_score, away_score):
        points = CORRECT_RESULT_POINTS
    else:
        points = 0

    if match.stage != GROUP_STAGE and actual_winner_id:
        if predicted_winner_id(prediction, match) == actual_winner_id:
            points += KNOCKOUT_WINNER_POINTS
    return points


def is_valid_score(value: object) -> bool:
    # bool is an int subclass; reject it explicitly.
    return isinstance(value, int) and not isinstance(value, bool) and MIN_SCORE <= value <= MAX_SCORE


def record_result(
    session: Session,
    match: Match,
    home_score: int,
    away_score: int,
    winner_id: str | None = None,
) -> int:
    """Store a final score, move the bracket along, and re-score predictions.

    Returns the number of predictions that were scored.
    """
    match.real_score_home = home_score
    match.real_score_away = away_score
    session.add(match)
    session.commit()

    actual_winner_id = None
    if match.stage == GROUP_STAGE:
        update_knockout_bracket(session)
    else:
        actual_winner_id = match_winner(match, home_score, away_score, winner_id)
        if actual_winner_id:
            advance_knockout_winner(session, match, actual_winner_id)

    predictions = session.exec(select(Prediction).where(Prediction.match_id == match.id)).all()
    for prediction in predictions:
        prediction.points_earned = calculate_points(prediction, match, home_score, away_score, actual_winner_id)
        session.add(prediction)
    session.commit()
    logger.info(
        "Result %d-%d stored for match %s; %d predictions scored",
        home_score,
        away_score,
        match.match_number,
        len(predictions),
    )
    return len(predictions)


def build_leaderboard(
    users: Iterable[User],
    predictions: Iterable[Prediction],
    matches: Iterable[Match],
    phase: str = "all",
) -> list[dict[str, object]]:
    match_lookup = {match.id: match for match in matches}
    stats: dict[str, dict[str, object]] = {}
    for user in users:
        stats[user.id] = {
            "id": user.id,
            "name": user.name,
            "totalPoints": 0,
            "groupPoints": 0,
            "knockoutPoints": 0,
            "bonusMatchPoints": 0,
            "bonusMatchExact": 0,
            "exactScores": 0,
            "groupExactScores": 0,
            "knockoutExactScores": 0,
            "correctResults": 0,
            "predictedCount": 0,
        }

    for prediction in predictions:
        entry = stats.get(prediction.user_id)
        match = match_lookup.get(prediction.match_id)
        if entry is None or match is None:
            continue
        points = prediction.points_earned
        entry["predictedCount"] += 1
        entry["totalPoints"] += points
        if match.stage == GROUP_STAGE:
            entry["groupPoints"] += points
        else:
            entry["knockoutPoints"] += points
        # 4 is an exact score plus the knockout winner point, 2 a correct result plus it.
        if points in (3, 4):
            entry["exactScores"] += 1
            if match.stage == GROUP_STAGE:
                entry["groupExactScores"] += 1
            else:
                entry["knockoutExactScores"] += 1
        elif points in (1, 2):
            entry["correctResults"] += 1
        if match.is_bonus_match:
            entry["bonusMatchPoints"] += points
            if points >= EXACT_SCORE_POINTS:
                entry["bonusMatchExact"] += 1

    points_key, exact_key = {
        "group": ("groupPoints", "groupExactScores"),
        "knockout": ("knockoutPoints", "knockoutExactScores"),
        "bonus": ("bonusMatchPoints", "bonusMatchExact"),
    }.get(phase, ("totalPoints", "exactScores"))
    ordered = sorted(stats.values(), key=lambda row: (-row[points_key], -row[exact_key], row["name"]))

    rank = 0
    previous: tuple[object, object] | None = None
    for index, row in enumerate(ordered, start=1):
        key = (row[points_key], row[exact_key])
        if key != previous:
            rank = index
            previous = key
        row["rank"] = rank
        row["points"] = row[points_key]
    return ordered
