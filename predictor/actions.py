"""Admin actions: guard the caller, validate the body, perform one mutation.

Every action returns an ``Ok`` or ``Failure`` instead of raising.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlmodel import Session, select

from .auth import ROLES, Principal, ensure_admin, generate_password, hash_password
from .bracket import SLOTS
from .database import Match, Team, User, get_active_tournament, is_registration_enabled, set_registration_enabled
from .results import Failure, FailureKind, Ok, Result, bad_request, internal_error
from .scoring import is_valid_score, record_result
from .store import MatchStore, team_to_dict

logger = logging.getLogger(__name__)

Body = dict[str, Any] | None


def _require_body(body: Body) -> Failure | None:
    if not isinstance(body, dict):
        return bad_request("Invalid JSON body")
    return None


def override_knockout_slot(principal: Principal | None, body: Body, store: MatchStore) -> Result:
    denied = ensure_admin(principal)
    if denied:
        return denied
    invalid = _require_body(body)
    if invalid:
        return invalid

    match_id = body.get("matchId")
    team_id = body.get("teamId")
    slot = body.get("slot")
    if not match_id or not team_id or not slot:
        return bad_request("Missing required fields")
    if slot not in SLOTS:
        return bad_request("Invalid slot")

    try:
        store.assign_slot(match_id, team_id, slot)
    except Exception:
        logger.exception("Error overriding match team for match %s", match_id)
        return internal_error("Failed to override match team")
    return Ok({"message": "Match team overridden successfully"})


def set_bonus_match(principal: Principal | None, body: Body, store: MatchStore) -> Result:
    denied = ensure_admin(principal)
    if denied:
        return denied
    invalid = _require_body(body)
    if invalid:
        return invalid

    match_id = body.get("matchId")
    if not match_id:
        return bad_request("Match ID is required")

    # An absent flag leaves the match as it is; null or odd values go to the store.
    fields = {"is_bonus_match": body["isBonusMatch"]} if "isBonusMatch" in body else {}
    try:
        updated = store.update_by_id(match_id, **fields)
    except Exception:
        logger.exception("Error updating bonus match status for match %s", match_id)
        return internal_error("Failed to update bonus match status")
    return Ok(updated)


def save_result(principal: Principal | None, body: Body, session: Session) -> Result:
    denied = ensure_admin(principal)
    if denied:
        return denied
    invalid = _require_body(body)
    if invalid:
        return invalid

    match_id = body.get("matchId")
    home_score = body.get("homeScore")
    away_score = body.get("awayScore")
    if not match_id or home_score is None or away_score is None:
        return bad_request("Match ID and scores are required")
    if not is_valid_score(home_score) or not is_valid_score(away_score):
        return bad_request("Scores must be between 0 and 20")

    try:
        match = session.get(Match, match_id)
        if not match:
            return Failure(FailureKind.NOT_FOUND, "Match not found")
        updated = record_result(session, match, home_score, away_score, body.get("winnerId"))
    except Exception:
        logger.exception("Error saving match result for match %s", match_id)
        return internal_error("Failed to save match result")
    return Ok({"message": "Result saved and points calculated", "predictionsUpdated": updated})


def save_bulk_results(principal: Principal | None, body: Body, session: Session) -> Result:
    denied = ensure_admin(principal)
    if denied:
        return denied
    invalid = _require_body(body)
    if invalid:
        return invalid

    results = body.get("results")
    if not isinstance(results, list) or not results:
        return bad_request("Results array is required")

    applied = 0
    try:
        # Apply in match-number order so earlier rounds feed later ones.
        entries: list[tuple[Match, dict[str, Any]]] = []
        for entry in results:
            if not isinstance(entry, dict) or not entry.get("matchId"):
                continue
            if not is_valid_score(entry.get("homeScore")) or not is_valid_score(entry.get("awayScore")):
                continue
            match = session.get(Match, entry["matchId"])
            if match is None:
                continue
            entries.append((match, entry))
        for match, entry in sorted(entries, key=lambda item: item[0].match_number):
            record_result(session, match, entry["homeScore"], entry["awayScore"], entry.get("winnerId"))
            applied += 1
    except Exception:
        # Entries before the failure stay committed.
        logger.exception("Error saving bulk results; totalMatchesUpdated=%d", applied)
        return internal_error(f"Failed to save bulk results after {applied} matches were updated")
    return Ok({"message": "Bulk results saved and points calculated", "totalMatchesUpdated": applied})


def set_deadline(principal: Principal | None, body: Body, session: Session) -> Result:
    denied = ensure_admin(principal)
    if denied:
        return denied
    invalid = _require_body(body)
    if invalid:
        return invalid

    raw = body.get("deadline")
    if not raw:
        return bad_request("Deadline is required")
    try:
        deadline = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return bad_request("Deadline must be an ISO 8601 timestamp")
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)

    try:
        tournament = get_active_tournament(session)
        if not tournament:
            return Failure(FailureKind.NOT_FOUND, "No active tournament found")
        tournament.prediction_deadline = deadline
        session.add(tournament)
        session.commit()
    except Exception:
        logger.exception("Error updating deadline")
        return internal_error("Internal server error")
    logger.info("Prediction deadline moved to %s", deadline.isoformat())
    return Ok({"success": True})


def get_signup(principal: Principal | None, session: Session) -> Result:
    denied = ensure_admin(principal)
    if denied:
        return denied
    try:
        enabled = is_registration_enabled(session)
    except Exception:
        logger.exception("Error fetching signup setting")
        return internal_error("Internal server error")
    return Ok({"enabled": enabled})


def set_signup(principal: Principal | None, body: Body, session: Session) -> Result:
    denied = ensure_admin(principal)
    if denied:
        return denied
    invalid = _require_body(body)
    if invalid:
        return invalid

    enabled = body.get("enabled")
    if not isinstance(enabled, bool):
        return bad_request("Invalid payload")
    try:
        set_registration_enabled(session, enabled)
    except Exception:
        logger.exception("Error updating signup setting")
        return internal_error("Internal server error")
    return Ok({"success": True, "enabled": enabled})


def rename_team(principal: Principal | None, body: Body, session: Session) -> Result:
    denied = ensure_admin(principal)
    if denied:
        return denied
    invalid = _require_body(body)
    if invalid:
        return invalid

    team_id = body.get("teamId")
    name = body.get("name")
    if not team_id or not name:
        return bad_request("Team ID and name are required")

    try:
        team = session.get(Team, team_id)
        if team is None:
            raise LookupError(f"Team {team_id} not found")
        team.name = str(name).strip()
        session.add(team)
        session.commit()
        session.refresh(team)
    except Exception:
        session.rollback()
        logger.exception("Error updating team name for team %s", team_id)
        return internal_error("Failed to update team name")
    return Ok(team_to_dict(team))


def change_role(principal: Principal | None, body: Body, session: Session) -> Result:
    denied = ensure_admin(principal)
    if denied:
        return denied
    invalid = _require_body(body)
    if invalid:
        return invalid

    user_id = body.get("userId")
    role = body.get("role")
    if not user_id or not role:
        return bad_request("User ID and role are required")
    if role not in ROLES:
        return bad_request("Invalid role")
    if user_id == principal.id and role != "admin":
        return bad_request("Cannot change your own admin role")

    try:
        user = session.get(User, user_id)
        if user is None:
            raise LookupError(f"User {user_id} not found")
        user.role = role
        session.add(user)
        session.commit()
    except Exception:
        logger.exception("Error updating user role for user %s", user_id)
        return internal_error("Failed to update user role")
    logger.info("User %s role set to %s by %s", user_id, role, principal.email)
    return Ok({"message": "User role updated successfully"})


def reset_password(principal: Principal | None, body: Body, session: Session) -> Result:
    denied = ensure_admin(principal)
    if denied:
        return denied
    invalid = _require_body(body)
    if invalid:
        return invalid

    user_id = body.get("userId")
    if not user_id:
        return bad_request("User ID is required")

    new_password = generate_password()
    try:
        user = session.get(User, user_id)
        if user is None:
            raise LookupError(f"User {user_id} not found")
        user.password_hash = hash_password(new_password)
        session.add(user)
        session.commit()
    except Exception:
        logger.exception("Error resetting password for user %s", user_id)
        return internal_error("Failed to reset password")
    return Ok({"message": "Password reset successfully", "newPassword": new_password})


def list_users(principal: Principal | None, session: Session) -> Result:
    denied = ensure_admin(principal)
    if denied:
        return denied
    users = session.exec(select(User).order_by(User.created_at)).all()
    return Ok(
        [
            {"id": user.id, "name": user.name, "email": user.email, "role": user.role}
            for user in users
        ]
    )
