from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import urljoin

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlmodel import Session, select

from .auth import (
    MAX_PASSWORD_BYTES,
    SESSION_COOKIE_NAME,
    SESSION_COOKIE_SECURE,
    SESSION_MAX_AGE,
    USER_ROLE,
    Principal,
    current_principal,
    encode_session,
    ensure_user,
    hash_password,
    is_common_password,
    login_limiter,
    validate_password,
    verify_password,
)
from .bracket import SLOTS
from .database import (
    Match,
    Prediction,
    Team,
    User,
    as_utc,
    get_active_tournament,
    get_session,
    is_registration_enabled,
    predictions_locked,
)
from .results import Failure, FailureKind, Ok, Result, bad_request, internal_error, read_json, to_response
from .scoring import PHASES, build_leaderboard, is_valid_score
from .store import match_to_dict

BASE_DIR = Path(__file__).resolve().parent

router = APIRouter()
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 255
STAGE_TITLES = {
    "group": "Group Stage",
    "round32": "Round of 32",
    "round16": "Round of 16",
    "quarter": "Quarter-finals",
    "semi": "Semi-finals",
    "third": "Third Place",
    "final": "Final",
}


def _sanitize_next(next_param: str | None) -> str:
    if next_param and next_param.startswith("/") and not next_param.startswith("//"):
        return next_param
    return "/"


def _absolute_next(request: Request, next_param: str) -> str:
    return urljoin(str(request.base_url), next_param.lstrip("/"))


def _render(
    request: Request,
    template_name: str,
    context: dict[str, object],
    principal: Principal | None,
    *,
    status_code: int | None = None,
) -> HTMLResponse:
    payload = dict(context)
    payload["principal"] = principal
    payload["is_admin"] = bool(principal and principal.is_admin)
    response = templates.TemplateResponse(request, template_name, payload)
    if status_code is not None:
        response.status_code = status_code
    return response


def _team_lookup(session: Session) -> dict[str, Team]:
    return {team.id: team for team in session.exec(select(Team)).all()}


def _slot_label(match: Match, slot: str, teams: dict[str, Team]) -> str:
    team_id = getattr(match, f"{slot}_team_id")
    if team_id and team_id in teams:
        return teams[team_id].name
    return getattr(match, f"{slot}_placeholder") or "TBD"


def _match_rows(session: Session, principal: Principal | None) -> list[dict[str, Any]]:
    teams = _team_lookup(session)
    matches = session.exec(select(Match).order_by(Match.match_number)).all()
    mine: dict[str, Prediction] = {}
    if principal:
        mine = {
            prediction.match_id: prediction
            for prediction in session.exec(select(Prediction).where(Prediction.user_id == principal.id))
        }

    sections: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for match in matches:
        sections[match.stage].append(
            {
                "match": match,
                "home": _slot_label(match, "home", teams),
                "away": _slot_label(match, "away", teams),
                "prediction": mine.get(match.id),
            }
        )
    return [
        {"stage": stage, "title": title, "rows": sections[stage]}
        for stage, title in STAGE_TITLES.items()
        if sections.get(stage)
    ]


def _leaderboard(session: Session, phase: str) -> list[dict[str, object]]:
    users = session.exec(select(User)).all()
    predictions = session.exec(select(Prediction)).all()
    matches = session.exec(select(Match)).all()
    return build_leaderboard(users, predictions, matches, phase)


def prediction_to_dict(prediction: Prediction) -> dict[str, Any]:
    return {
        "id": prediction.id,
        "userId": prediction.user_id,
        "matchId": prediction.match_id,
        "predictedHome": prediction.predicted_home,
        "predictedAway": prediction.predicted_away,
        "predictedWinner": prediction.predicted_winner,
        "pointsEarned": prediction.points_earned,
    }


@router.get("/", response_class=HTMLResponse, name="index")
async def index(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    tournament = get_active_tournament(session)
    context = {
        "sections": _match_rows(session, principal),
        "tournament": tournament,
        "locked": predictions_locked(session),
    }
    return _render(request, "index.html", context, principal)


@router.get("/leaderboard", response_class=HTMLResponse, name="leaderboard_page")
async def leaderboard_page(
    request: Request,
    phase: str = "all",
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    if phase not in PHASES:
        phase = "all"
    context = {"entries": _leaderboard(session, phase), "phase": phase, "phases": PHASES}
    return _render(request, "leaderboard.html", context, principal)


@router.get("/login", response_class=HTMLResponse, name="login")
async def login_page(
    request: Request,
    next: str | None = None,
    principal: Principal | None = Depends(current_principal),
):
    next_raw = _sanitize_next(next)
    if principal:
        return RedirectResponse(_absolute_next(request, next_raw), status_code=303)
    context = {"next": next_raw, "error": None, "registered": request.query_params.get("registered")}
    return _render(request, "login.html", context, principal)


@router.post("/login", response_class=HTMLResponse, name="login_submit")
async def login_submit(
    request: Request,
    email: str = Form(..., max_length=MAX_TEXT_LENGTH),
    password: str = Form(..., max_length=MAX_TEXT_LENGTH),
    next: str = Form(default="/", max_length=MAX_TEXT_LENGTH),
    session: Session = Depends(get_session),
):
    next_raw = _sanitize_next(next)
    identifier = email.strip().lower()
    limit = login_limiter.check(identifier)
    if not limit.allowed:
        minutes = max(1, limit.reset_in // 60)
        context = {"next": next_raw, "error": f"Too many login attempts. Try again in {minutes} minutes."}
        return _render(request, "login.html", context, None, status_code=429)

    user = session.exec(select(User).where(User.email == identifier)).first()
    if user and verify_password(password, user.password_hash):
        login_limiter.reset(identifier)
        response = RedirectResponse(_absolute_next(request, next_raw), status_code=303)
        response.set_cookie(
            key=SESSION_COOKIE_NAME,
            value=encode_session(user.id),
            max_age=SESSION_MAX_AGE,
            httponly=True,
            secure=SESSION_COOKIE_SECURE,
            samesite="lax",
            path="/",
        )
        logger.info("User %s signed in", identifier)
        return response

    context = {"next": next_raw, "error": "Invalid email or password."}
    return _render(request, "login.html", context, None, status_code=401)


@router.post("/logout", response_class=HTMLResponse, name="logout")
async def logout(
    request: Request,
    next: str | None = Form(default=None, max_length=MAX_TEXT_LENGTH),
):
    next_raw = _sanitize_next(next)
    response = RedirectResponse(_absolute_next(request, next_raw), status_code=303)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response


def register_user(session: Session, name: str | None, email: str | None, password: str | None) -> Result:
    if not is_registration_enabled(session):
        return Failure(FailureKind.FORBIDDEN, "Registration is currently disabled")
    if not name or not email or not password:
        return bad_request("Name, email, and password are required")

    check = validate_password(password)
    if not check.valid:
        return bad_request(". ".join(check.errors))
    if is_common_password(password):
        return bad_request("This password is too common. Please choose a stronger password.")

    cleaned_email = email.strip().lower()
    if session.exec(select(User).where(User.email == cleaned_email)).first():
        return bad_request("Email already registered")

    user = User(name=name.strip(), email=cleaned_email, password_hash=hash_password(password), role=USER_ROLE)
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Registered user %s", cleaned_email)
    return Ok(
        {
            "message": "User created successfully",
            "user": {"id": user.id, "name": user.name, "email": user.email},
        },
        status=201,
    )


@router.get("/register", response_class=HTMLResponse, name="register")
async def register_page(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    context = {"enabled": is_registration_enabled(session), "error": None, "form": {}}
    return _render(request, "register.html", context, principal)


@router.post("/register", response_class=HTMLResponse, name="register_submit")
async def register_submit(
    request: Request,
    name: str = Form(..., max_length=120),
    email: str = Form(..., max_length=MAX_TEXT_LENGTH),
    password: str = Form(..., max_length=MAX_PASSWORD_BYTES),
    session: Session = Depends(get_session),
):
    result = register_user(session, name, email, password)
    if isinstance(result, Ok):
        login_url = request.url_for("login")
        return RedirectResponse(f"{login_url}?registered=1", status_code=303)
    context = {
        "enabled": is_registration_enabled(session),
        "error": result.message,
        "form": {"name": name, "email": email},
    }
    return _render(request, "register.html", context, None, status_code=result.status)


@router.post("/api/register", name="api_register")
async def api_register(request: Request, session: Session = Depends(get_session)):
    body = await read_json(request) or {}
    try:
        result = register_user(session, body.get("name"), body.get("email"), body.get("password"))
    except Exception:
        logger.exception("Registration error")
        result = internal_error("Internal server error")
    return to_response(result)


@router.get("/api/predictions", name="api_predictions")
async def list_predictions(
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    denied = ensure_user(principal)
    if denied:
        return to_response(denied)
    teams = _team_lookup(session)
    predictions = session.exec(select(Prediction).where(Prediction.user_id == principal.id)).all()
    matches = {match.id: match for match in session.exec(select(Match)).all()}
    payload = []
    for prediction in predictions:
        entry = prediction_to_dict(prediction)
        match = matches.get(prediction.match_id)
        if match:
            entry["match"] = match_to_dict(match)
            entry["match"]["homeTeam"] = _slot_label(match, "home", teams)
            entry["match"]["awayTeam"] = _slot_label(match, "away", teams)
        payload.append(entry)
    return JSONResponse(payload)


def save_prediction(principal: Principal | None, body: dict[str, Any] | None, session: Session) -> Result:
    denied = ensure_user(principal)
    if denied:
        return denied
    body = body or {}
    match_id = body.get("matchId")
    predicted_home = body.get("predictedHome")
    predicted_away = body.get("predictedAway")
    predicted_winner = body.get("predictedWinner")
    if not match_id or predicted_home is None or predicted_away is None:
        return bad_request("Match ID and scores are required")
    if not is_valid_score(predicted_home) or not is_valid_score(predicted_away):
        return bad_request("Scores must be between 0 and 20")
    if predicted_winner is not None and predicted_winner not in SLOTS:
        return bad_request("Invalid predicted winner")

    if predictions_locked(session):
        return Failure(FailureKind.FORBIDDEN, "Predictions are locked. Deadline has passed.")
    match = session.get(Match, match_id)
    if not match:
        return Failure(FailureKind.NOT_FOUND, "Match not found")

    prediction = session.exec(
        select(Prediction).where((Prediction.user_id == principal.id) & (Prediction.match_id == match_id))
    ).first()
    if prediction is None:
        prediction = Prediction(user_id=principal.id, match_id=match_id, predicted_home=0, predicted_away=0)
    prediction.predicted_home = predicted_home
    prediction.predicted_away = predicted_away
    prediction.predicted_winner = predicted_winner
    prediction.updated_at = datetime.now(timezone.utc)
    session.add(prediction)
    session.commit()
    session.refresh(prediction)
    return Ok(prediction_to_dict(prediction))


@router.post("/api/predictions", name="api_save_prediction")
async def submit_prediction(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    body = await read_json(request)
    try:
        result = save_prediction(principal, body, session)
    except Exception:
        logger.exception("Error saving prediction")
        result = internal_error("Failed to save prediction")
    return to_response(result)


@router.get("/api/matches", name="api_matches")
async def list_matches(session: Session = Depends(get_session)):
    teams = _team_lookup(session)
    payload = []
    for match in session.exec(select(Match).order_by(Match.match_number)).all():
        entry = match_to_dict(match)
        entry["homeTeam"] = _slot_label(match, "home", teams)
        entry["awayTeam"] = _slot_label(match, "away", teams)
        payload.append(entry)
    return JSONResponse(payload)


@router.get("/api/leaderboard", name="api_leaderboard")
async def leaderboard(phase: str = "all", session: Session = Depends(get_session)):
    if phase not in PHASES:
        return to_response(bad_request("Invalid phase"))
    return JSONResponse(_leaderboard(session, phase))


@router.get("/api/health", name="health")
async def health_check(session: Session = Depends(get_session)):
    tournament = get_active_tournament(session)
    deadline = as_utc(tournament.prediction_deadline).isoformat() if tournament else None
    return {"status": "ok", "predictionDeadline": deadline}
