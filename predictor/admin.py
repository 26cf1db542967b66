from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from . import actions
from .auth import Principal, current_principal
from .database import get_session
from .results import read_json, to_response
from .store import SqlMatchStore

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/matches/override", name="admin_override_match")
async def override_match(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    body = await read_json(request)
    return to_response(actions.override_knockout_slot(principal, body, SqlMatchStore(session)))


@router.post("/settings/bonus-match", name="admin_bonus_match")
async def bonus_match(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    body = await read_json(request)
    return to_response(actions.set_bonus_match(principal, body, SqlMatchStore(session)))


@router.post("/matches/result", name="admin_match_result")
async def match_result(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    body = await read_json(request)
    return to_response(actions.save_result(principal, body, session))


@router.post("/matches/bulk-result", name="admin_bulk_result")
async def bulk_result(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    body = await read_json(request)
    return to_response(actions.save_bulk_results(principal, body, session))


@router.post("/settings/deadline", name="admin_deadline")
async def deadline(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    body = await read_json(request)
    return to_response(actions.set_deadline(principal, body, session))


@router.get("/settings/signup", name="admin_signup_status")
async def signup_status(
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    return to_response(actions.get_signup(principal, session))


@router.post("/settings/signup", name="admin_signup_toggle")
async def signup_toggle(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    body = await read_json(request)
    return to_response(actions.set_signup(principal, body, session))


@router.post("/settings/team", name="admin_rename_team")
async def rename_team(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    body = await read_json(request)
    return to_response(actions.rename_team(principal, body, session))


@router.get("/users", name="admin_users")
async def users(
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    return to_response(actions.list_users(principal, session))


@router.post("/users/role", name="admin_user_role")
async def user_role(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    body = await read_json(request)
    return to_response(actions.change_role(principal, body, session))


@router.post("/users/reset-password", name="admin_reset_password")
async def user_reset_password(
    request: Request,
    principal: Principal | None = Depends(current_principal),
    session: Session = Depends(get_session),
):
    body = await read_json(request)
    return to_response(actions.reset_password(principal, body, session))
