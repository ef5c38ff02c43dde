import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from app.core.config import AuthConfig
from app.core.database import get_db, now_iso
from app.core.security import (
    create_access_token,
    get_current_actor,
    hash_password,
    load_client_actor,
    load_staff_actor,
    verify_password,
)
from app.models.auth import Actor, ChangePasswordRequest, LoginRequest, LoginResponse
from app.services.audit_service import log_audit

router = APIRouter()
logger = logging.getLogger(__name__)

INVALID_LOGIN = "Invalid email or password"

@router.post("/auth/staff/login", response_model=LoginResponse)
async def staff_login(request: LoginRequest, response: Response):
    """Log a staff member in and issue a bearer token"""
    response.headers["Cache-Control"] = "no-store"
    with get_db() as conn:
        row = conn.execute(
            "SELECT id, password_hash, is_active FROM staff_users WHERE email = ?",
            (request.email.strip().lower(),)
        ).fetchone()

        if not row or not verify_password(request.password, row['password_hash']):
            logger.warning(f"Failed staff login for {request.email}")
            raise HTTPException(status_code=401, detail=INVALID_LOGIN)
        if not row['is_active']:
            logger.warning(f"Inactive staff account login attempt: {request.email}")
            raise HTTPException(status_code=401, detail="Account is inactive")

        actor = load_staff_actor(conn, row['id'])
        log_audit(conn, actor.id, "login", "staff_users", actor.id)
        conn.commit()

    token = create_access_token(actor.id, actor.organization_id, actor.role, "staff")
    logger.info(f"Staff {actor.id} logged in")
    return LoginResponse(token=token, user=actor)

@router.post("/auth/client/login", response_model=LoginResponse)
async def client_login(request: LoginRequest, response: Response):
    """Log a client (service user) in"""
    response.headers["Cache-Control"] = "no-store"
    with get_db() as conn:
        row = conn.execute(
            "SELECT id, password_hash, is_active FROM client_users WHERE email = ?",
            (request.email.strip().lower(),)
        ).fetchone()

        if not row or not verify_password(request.password, row['password_hash']):
            logger.warning(f"Failed client login for {request.email}")
            raise HTTPException(status_code=401, detail=INVALID_LOGIN)
        if not row['is_active']:
            raise HTTPException(status_code=401, detail="Account is inactive")

        actor = load_client_actor(conn, row['id'])
        if actor is None:
            raise HTTPException(status_code=401, detail=INVALID_LOGIN)

    token = create_access_token(actor.id, actor.organization_id, actor.role, "client")
    logger.info(f"Client user {actor.id} logged in")
    return LoginResponse(token=token, user=actor)

@router.get("/auth/me", response_model=Actor)
async def get_me(actor: Actor = Depends(get_current_actor)):
    return actor

@router.post("/auth/change-password")
async def change_password(request: ChangePasswordRequest, actor: Actor = Depends(get_current_actor)):
    """Change the caller's own password"""
    if len(request.newPassword) < AuthConfig.MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"New password must be at least {AuthConfig.MIN_PASSWORD_LENGTH} characters"
        )

    table = "client_users" if actor.type == "client" else "staff_users"
    with get_db() as conn:
        row = conn.execute(f"SELECT password_hash FROM {table} WHERE id = ?", (actor.id,)).fetchone()
        if not row or not verify_password(request.currentPassword, row['password_hash']):
            raise HTTPException(status_code=401, detail="Current password is incorrect")

        conn.execute(
            f"UPDATE {table} SET password_hash = ? WHERE id = ?",
            (hash_password(request.newPassword), actor.id)
        )
        if actor.type == "staff":
            conn.execute("UPDATE staff_users SET updated_at = ? WHERE id = ?", (now_iso(), actor.id))
            log_audit(conn, actor.id, "change_password", "staff_users", actor.id)
        conn.commit()

    logger.info(f"Password changed for {actor.type} {actor.id}")
    return {"success": True, "message": "Password changed"}
