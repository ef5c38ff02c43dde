import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from app.core.config import AuthConfig
from app.core.database import get_db
from app.models.auth import Actor

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

bearer_scheme = HTTPBearer(auto_error=False)

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)

def create_access_token(user_id: str, organization_id: str, role: str, user_type: str,
                        expires_minutes: Optional[int] = None) -> str:
    """Create a signed JWT for a staff or client login"""
    minutes = expires_minutes or AuthConfig.JWT_EXPIRES_MINUTES
    payload = {
        "sub": user_id,
        "organizationId": organization_id,
        "role": role,
        "type": user_type,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, AuthConfig.JWT_SECRET, algorithm=AuthConfig.JWT_ALGORITHM)

def load_staff_actor(conn, staff_id: str) -> Optional[Actor]:
    row = conn.execute('''
        SELECT id, organization_id, role, name, email
        FROM staff_users
        WHERE id = ? AND is_active = TRUE
    ''', (staff_id,)).fetchone()
    if not row:
        return None
    return Actor(
        id=row['id'],
        organization_id=row['organization_id'],
        role=row['role'],
        type="staff",
        name=row['name'],
        email=row['email'],
    )

def load_client_actor(conn, client_user_id: str) -> Optional[Actor]:
    row = conn.execute('''
        SELECT cu.id, cu.email, cu.client_id, c.organization_id, c.last_name, c.first_name
        FROM client_users cu
        JOIN clients c ON c.id = cu.client_id
        WHERE cu.id = ? AND cu.is_active = TRUE
    ''', (client_user_id,)).fetchone()
    if not row:
        return None
    return Actor(
        id=row['id'],
        organization_id=row['organization_id'],
        role="client",
        type="client",
        name=f"{row['last_name']} {row['first_name']}",
        email=row['email'],
        client_id=row['client_id'],
    )

async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    """Decode the bearer token and reload the user it names"""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        data = jwt.decode(
            credentials.credentials,
            AuthConfig.JWT_SECRET,
            algorithms=[AuthConfig.JWT_ALGORITHM],
        )
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    with get_db() as conn:
        if data.get("type") == "client":
            actor = load_client_actor(conn, data.get("sub"))
        else:
            actor = load_staff_actor(conn, data.get("sub"))

    if actor is None:
        logger.warning(f"Token for unknown or inactive user {data.get('sub')}")
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return actor

async def require_staff(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.type != "staff":
        raise HTTPException(status_code=403, detail="Staff access required")
    return actor

async def require_client(actor: Actor = Depends(get_current_actor)) -> Actor:
    if actor.type != "client":
        raise HTTPException(status_code=403, detail="Client access required")
    return actor

def require_roles(*roles: str):
    """Dependency factory allowing only staff whose role is listed"""

    async def checker(actor: Actor = Depends(require_staff)) -> Actor:
        if actor.role not in roles:
            logger.warning(f"Staff {actor.id} with role {actor.role} denied, needs one of {roles}")
            raise HTTPException(status_code=403, detail="Insufficient privileges")
        return actor

    return checker

require_admin = require_roles("admin")
require_manager = require_roles("admin", "service_manager")
