from pydantic import BaseModel
from typing import Optional

STAFF_ROLES = ("admin", "service_manager", "support_staff")

class Actor(BaseModel):
    """Authenticated caller resolved from a bearer token"""
    id: str
    organization_id: str
    role: str
    type: str  # "staff" or "client"
    name: Optional[str] = None
    email: Optional[str] = None
    client_id: Optional[str] = None

class LoginRequest(BaseModel):
    email: str
    password: str

class LoginResponse(BaseModel):
    token: str
    user: Actor

class ChangePasswordRequest(BaseModel):
    currentPassword: str
    newPassword: str
