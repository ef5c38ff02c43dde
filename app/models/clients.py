from pydantic import BaseModel
from typing import Optional

SERVICE_TYPES = (
    "employment_transition",
    "employment_continuation_a",
    "employment_continuation_b",
    "employment_settlement",
)

CLIENT_STATUSES = ("active", "suspended", "terminated", "trial")

class ClientCreate(BaseModel):
    lastName: Optional[str] = None
    firstName: Optional[str] = None
    serviceType: Optional[str] = None
    clientNumber: Optional[str] = None
    status: str = "active"
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    notes: Optional[str] = None

class ClientUpdate(BaseModel):
    lastName: Optional[str] = None
    firstName: Optional[str] = None
    serviceType: Optional[str] = None
    clientNumber: Optional[str] = None
    status: Optional[str] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    notes: Optional[str] = None

class CertificateCreate(BaseModel):
    clientId: Optional[str] = None
    type: Optional[str] = None
    typeName: Optional[str] = None
    number: Optional[str] = None
    issuedAt: Optional[str] = None
    validFrom: Optional[str] = None
    validUntil: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None

class CertificateUpdate(BaseModel):
    type: Optional[str] = None
    typeName: Optional[str] = None
    number: Optional[str] = None
    issuedAt: Optional[str] = None
    validFrom: Optional[str] = None
    validUntil: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
