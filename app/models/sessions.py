from pydantic import BaseModel
from typing import Optional

class InterviewSessionCreate(BaseModel):
    clientId: Optional[str] = None
    sessionType: Optional[str] = None
    sessionDate: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    recordingConsent: bool = False
    aiProcessingConsent: bool = False
    consentBy: Optional[str] = None
    consentRelationship: Optional[str] = None  # e.g. "本人", "保護者"
    consentVersion: Optional[str] = None

class InterviewSessionUpdate(BaseModel):
    sessionType: Optional[str] = None
    sessionDate: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    recordingConsent: Optional[bool] = None
    aiProcessingConsent: Optional[bool] = None
    consentBy: Optional[str] = None
    consentRelationship: Optional[str] = None
    consentVersion: Optional[str] = None

class StatusChangeRequest(BaseModel):
    status: str
    reason: Optional[str] = None
