from pydantic import BaseModel
from typing import Any, Optional

class SupportPlanCreate(BaseModel):
    clientId: Optional[str] = None
    sessionId: Optional[str] = None
    planPeriodStart: Optional[str] = None
    planPeriodEnd: Optional[str] = None
    serviceType: Optional[str] = None  # defaults to the client's service type
    planContent: Optional[Any] = None  # free-form object or text

class SupportPlanUpdate(BaseModel):
    planPeriodStart: Optional[str] = None
    planPeriodEnd: Optional[str] = None
    serviceType: Optional[str] = None
    planContent: Optional[Any] = None
    status: Optional[str] = None

class GeneratePlanRequest(BaseModel):
    sessionId: Optional[str] = None
    planPeriodStart: Optional[str] = None
    planPeriodEnd: Optional[str] = None

class PlanConsentRequest(BaseModel):
    consentBy: Optional[str] = None
    consentRelationship: Optional[str] = None
    consentSignature: Optional[str] = None

class PlanDeliveryRequest(BaseModel):
    deliveryTo: Optional[str] = None
    deliveryMethod: str = "direct"

class MonitoringCreate(BaseModel):
    monitoringDate: Optional[str] = None
    result: Optional[Any] = None
    hasChanges: bool = False
    notes: Optional[str] = None
