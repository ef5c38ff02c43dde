from pydantic import BaseModel
from typing import Optional, List

class AttendanceReportRequest(BaseModel):
    """Client's own report for a day"""
    date: str  # YYYY-MM-DD
    status: str
    checkInTime: Optional[str] = None   # HH:MM or ISO timestamp
    checkOutTime: Optional[str] = None
    healthCondition: Optional[str] = None
    notes: Optional[str] = None

class AttendanceConfirmRequest(BaseModel):
    clientId: str
    date: str
    status: str
    checkInTime: Optional[str] = None
    checkOutTime: Optional[str] = None
    actualMinutes: Optional[int] = None
    notes: Optional[str] = None

class AttendanceBulkEntry(BaseModel):
    clientId: str
    status: str
    checkInTime: Optional[str] = None
    checkOutTime: Optional[str] = None
    actualMinutes: Optional[int] = None
    notes: Optional[str] = None

class AttendanceBulkConfirmRequest(BaseModel):
    date: str
    entries: List[AttendanceBulkEntry]
