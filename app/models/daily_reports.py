from pydantic import BaseModel
from typing import Any, Optional

class DailyReportSubmit(BaseModel):
    """A client's end-of-day report; staff submitting on a client's behalf pass clientId"""
    clientId: Optional[str] = None
    date: Optional[str] = None  # YYYY-MM-DD, defaults to today
    workContent: Optional[Any] = None
    mood: Optional[int] = None    # 1-5
    health: Optional[int] = None  # 1-5
    reflection: Optional[str] = None
    concerns: Optional[Any] = None

class DailyReportComment(BaseModel):
    content: Optional[str] = None
    isTemplate: bool = False
