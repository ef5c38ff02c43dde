from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Union

CALCULATION_TYPES = ("hourly", "daily", "piece_rate", "mixed")
PAYROLL_STATUSES = ("calculating", "draft", "confirmed", "paid")

class DeductionSpec(BaseModel):
    name: str
    type: str  # "fixed" or "percentage"
    amount: Optional[float] = None
    rate: Optional[float] = None

class WageRuleCreate(BaseModel):
    name: Optional[str] = None
    clientId: Optional[str] = None
    calculationType: Optional[str] = None
    hourlyRate: Optional[float] = None
    dailyRate: Optional[float] = None
    # Either [{workType, unitPrice|price}] or {workType: price}
    pieceRates: Optional[Union[List[Dict[str, Any]], Dict[str, Any]]] = None
    deductions: Optional[List[DeductionSpec]] = None
    validFrom: Optional[str] = None
    validUntil: Optional[str] = None
    isDefault: bool = False

class WageRuleUpdate(BaseModel):
    name: Optional[str] = None
    clientId: Optional[str] = None
    calculationType: Optional[str] = None
    hourlyRate: Optional[float] = None
    dailyRate: Optional[float] = None
    pieceRates: Optional[Union[List[Dict[str, Any]], Dict[str, Any]]] = None
    deductions: Optional[List[DeductionSpec]] = None
    validFrom: Optional[str] = None
    validUntil: Optional[str] = None
    isDefault: Optional[bool] = None

class WorkLogCreate(BaseModel):
    clientId: str
    date: str  # YYYY-MM-DD
    workType: str
    quantity: float = 0
    unit: Optional[str] = None
    notes: Optional[str] = None

class WorkLogUpdate(BaseModel):
    date: Optional[str] = None
    workType: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    notes: Optional[str] = None

class WorkLogBulkEntry(BaseModel):
    clientId: Optional[str] = None
    workType: Optional[str] = None
    quantity: Optional[float] = None
    unit: Optional[str] = None
    notes: Optional[str] = None

class WorkLogBulkCreate(BaseModel):
    date: str
    entries: List[WorkLogBulkEntry]

class PayrollRunCreate(BaseModel):
    month: str  # YYYY-MM
    notes: Optional[str] = None

class PieceDetail(BaseModel):
    workType: str
    quantity: float
    unitPrice: float
    amount: int

class DeductionDetail(BaseModel):
    name: str
    type: str
    amount: int

class PayrollBreakdown(BaseModel):
    """Everything needed to re-display how a line was computed"""
    workDays: int
    totalMinutes: int
    totalHours: float
    wageRuleId: Optional[str] = None
    wageRuleName: str
    calculationType: str
    hourlyRate: Optional[float] = None
    hoursWorked: Optional[float] = None
    dailyRate: Optional[float] = None
    pieceDetails: List[PieceDetail] = Field(default_factory=list)
    deductionDetails: List[DeductionDetail] = Field(default_factory=list)

class PayrollLineResult(BaseModel):
    """Computed wage line for one client and period"""
    clientId: str
    workDays: int
    totalMinutes: int
    baseAmount: int
    pieceAmount: int
    deductions: int
    netAmount: int
    breakdown: PayrollBreakdown
