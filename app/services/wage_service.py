# app/services/wage_service.py
"""
Wage rule resolution and per-client payroll line computation.

Everything here is pure: callers load rules, attendance confirmations and
work logs as plain dicts (snake_case keys, JSON columns already decoded)
and persist the returned PayrollLineResult themselves.
"""
import logging
import math
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple

from app.core.config import PayrollConfig
from app.models.wages import (
    DeductionDetail,
    PayrollBreakdown,
    PayrollLineResult,
    PieceDetail,
)

logger = logging.getLogger(__name__)

NO_RULE_NAME = "未設定"

def round_half_up(value: float) -> int:
    """Round to the nearest integer yen, halves going up"""
    return int(math.floor(value + 0.5))

def round_2(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100

def rule_covers_period(rule: Dict[str, Any], period_start: date, period_end: date) -> bool:
    valid_from = date.fromisoformat(rule['valid_from'][:10])
    if valid_from > period_end:
        return False
    if rule.get('valid_until'):
        valid_until = date.fromisoformat(rule['valid_until'][:10])
        if valid_until < period_start:
            return False
    return True

def _latest_rule(rules: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    # Latest validFrom wins; ties go to the most recently created rule, then id
    if not rules:
        return None
    return max(rules, key=lambda r: (r['valid_from'][:10], r.get('created_at') or "", r['id']))

def resolve_wage_rule(rules: List[Dict[str, Any]], client_id: str,
                      period_start: date, period_end: date) -> Optional[Dict[str, Any]]:
    """Pick the rule for a client: own rules first, then the facility default"""
    covering = [r for r in rules if rule_covers_period(r, period_start, period_end)]

    client_rules = [r for r in covering if r.get('client_id') == client_id]
    if client_rules:
        return _latest_rule(client_rules)

    defaults = [r for r in covering if r.get('client_id') is None and r.get('is_default')]
    return _latest_rule(defaults)

def parse_clock_time(value: str, on_date: str) -> datetime:
    """Accept 'HH:MM[:SS]' relative to on_date, or a full ISO timestamp"""
    value = value.strip()
    if "T" in value or " " in value:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return datetime.combine(date.fromisoformat(on_date[:10]), time.fromisoformat(value))

def parse_clock_span(check_in: str, check_out: str, on_date: str) -> Tuple[datetime, datetime]:
    """Parse a check-in/check-out pair; a bare HH:MM takes the other side's UTC offset"""
    start = parse_clock_time(check_in, on_date)
    end = parse_clock_time(check_out, on_date)
    if start.tzinfo is None and end.tzinfo is not None:
        start = start.replace(tzinfo=end.tzinfo)
    elif end.tzinfo is None and start.tzinfo is not None:
        end = end.replace(tzinfo=start.tzinfo)
    return start, end

def confirmation_minutes(confirmation: Dict[str, Any]) -> int:
    """Minutes credited for one present day"""
    if confirmation.get('actual_minutes') is not None:
        return int(confirmation['actual_minutes'])

    check_in = confirmation.get('check_in_time')
    check_out = confirmation.get('check_out_time')
    if check_in and check_out:
        start, end = parse_clock_span(check_in, check_out, confirmation['date'])
        return math.floor((end - start).total_seconds() / 60)

    return PayrollConfig.DEFAULT_DAILY_MINUTES

def lookup_unit_price(piece_rates: Any, work_type: str) -> float:
    """Find the unit price for a work type in either supported rate layout"""
    if not piece_rates:
        return 0

    if isinstance(piece_rates, list):
        rate = next((r for r in piece_rates if r.get('workType') == work_type), None)
    else:
        rate = piece_rates.get(work_type)

    if rate is None:
        return 0
    if isinstance(rate, (int, float)):
        return rate
    return rate.get('unitPrice') or rate.get('price') or 0

# --- calculation variants -------------------------------------------------

def _hourly_base(rule, work_days, total_minutes, breakdown) -> int:
    if not rule.get('hourly_rate'):
        return 0
    hours = total_minutes / 60
    breakdown.hourlyRate = rule['hourly_rate']
    breakdown.hoursWorked = round_2(hours)
    return round_half_up(hours * rule['hourly_rate'])

def _daily_base(rule, work_days, total_minutes, breakdown) -> int:
    if not rule.get('daily_rate'):
        return 0
    breakdown.dailyRate = rule['daily_rate']
    return round_half_up(work_days * rule['daily_rate'])

def _piece_amount(rule, work_logs, breakdown) -> int:
    total = 0
    for log in work_logs:
        quantity = log.get('quantity') or 0
        if quantity <= 0:
            continue
        unit_price = lookup_unit_price(rule.get('piece_rates'), log['work_type'])
        amount = round_half_up(quantity * unit_price)
        total += amount
        breakdown.pieceDetails.append(PieceDetail(
            workType=log['work_type'],
            quantity=quantity,
            unitPrice=unit_price,
            amount=amount,
        ))
    return total

def _calc_hourly(rule, work_days, total_minutes, work_logs, breakdown) -> Tuple[int, int]:
    return _hourly_base(rule, work_days, total_minutes, breakdown), 0

def _calc_daily(rule, work_days, total_minutes, work_logs, breakdown) -> Tuple[int, int]:
    return _daily_base(rule, work_days, total_minutes, breakdown), 0

def _calc_piece_rate(rule, work_days, total_minutes, work_logs, breakdown) -> Tuple[int, int]:
    return 0, _piece_amount(rule, work_logs, breakdown)

def _calc_mixed(rule, work_days, total_minutes, work_logs, breakdown) -> Tuple[int, int]:
    if rule.get('hourly_rate'):
        base = _hourly_base(rule, work_days, total_minutes, breakdown)
    else:
        base = _daily_base(rule, work_days, total_minutes, breakdown)
    return base, _piece_amount(rule, work_logs, breakdown)

CALCULATORS = {
    "hourly": _calc_hourly,
    "daily": _calc_daily,
    "piece_rate": _calc_piece_rate,
    "mixed": _calc_mixed,
}

def apply_deductions(deductions: Optional[List[Dict[str, Any]]], gross: int,
                     breakdown: PayrollBreakdown) -> int:
    """Apply deductions in order against base + piece pay"""
    total = 0
    for deduction in deductions or []:
        if deduction.get('type') == 'fixed':
            amount = round_half_up(deduction.get('amount') or 0)
        elif deduction.get('type') == 'percentage':
            amount = round_half_up(gross * (deduction.get('rate') or 0) / 100)
        else:
            amount = 0
        total += amount
        breakdown.deductionDetails.append(DeductionDetail(
            name=deduction.get('name', ''),
            type=deduction.get('type', ''),
            amount=amount,
        ))
    return total

def compute_payroll_line(client_id: str, confirmations: List[Dict[str, Any]],
                         work_logs: List[Dict[str, Any]],
                         rule: Optional[Dict[str, Any]]) -> Optional[PayrollLineResult]:
    """
    Compute one client's wage line for a period.

    Args:
        confirmations: staff attendance confirmations in the period (any status)
        work_logs: work logs in the period
        rule: resolved wage rule, or None when no rule applies

    Returns:
        PayrollLineResult, or None when the client has no present days
    """
    present = [c for c in confirmations if c.get('status') == 'present']
    work_days = len(present)
    if work_days == 0:
        return None

    total_minutes = sum(confirmation_minutes(c) for c in present)

    breakdown = PayrollBreakdown(
        workDays=work_days,
        totalMinutes=total_minutes,
        totalHours=round_2(total_minutes / 60),
        wageRuleId=rule['id'] if rule else None,
        wageRuleName=rule['name'] if rule else NO_RULE_NAME,
        calculationType=rule['calculation_type'] if rule else "none",
    )

    base_amount = 0
    piece_amount = 0
    deductions = 0
    if rule:
        calculator = CALCULATORS.get(rule['calculation_type'])
        if calculator is None:
            raise ValueError(f"Unknown calculation type: {rule['calculation_type']}")
        base_amount, piece_amount = calculator(rule, work_days, total_minutes, work_logs, breakdown)
        deductions = apply_deductions(rule.get('deductions'), base_amount + piece_amount, breakdown)

    return PayrollLineResult(
        clientId=client_id,
        workDays=work_days,
        totalMinutes=total_minutes,
        baseAmount=base_amount,
        pieceAmount=piece_amount,
        deductions=deductions,
        netAmount=max(0, base_amount + piece_amount - deductions),
        breakdown=breakdown,
    )
