import calendar
import logging
from typing import Any, Dict, List

from app.services.wage_service import confirmation_minutes, round_2

logger = logging.getLogger(__name__)

ATTENDANCE_STATUSES = ("present", "absent", "late", "early_leave", "holiday", "sick")

# Statuses that count as having attended on the monthly report
ATTENDED_STATUSES = ("present", "late", "early_leave")

def count_open_days(year: int, month: int) -> int:
    """Weekdays in the month; the facility is closed on weekends"""
    days_in_month = calendar.monthrange(year, month)[1]
    return sum(
        1 for day in range(1, days_in_month + 1)
        if calendar.weekday(year, month, day) < 5
    )

def utilization_rate(present_days: int, capacity: int, open_days: int) -> float:
    """Present days as a percentage of capacity x open days"""
    if capacity <= 0 or open_days <= 0:
        return 0.0
    return round_2(present_days / (capacity * open_days) * 100)

def summarize_client_month(confirmations: List[Dict[str, Any]], open_days: int) -> Dict[str, Any]:
    """Status counts and attendance rate for one client's confirmations"""
    counts = {status: 0 for status in ATTENDANCE_STATUSES}
    for confirmation in confirmations:
        if confirmation['status'] in counts:
            counts[confirmation['status']] += 1

    attended = sum(counts[s] for s in ATTENDED_STATUSES)
    present_minutes = sum(
        confirmation_minutes(c) for c in confirmations if c['status'] == 'present'
    )

    return {
        "present": counts["present"],
        "absent": counts["absent"] + counts["sick"],
        "late": counts["late"],
        "earlyLeave": counts["early_leave"],
        "holiday": counts["holiday"],
        "presentMinutes": present_minutes,
        "attendanceRate": round_2(attended / open_days * 100) if open_days > 0 else 0,
    }

def daily_summary(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    """Counts for the staff daily board"""
    return {
        "total": len(rows),
        "reported": sum(1 for r in rows if r['report'] is not None),
        "confirmed": sum(1 for r in rows if r['confirmation'] is not None),
        "pending": sum(1 for r in rows if r['needsConfirmation']),
    }
