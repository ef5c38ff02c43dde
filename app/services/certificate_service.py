import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from app.core.config import PayrollConfig

logger = logging.getLogger(__name__)

CERTIFICATE_STATUSES = ("valid", "expiring_soon", "expired", "pending_renewal")

# Set by staff, never replaced by the date-based classification
MANUAL_STATUSES = ("pending_renewal",)

def classify_certificate(valid_until: date, today: Optional[date] = None) -> str:
    """Date-based status of a certificate as of today"""
    today = today or date.today()
    if valid_until < today:
        return "expired"
    if valid_until < today + timedelta(days=PayrollConfig.CERTIFICATE_SOON_DAYS):
        return "expiring_soon"
    return "valid"

def effective_status(stored_status: str, valid_until: date, today: Optional[date] = None) -> str:
    if stored_status in MANUAL_STATUSES:
        return stored_status
    return classify_certificate(valid_until, today)

def in_report_window(valid_until: date, today: Optional[date] = None,
                     days: Optional[int] = None) -> bool:
    today = today or date.today()
    days = PayrollConfig.CERTIFICATE_REPORT_DAYS if days is None else days
    return valid_until <= today + timedelta(days=days)

def bucket_expiring(certificates: List[Dict[str, Any]], today: Optional[date] = None,
                    days: Optional[int] = None) -> Dict[str, List[Dict[str, Any]]]:
    """
    Split certificates into expired / expiringSoon / expiring buckets.

    Certificates beyond the report window are left out. Each item must carry
    'validUntil' as a YYYY-MM-DD string.
    """
    today = today or date.today()
    buckets = {"expired": [], "expiringSoon": [], "expiring": []}

    for cert in sorted(certificates, key=lambda c: c['validUntil']):
        valid_until = date.fromisoformat(cert['validUntil'][:10])
        if not in_report_window(valid_until, today, days):
            continue
        status = classify_certificate(valid_until, today)
        if status == "expired":
            buckets["expired"].append(cert)
        elif status == "expiring_soon":
            buckets["expiringSoon"].append(cert)
        else:
            buckets["expiring"].append(cert)

    return buckets
