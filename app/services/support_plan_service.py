# app/services/support_plan_service.py
import calendar
import json
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from app.core.database import new_id, now_iso
from app.core.errors import ConflictError, NotFoundError
from app.models.auth import Actor

logger = logging.getLogger(__name__)

DRAFT = "draft"
PENDING_CONSENT = "pending_consent"
APPROVED = "approved"
DELIVERED = "delivered"
MONITORING = "monitoring"

PLAN_STATUSES = (DRAFT, PENDING_CONSENT, APPROVED, DELIVERED, MONITORING)

STATUS_LABELS = {
    DRAFT: "下書き",
    PENDING_CONSENT: "同意待ち",
    APPROVED: "承認済み",
    DELIVERED: "交付済み",
    MONITORING: "モニタリング中",
}

# Content may still change; consent locks the current version
EDITABLE_STATUSES = (DRAFT, PENDING_CONSENT)

# Delivered plans are reviewed on a fixed cadence
MONITORED_STATUSES = (DELIVERED, MONITORING)

# Months between monitoring reviews by service type
MONITORING_MONTHS = {
    "employment_transition": 3,
}
DEFAULT_MONITORING_MONTHS = 6

PLAN_CONTENT_SECTIONS = (
    "clientIntentions",
    "currentChallenges",
    "strengths",
    "considerations",
    "goals",
)

def add_months(day: date, months: int) -> date:
    """Same day-of-month `months` later, clamped to the end of shorter months"""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))

def monitoring_frequency(service_type: Optional[str]) -> int:
    return MONITORING_MONTHS.get(service_type, DEFAULT_MONITORING_MONTHS)

def encode_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=False)

def decode_content(text: Optional[str]) -> Any:
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text

def serialize_plan(row) -> Dict[str, Any]:
    return {
        "id": row['id'],
        "organizationId": row['organization_id'],
        "clientId": row['client_id'],
        "sessionId": row['session_id'],
        "serviceType": row['service_type'],
        "planPeriodStart": row['plan_period_start'],
        "planPeriodEnd": row['plan_period_end'],
        "planContent": decode_content(row['plan_content']),
        "status": row['status'],
        "statusLabel": STATUS_LABELS.get(row['status']),
        "monitoringFrequency": row['monitoring_frequency'],
        "nextMonitoringDate": row['next_monitoring_date'],
        "consentDate": row['consent_date'],
        "consentBy": row['consent_by'],
        "consentRelationship": row['consent_relationship'],
        "deliveryDate": row['delivery_date'],
        "deliveryTo": row['delivery_to'],
        "deliveryMethod": row['delivery_method'],
        "createdById": row['created_by_id'],
        "createdAt": row['created_at'],
        "updatedAt": row['updated_at'],
    }

def fetch_plan(conn, organization_id: str, plan_id: str) -> Dict[str, Any]:
    row = conn.execute(
        "SELECT * FROM support_plans WHERE id = ? AND organization_id = ?",
        (plan_id, organization_id)
    ).fetchone()
    if not row:
        raise NotFoundError("Support plan not found")
    return dict(row)

def next_plan_version(conn, plan_id: str) -> int:
    row = conn.execute(
        "SELECT MAX(version) AS latest FROM support_plan_versions WHERE plan_id = ?", (plan_id,)
    ).fetchone()
    return (row['latest'] or 0) + 1

def add_plan_version(conn, actor: Actor, plan_id: str, content: str,
                     changes: Optional[str] = None) -> int:
    version = next_plan_version(conn, plan_id)
    conn.execute('''
        INSERT INTO support_plan_versions (id, plan_id, version, plan_content, changes, created_by_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    ''', (new_id(), plan_id, version, content, changes, actor.id, now_iso()))
    return version

def insert_plan(conn, actor: Actor, client_id: str, session_id: Optional[str], service_type: str,
                period_start: date, period_end: date, content: Any) -> str:
    """Create a draft plan with its first content version; the caller commits"""
    plan_id = new_id()
    frequency = monitoring_frequency(service_type)
    encoded = encode_content(content)
    created = now_iso()

    conn.execute('''
        INSERT INTO support_plans (
            id, organization_id, client_id, session_id, service_type, plan_period_start,
            plan_period_end, plan_content, status, monitoring_frequency, next_monitoring_date,
            created_by_id, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ''', (
        plan_id, actor.organization_id, client_id, session_id, service_type,
        period_start.isoformat(), period_end.isoformat(), encoded, DRAFT, frequency,
        add_months(period_start, frequency).isoformat(), actor.id, created, created,
    ))
    add_plan_version(conn, actor, plan_id, encoded)
    return plan_id

def plan_content_from_extraction(extraction: Dict[str, Any], session: Dict[str, Any]) -> Dict[str, Any]:
    """Draft plan content seeded from an interview session's latest extraction"""
    data = extraction['extracted_data'] or {}
    content = {section: data.get(section) or {} for section in PLAN_CONTENT_SECTIONS}
    content["supportContents"] = data.get("supportContents") or []
    content["supportNotes"] = data.get("supportNotes") or []
    content["generatedFrom"] = {
        "sessionId": session['id'],
        "sessionDate": session['session_date'],
        "extractionVersion": extraction['version'],
    }
    return content

def move_plan_status(conn, actor: Actor, plan_id: str, from_statuses: tuple, to_status: str,
                     stamp_sql: str = "", stamp_params: tuple = ()):
    """Conditional status change; fails with the current status when another writer got there first"""
    plan = fetch_plan(conn, actor.organization_id, plan_id)
    placeholders = ", ".join("?" for _ in from_statuses)
    extra = f", {stamp_sql}" if stamp_sql else ""

    cursor = conn.execute(
        f"UPDATE support_plans SET status = ?, updated_at = ?{extra} "
        f"WHERE id = ? AND status IN ({placeholders})",
        (to_status, now_iso()) + stamp_params + (plan_id,) + tuple(from_statuses)
    )
    if cursor.rowcount == 0:
        current = fetch_plan(conn, actor.organization_id, plan_id)['status']
        raise ConflictError(
            f"Support plan cannot move from '{current}' to '{to_status}'",
            {"currentStatus": current}
        )
    logger.info(f"Support plan {plan_id}: {plan['status']} -> {to_status} by {actor.id}")

def bucket_monitoring(plans: List[Dict[str, Any]], today: Optional[date] = None) -> Dict[str, List[Dict[str, Any]]]:
    """Split serialized plans into overdue and upcoming by nextMonitoringDate"""
    today = today or date.today()
    buckets = {"overdue": [], "upcoming": []}
    for plan in plans:
        due = plan.get('nextMonitoringDate')
        if not due:
            continue
        key = "overdue" if date.fromisoformat(due[:10]) < today else "upcoming"
        buckets[key].append(plan)
    return buckets

def monitoring_cutoff(days: int, today: Optional[date] = None) -> date:
    return (today or date.today()) + timedelta(days=days)

def load_plan_children(conn, plan_id: str) -> Dict[str, Any]:
    versions = [
        {
            "version": v['version'],
            "planContent": decode_content(v['plan_content']),
            "changes": v['changes'],
            "isLocked": bool(v['is_locked']),
            "createdById": v['created_by_id'],
            "createdAt": v['created_at'],
        }
        for v in conn.execute(
            "SELECT * FROM support_plan_versions WHERE plan_id = ? ORDER BY version DESC", (plan_id,)
        ).fetchall()
    ]
    monitorings = [
        {
            "id": m['id'],
            "monitoringDate": m['monitoring_date'],
            "result": decode_content(m['result']),
            "hasChanges": bool(m['has_changes']),
            "nextMonitoringDate": m['next_monitoring_date'],
            "notes": m['notes'],
            "conductedById": m['conducted_by_id'],
            "conductedBy": m['conducted_by'],
            "createdAt": m['created_at'],
        }
        for m in conn.execute('''
            SELECT pm.*, su.name AS conducted_by
            FROM plan_monitorings pm
            LEFT JOIN staff_users su ON su.id = pm.conducted_by_id
            WHERE pm.plan_id = ?
            ORDER BY pm.monitoring_date DESC, pm.created_at DESC
        ''', (plan_id,)).fetchall()
    ]
    return {"versions": versions, "monitorings": monitorings}
