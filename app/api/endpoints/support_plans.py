import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from app.core.database import get_db, new_id, now_iso
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.security import require_admin, require_staff
from app.models.auth import Actor
from app.models.clients import SERVICE_TYPES
from app.models.support_plans import (
    GeneratePlanRequest,
    MonitoringCreate,
    PlanConsentRequest,
    PlanDeliveryRequest,
    SupportPlanCreate,
    SupportPlanUpdate,
)
from app.services.audit_service import log_audit
from app.services.session_service import fetch_session, latest_artifact
from app.services import support_plan_service as plans
from app.services.validation import check_max_length, parse_iso_date, require_choice, require_fields

router = APIRouter()
logger = logging.getLogger(__name__)

DELIVERY_METHODS = ("direct", "mail", "email")

def check_period(start_value: str, end_value: str):
    start = parse_iso_date(start_value, "planPeriodStart")
    end = parse_iso_date(end_value, "planPeriodEnd")
    if end < start:
        raise ValidationError("planPeriodEnd must not be before planPeriodStart")
    return start, end

def fetch_plan_client(conn, organization_id: str, client_id: str):
    client = conn.execute(
        "SELECT id, client_number, last_name, first_name, service_type FROM clients "
        "WHERE id = ? AND organization_id = ?",
        (client_id, organization_id)
    ).fetchone()
    if not client:
        raise NotFoundError("Client not found")
    return client

def plan_list_item(row) -> dict:
    item = plans.serialize_plan(row)
    item["clientNumber"] = row['client_number']
    item["clientName"] = f"{row['last_name']} {row['first_name']}"
    return item

def plan_detail(conn, organization_id: str, plan_id: str) -> dict:
    plan = plans.fetch_plan(conn, organization_id, plan_id)
    detail = plans.serialize_plan(plan)
    detail.update(plans.load_plan_children(conn, plan_id))

    client = fetch_plan_client(conn, organization_id, plan['client_id'])
    detail["client"] = {
        "clientNumber": client['client_number'],
        "lastName": client['last_name'],
        "firstName": client['first_name'],
        "serviceType": client['service_type'],
    }

    detail["session"] = None
    if plan['session_id']:
        session = conn.execute(
            "SELECT id, session_date, session_type, status FROM interview_sessions WHERE id = ?",
            (plan['session_id'],)
        ).fetchone()
        if session:
            extraction = latest_artifact(conn, "ai_extractions", session['id'], ('extracted_data',))
            detail["session"] = {
                "id": session['id'],
                "sessionDate": session['session_date'],
                "sessionType": session['session_type'],
                "status": session['status'],
                "latestExtraction": extraction and {
                    "version": extraction['version'],
                    "extractedData": extraction['extracted_data'],
                },
            }
    return detail

@router.get("/support-plans")
async def list_plans(
    clientId: Optional[str] = None,
    status: Optional[str] = None,
    serviceType: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    needsMonitoring: bool = False,
    limit: int = 50,
    offset: int = 0,
    actor: Actor = Depends(require_staff),
):
    if not 1 <= limit <= 100:
        raise ValidationError("limit must be between 1 and 100")
    if offset < 0:
        raise ValidationError("offset cannot be negative")

    where = "WHERE p.organization_id = ?"
    params = [actor.organization_id]
    if clientId:
        where += " AND p.client_id = ?"
        params.append(clientId)
    if status:
        require_choice(status, plans.PLAN_STATUSES, "status")
        where += " AND p.status = ?"
        params.append(status)
    if serviceType:
        require_choice(serviceType, SERVICE_TYPES, "serviceType")
        where += " AND p.service_type = ?"
        params.append(serviceType)
    if startDate:
        where += " AND p.plan_period_start >= ?"
        params.append(parse_iso_date(startDate, "startDate").isoformat())
    if endDate:
        where += " AND p.plan_period_end <= ?"
        params.append(parse_iso_date(endDate, "endDate").isoformat())
    if needsMonitoring:
        where += f" AND p.status IN ({', '.join('?' for _ in plans.MONITORED_STATUSES)})"
        where += " AND p.next_monitoring_date <= ?"
        params.extend(plans.MONITORED_STATUSES)
        params.append(plans.monitoring_cutoff(30).isoformat())

    with get_db() as conn:
        total = conn.execute(f"SELECT COUNT(*) FROM support_plans p {where}", params).fetchone()[0]
        rows = conn.execute(f'''
            SELECT p.*, c.client_number, c.last_name, c.first_name
            FROM support_plans p
            JOIN clients c ON c.id = p.client_id
            {where}
            ORDER BY p.next_monitoring_date IS NULL, p.next_monitoring_date, p.plan_period_start DESC
            LIMIT ? OFFSET ?
        ''', params + [limit, offset]).fetchall()

    items = [plan_list_item(row) for row in rows]
    return {"plans": items, "total": total, "limit": limit, "offset": offset}

@router.get("/support-plans/needs-monitoring")
async def needs_monitoring(days: int = 30, actor: Actor = Depends(require_staff)):
    """Delivered plans whose next review falls within `days`, split into overdue and upcoming"""
    if not 1 <= days <= 365:
        raise ValidationError("days must be between 1 and 365")

    with get_db() as conn:
        rows = conn.execute(f'''
            SELECT p.*, c.client_number, c.last_name, c.first_name
            FROM support_plans p
            JOIN clients c ON c.id = p.client_id
            WHERE p.organization_id = ?
              AND p.status IN ({', '.join('?' for _ in plans.MONITORED_STATUSES)})
              AND p.next_monitoring_date <= ?
            ORDER BY p.next_monitoring_date
        ''', [actor.organization_id, *plans.MONITORED_STATUSES,
              plans.monitoring_cutoff(days).isoformat()]).fetchall()

    items = [plan_list_item(row) for row in rows]
    return plans.bucket_monitoring(items)

@router.get("/support-plans/{plan_id}")
async def get_plan(plan_id: str, actor: Actor = Depends(require_staff)):
    with get_db() as conn:
        detail = plan_detail(conn, actor.organization_id, plan_id)
        log_audit(conn, actor.id, "view", "support_plans", plan_id)
        conn.commit()
        return detail

@router.post("/support-plans", status_code=201)
async def create_plan(request: SupportPlanCreate, actor: Actor = Depends(require_staff)):
    require_fields(request, "clientId", "planPeriodStart", "planPeriodEnd", "planContent")
    start, end = check_period(request.planPeriodStart, request.planPeriodEnd)
    if request.serviceType:
        require_choice(request.serviceType, SERVICE_TYPES, "serviceType")

    with get_db() as conn:
        client = fetch_plan_client(conn, actor.organization_id, request.clientId)
        if request.sessionId:
            session = fetch_session(conn, actor.organization_id, request.sessionId)
            if session['client_id'] != request.clientId:
                raise ValidationError("sessionId belongs to a different client")

        plan_id = plans.insert_plan(
            conn, actor, request.clientId, request.sessionId,
            request.serviceType or client['service_type'], start, end, request.planContent,
        )
        log_audit(conn, actor.id, "create", "support_plans", plan_id,
                  {"clientId": request.clientId, "sessionId": request.sessionId})
        conn.commit()

        logger.info(f"Support plan {plan_id} created for client {request.clientId}")
        return plan_detail(conn, actor.organization_id, plan_id)

@router.post("/support-plans/generate-from-session", status_code=201)
async def generate_from_session(request: GeneratePlanRequest, actor: Actor = Depends(require_staff)):
    """Draft a plan from an interview session's latest AI extraction"""
    require_fields(request, "sessionId")

    with get_db() as conn:
        session = fetch_session(conn, actor.organization_id, request.sessionId)
        extraction = latest_artifact(conn, "ai_extractions", session['id'], ('extracted_data',))
        if extraction is None:
            raise ConflictError("Run extraction on the session before generating a plan")

        client = fetch_plan_client(conn, actor.organization_id, session['client_id'])
        start = parse_iso_date(request.planPeriodStart, "planPeriodStart") if request.planPeriodStart else date.today()
        end = (parse_iso_date(request.planPeriodEnd, "planPeriodEnd") if request.planPeriodEnd
               else plans.add_months(start, 12))
        if end < start:
            raise ValidationError("planPeriodEnd must not be before planPeriodStart")

        content = plans.plan_content_from_extraction(extraction, session)
        plan_id = plans.insert_plan(
            conn, actor, session['client_id'], session['id'], client['service_type'], start, end, content,
        )
        log_audit(conn, actor.id, "create", "support_plans", plan_id,
                  {"sessionId": session['id'], "extractionVersion": extraction['version']})
        conn.commit()

        logger.info(f"Support plan {plan_id} generated from session {session['id']}")
        return {
            "plan": plan_detail(conn, actor.organization_id, plan_id),
            "extractedData": extraction['extracted_data'],
        }

@router.put("/support-plans/{plan_id}")
async def update_plan(plan_id: str, request: SupportPlanUpdate, actor: Actor = Depends(require_staff)):
    """Edit a plan before consent; new content becomes a new version"""
    changes = request.model_dump(exclude_unset=True)
    if changes.get("serviceType") is not None:
        require_choice(changes["serviceType"], SERVICE_TYPES, "serviceType")
    if "status" in changes:
        require_choice(changes["status"], plans.EDITABLE_STATUSES, "status")

    with get_db() as conn:
        plan = plans.fetch_plan(conn, actor.organization_id, plan_id)
        if plan['status'] not in plans.EDITABLE_STATUSES:
            raise ConflictError(
                "Plans can only be edited before consent; create a new plan instead",
                {"currentStatus": plan['status']}
            )

        start, end = check_period(
            changes.get("planPeriodStart") or plan['plan_period_start'],
            changes.get("planPeriodEnd") or plan['plan_period_end'],
        )
        service_type = changes.get("serviceType") or plan['service_type']
        frequency = plans.monitoring_frequency(service_type)

        assignments = {
            "plan_period_start": start.isoformat(),
            "plan_period_end": end.isoformat(),
            "service_type": service_type,
            "monitoring_frequency": frequency,
            "next_monitoring_date": plans.add_months(start, frequency).isoformat(),
            "updated_at": now_iso(),
        }
        if changes.get("status"):
            assignments["status"] = changes["status"]

        version = None
        if changes.get("planContent") is not None:
            encoded = plans.encode_content(changes["planContent"])
            assignments["plan_content"] = encoded
            previous = plans.next_plan_version(conn, plan_id) - 1
            version = plans.add_plan_version(conn, actor, plan_id, encoded, f"バージョン{previous}からの更新")

        conn.execute(
            f"UPDATE support_plans SET {', '.join(f'{k} = ?' for k in assignments)} WHERE id = ?",
            list(assignments.values()) + [plan_id]
        )
        log_audit(conn, actor.id, "update", "support_plans", plan_id,
                  {"fields": list(changes), "version": version})
        conn.commit()

        return plan_detail(conn, actor.organization_id, plan_id)

@router.post("/support-plans/{plan_id}/consent")
async def record_consent(plan_id: str, request: PlanConsentRequest, actor: Actor = Depends(require_staff)):
    """Record the client's consent; approves the plan and locks its versions"""
    require_fields(request, "consentBy")
    check_max_length(request.consentBy, 100, "consentBy")
    check_max_length(request.consentRelationship, 100, "consentRelationship")

    with get_db() as conn:
        plans.move_plan_status(
            conn, actor, plan_id, plans.EDITABLE_STATUSES, plans.APPROVED,
            "consent_date = ?, consent_by = ?, consent_relationship = ?, consent_signature = ?",
            (now_iso(), request.consentBy, request.consentRelationship, request.consentSignature),
        )
        conn.execute("UPDATE support_plan_versions SET is_locked = TRUE WHERE plan_id = ?", (plan_id,))
        log_audit(conn, actor.id, "consent", "support_plans", plan_id, {"consentBy": request.consentBy})
        conn.commit()

        return plan_detail(conn, actor.organization_id, plan_id)

@router.post("/support-plans/{plan_id}/deliver")
async def deliver_plan(plan_id: str, request: PlanDeliveryRequest, actor: Actor = Depends(require_staff)):
    require_choice(request.deliveryMethod, DELIVERY_METHODS, "deliveryMethod")

    with get_db() as conn:
        plans.move_plan_status(
            conn, actor, plan_id, (plans.APPROVED,), plans.DELIVERED,
            "delivery_date = ?, delivery_to = ?, delivery_method = ?",
            (now_iso(), request.deliveryTo, request.deliveryMethod),
        )
        log_audit(conn, actor.id, "deliver", "support_plans", plan_id,
                  {"deliveryTo": request.deliveryTo, "deliveryMethod": request.deliveryMethod})
        conn.commit()

        return plan_detail(conn, actor.organization_id, plan_id)

@router.post("/support-plans/{plan_id}/monitoring", status_code=201)
async def record_monitoring(plan_id: str, request: MonitoringCreate, actor: Actor = Depends(require_staff)):
    """Record a monitoring review and schedule the next one"""
    if request.result in (None, "", {}, []):
        raise ValidationError("result is required")
    monitoring_date = (parse_iso_date(request.monitoringDate, "monitoringDate")
                       if request.monitoringDate else date.today())

    with get_db() as conn:
        plan = plans.fetch_plan(conn, actor.organization_id, plan_id)
        next_date = plans.add_months(monitoring_date, plan['monitoring_frequency']).isoformat()
        plans.move_plan_status(
            conn, actor, plan_id, plans.MONITORED_STATUSES, plans.MONITORING,
            "next_monitoring_date = ?", (next_date,),
        )

        monitoring_id = new_id()
        conn.execute('''
            INSERT INTO plan_monitorings (
                id, plan_id, monitoring_date, result, has_changes, next_monitoring_date,
                notes, conducted_by_id, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            monitoring_id, plan_id, monitoring_date.isoformat(), plans.encode_content(request.result),
            request.hasChanges, next_date, request.notes, actor.id, now_iso(),
        ))
        log_audit(conn, actor.id, "create", "plan_monitorings", monitoring_id,
                  {"planId": plan_id, "hasChanges": request.hasChanges})
        conn.commit()

    return {
        "monitoring": {
            "id": monitoring_id,
            "planId": plan_id,
            "monitoringDate": monitoring_date.isoformat(),
            "result": request.result,
            "hasChanges": request.hasChanges,
            "nextMonitoringDate": next_date,
            "notes": request.notes,
        }
    }

@router.delete("/support-plans/{plan_id}")
async def delete_plan(plan_id: str, actor: Actor = Depends(require_admin)):
    """Administrators may discard plans that have not been consented to"""
    with get_db() as conn:
        plan = plans.fetch_plan(conn, actor.organization_id, plan_id)
        if plan['status'] not in plans.EDITABLE_STATUSES:
            raise ConflictError(
                "Consented plans are part of the client record and cannot be deleted",
                {"currentStatus": plan['status']}
            )

        conn.execute("DELETE FROM support_plan_versions WHERE plan_id = ?", (plan_id,))
        conn.execute("DELETE FROM plan_monitorings WHERE plan_id = ?", (plan_id,))
        conn.execute("DELETE FROM support_plans WHERE id = ?", (plan_id,))
        log_audit(conn, actor.id, "delete", "support_plans", plan_id,
                  {"clientId": plan['client_id'], "status": plan['status']})
        conn.commit()

    logger.info(f"Support plan {plan_id} deleted by {actor.id}")
    return {"success": True}
