import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from app.core.database import get_db, new_id, now_iso, row_to_dict
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.security import require_manager, require_staff
from app.models.auth import Actor
from app.models.wages import (
    CALCULATION_TYPES,
    WageRuleCreate,
    WageRuleUpdate,
    WorkLogBulkCreate,
    WorkLogCreate,
    WorkLogUpdate,
)
from app.services.audit_service import log_audit
from app.services.validation import parse_iso_date, require_choice, require_fields

router = APIRouter()
logger = logging.getLogger(__name__)

DEDUCTION_TYPES = ("fixed", "percentage")

# --- wage rules ------------------------------------------------------------

def serialize_rule(row) -> Dict[str, Any]:
    rule = row_to_dict(row, ('piece_rates', 'deductions'))
    return {
        "id": rule['id'],
        "organizationId": rule['organization_id'],
        "clientId": rule['client_id'],
        "name": rule['name'],
        "calculationType": rule['calculation_type'],
        "hourlyRate": rule['hourly_rate'],
        "dailyRate": rule['daily_rate'],
        "pieceRates": rule['piece_rates'],
        "deductions": rule['deductions'],
        "validFrom": rule['valid_from'],
        "validUntil": rule['valid_until'],
        "isDefault": bool(rule['is_default']),
        "createdAt": rule['created_at'],
        "updatedAt": rule['updated_at'],
    }

def fetch_rule(conn, organization_id: str, rule_id: str):
    row = conn.execute(
        "SELECT * FROM wage_rules WHERE id = ? AND organization_id = ?",
        (rule_id, organization_id)
    ).fetchone()
    if not row:
        raise NotFoundError("Wage rule not found")
    return row

def ensure_client_in_org(conn, organization_id: str, client_id: str):
    row = conn.execute(
        "SELECT id FROM clients WHERE id = ? AND organization_id = ?",
        (client_id, organization_id)
    ).fetchone()
    if not row:
        raise NotFoundError("Client not found")

def validate_piece_rates(piece_rates):
    if piece_rates is None:
        return
    if isinstance(piece_rates, list):
        for rate in piece_rates:
            if not rate.get('workType'):
                raise ValidationError("Each piece rate needs a workType")
            price = rate.get('unitPrice', rate.get('price', 0))
            if not isinstance(price, (int, float)) or price < 0:
                raise ValidationError(f"Invalid unit price for {rate['workType']}")
    else:
        for work_type, price in piece_rates.items():
            if isinstance(price, dict):
                price = price.get('unitPrice', price.get('price', 0))
            if not isinstance(price, (int, float)) or price < 0:
                raise ValidationError(f"Invalid unit price for {work_type}")

def validate_deductions(deductions):
    for deduction in deductions or []:
        require_choice(deduction.type, DEDUCTION_TYPES, "deduction type")
        if deduction.type == "fixed" and (deduction.amount is None or deduction.amount < 0):
            raise ValidationError(f"Fixed deduction '{deduction.name}' needs a non-negative amount")
        if deduction.type == "percentage" and (deduction.rate is None or not 0 <= deduction.rate <= 100):
            raise ValidationError(f"Percentage deduction '{deduction.name}' needs a rate between 0 and 100")

def validate_rule_fields(fields: Dict[str, Any]):
    if "calculationType" in fields:
        require_choice(fields["calculationType"], CALCULATION_TYPES, "calculationType")
    for rate_field in ("hourlyRate", "dailyRate"):
        if fields.get(rate_field) is not None and fields[rate_field] < 0:
            raise ValidationError(f"{rate_field} cannot be negative")
    if "pieceRates" in fields:
        validate_piece_rates(fields["pieceRates"])

def clear_scope_default(conn, organization_id: str, client_id: Optional[str], keep_id: str):
    """Unset any other default in the same (organization, client) scope"""
    conn.execute('''
        UPDATE wage_rules SET is_default = FALSE, updated_at = ?
        WHERE organization_id = ? AND client_id IS ? AND is_default = TRUE AND id != ?
    ''', (now_iso(), organization_id, client_id, keep_id))

@router.get("/wages/rules")
async def list_wage_rules(
    clientId: Optional[str] = None,
    calculationType: Optional[str] = None,
    actor: Actor = Depends(require_staff),
):
    """Facility rules; with clientId, the facility defaults plus that client's rules"""
    query = "SELECT * FROM wage_rules WHERE organization_id = ?"
    params = [actor.organization_id]
    if clientId:
        query += " AND (client_id IS NULL OR client_id = ?)"
        params.append(clientId)
    if calculationType:
        query += " AND calculation_type = ?"
        params.append(calculationType)
    query += " ORDER BY is_default DESC, valid_from DESC"

    with get_db() as conn:
        return {"rules": [serialize_rule(r) for r in conn.execute(query, params).fetchall()]}

@router.get("/wages/rules/{rule_id}")
async def get_wage_rule(rule_id: str, actor: Actor = Depends(require_staff)):
    with get_db() as conn:
        return serialize_rule(fetch_rule(conn, actor.organization_id, rule_id))

@router.post("/wages/rules", status_code=201)
async def create_wage_rule(request: WageRuleCreate, actor: Actor = Depends(require_manager)):
    require_fields(request, "name", "calculationType", "validFrom")
    fields = request.model_dump(exclude_unset=True)
    validate_rule_fields(fields)
    validate_deductions(request.deductions)
    valid_from = parse_iso_date(request.validFrom, "validFrom")
    if request.validUntil and parse_iso_date(request.validUntil, "validUntil") < valid_from:
        raise ValidationError("validUntil must not be before validFrom")

    rule_id = new_id()
    created = now_iso()
    with get_db() as conn:
        if request.clientId:
            ensure_client_in_org(conn, actor.organization_id, request.clientId)

        conn.execute("BEGIN IMMEDIATE")
        if request.isDefault:
            clear_scope_default(conn, actor.organization_id, request.clientId, rule_id)

        conn.execute('''
            INSERT INTO wage_rules (
                id, organization_id, client_id, name, calculation_type, hourly_rate, daily_rate,
                piece_rates, deductions, valid_from, valid_until, is_default, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            rule_id, actor.organization_id, request.clientId, request.name,
            request.calculationType, request.hourlyRate, request.dailyRate,
            json.dumps(request.pieceRates, ensure_ascii=False) if request.pieceRates is not None else None,
            json.dumps([d.model_dump(exclude_none=True) for d in request.deductions], ensure_ascii=False)
            if request.deductions is not None else None,
            request.validFrom[:10], request.validUntil[:10] if request.validUntil else None,
            request.isDefault, created, created,
        ))
        log_audit(conn, actor.id, "create", "wage_rules", rule_id,
                  {"name": request.name, "calculationType": request.calculationType})
        conn.commit()

        logger.info(f"Wage rule {rule_id} ({request.calculationType}) created by {actor.id}")
        return serialize_rule(fetch_rule(conn, actor.organization_id, rule_id))

@router.put("/wages/rules/{rule_id}")
async def update_wage_rule(rule_id: str, request: WageRuleUpdate, actor: Actor = Depends(require_manager)):
    changes = request.model_dump(exclude_unset=True)
    for field in ("name", "calculationType", "validFrom"):
        if field in changes and not changes[field]:
            raise ValidationError(f"{field} cannot be empty")
    validate_rule_fields(changes)
    if "deductions" in changes:
        validate_deductions(request.deductions)

    with get_db() as conn:
        existing = fetch_rule(conn, actor.organization_id, rule_id)
        if changes.get("clientId"):
            ensure_client_in_org(conn, actor.organization_id, changes["clientId"])

        valid_from = parse_iso_date(changes.get("validFrom") or existing['valid_from'], "validFrom")
        valid_until = changes["validUntil"] if "validUntil" in changes else existing['valid_until']
        if valid_until and parse_iso_date(valid_until, "validUntil") < valid_from:
            raise ValidationError("validUntil must not be before validFrom")

        columns = {
            "name": ("name", lambda v: v),
            "clientId": ("client_id", lambda v: v),
            "calculationType": ("calculation_type", lambda v: v),
            "hourlyRate": ("hourly_rate", lambda v: v),
            "dailyRate": ("daily_rate", lambda v: v),
            "pieceRates": ("piece_rates", lambda v: json.dumps(v, ensure_ascii=False) if v is not None else None),
            "deductions": ("deductions", lambda v: json.dumps(
                [d.model_dump(exclude_none=True) for d in request.deductions], ensure_ascii=False
            ) if v is not None else None),
            "validFrom": ("valid_from", lambda v: v[:10]),
            "validUntil": ("valid_until", lambda v: v[:10] if v else None),
            "isDefault": ("is_default", bool),
        }

        scope_client = changes["clientId"] if "clientId" in changes else existing['client_id']
        becomes_default = changes.get("isDefault", bool(existing['is_default']))

        conn.execute("BEGIN IMMEDIATE")
        if becomes_default:
            clear_scope_default(conn, actor.organization_id, scope_client, rule_id)

        if changes:
            assignments = ", ".join(f"{columns[k][0]} = ?" for k in changes)
            values = [columns[k][1](v) for k, v in changes.items()]
            conn.execute(
                f"UPDATE wage_rules SET {assignments}, updated_at = ? WHERE id = ?",
                values + [now_iso(), rule_id]
            )
        log_audit(conn, actor.id, "update", "wage_rules", rule_id, {"fields": list(changes)})
        conn.commit()

        return serialize_rule(fetch_rule(conn, actor.organization_id, rule_id))

@router.delete("/wages/rules/{rule_id}")
async def delete_wage_rule(rule_id: str, actor: Actor = Depends(require_manager)):
    with get_db() as conn:
        rule = fetch_rule(conn, actor.organization_id, rule_id)
        in_use = conn.execute(
            "SELECT COUNT(*) FROM payroll_lines WHERE wage_rule_id = ?", (rule_id,)
        ).fetchone()[0]
        if in_use:
            raise ConflictError(
                f"Wage rule is referenced by {in_use} payroll lines and cannot be deleted",
                {"payrollLineCount": in_use}
            )

        conn.execute("DELETE FROM wage_rules WHERE id = ?", (rule_id,))
        log_audit(conn, actor.id, "delete", "wage_rules", rule_id, {"name": rule['name']})
        conn.commit()

    logger.info(f"Wage rule {rule_id} deleted by {actor.id}")
    return {"success": True}

# --- work logs -------------------------------------------------------------

def serialize_work_log(row) -> Dict[str, Any]:
    return {
        "id": row['id'],
        "clientId": row['client_id'],
        "date": row['date'],
        "workType": row['work_type'],
        "quantity": row['quantity'],
        "unit": row['unit'],
        "notes": row['notes'],
        "createdById": row['created_by_id'],
        "createdAt": row['created_at'],
    }

def fetch_work_log(conn, organization_id: str, log_id: str):
    row = conn.execute('''
        SELECT wl.* FROM work_logs wl
        JOIN clients c ON c.id = wl.client_id
        WHERE wl.id = ? AND c.organization_id = ?
    ''', (log_id, organization_id)).fetchone()
    if not row:
        raise NotFoundError("Work log not found")
    return row

def insert_work_log(conn, actor: Actor, client_id: str, log_date: str, work_type: str,
                    quantity: float, unit: Optional[str], notes: Optional[str]) -> str:
    log_id = new_id()
    conn.execute('''
        INSERT INTO work_logs (id, client_id, date, work_type, quantity, unit, notes, created_by_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    ''', (log_id, client_id, log_date, work_type, quantity, unit, notes, actor.id, now_iso()))
    return log_id

@router.get("/wages/work-logs")
async def list_work_logs(
    clientId: Optional[str] = None,
    date: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    actor: Actor = Depends(require_staff),
):
    query = '''
        SELECT wl.*, c.last_name, c.first_name FROM work_logs wl
        JOIN clients c ON c.id = wl.client_id
        WHERE c.organization_id = ?
    '''
    params = [actor.organization_id]
    if clientId:
        query += " AND wl.client_id = ?"
        params.append(clientId)
    if date:
        query += " AND wl.date = ?"
        params.append(parse_iso_date(date, "date").isoformat())
    else:
        if startDate:
            query += " AND wl.date >= ?"
            params.append(parse_iso_date(startDate, "startDate").isoformat())
        if endDate:
            query += " AND wl.date <= ?"
            params.append(parse_iso_date(endDate, "endDate").isoformat())
    query += " ORDER BY wl.date DESC, c.last_name"

    with get_db() as conn:
        logs = []
        for row in conn.execute(query, params).fetchall():
            item = serialize_work_log(row)
            item["clientName"] = f"{row['last_name']} {row['first_name']}"
            logs.append(item)
        return {"workLogs": logs}

@router.post("/wages/work-logs", status_code=201)
async def create_work_log(request: WorkLogCreate, actor: Actor = Depends(require_staff)):
    log_date = parse_iso_date(request.date, "date").isoformat()
    if not request.workType.strip():
        raise ValidationError("workType is required")
    if request.quantity < 0:
        raise ValidationError("quantity cannot be negative")

    with get_db() as conn:
        ensure_client_in_org(conn, actor.organization_id, request.clientId)
        log_id = insert_work_log(conn, actor, request.clientId, log_date, request.workType.strip(),
                                 request.quantity, request.unit, request.notes)
        log_audit(conn, actor.id, "create", "work_logs", log_id)
        conn.commit()
        return serialize_work_log(fetch_work_log(conn, actor.organization_id, log_id))

@router.post("/wages/work-logs/bulk", status_code=201)
async def bulk_create_work_logs(request: WorkLogBulkCreate, actor: Actor = Depends(require_staff)):
    """Record a day's work for many clients; entries that don't validate are skipped"""
    log_date = parse_iso_date(request.date, "date").isoformat()

    created = []
    skipped = 0
    with get_db() as conn:
        client_ids = {
            row['id'] for row in conn.execute(
                "SELECT id FROM clients WHERE organization_id = ?", (actor.organization_id,)
            ).fetchall()
        }
        for entry in request.entries:
            if (not entry.clientId or entry.clientId not in client_ids
                    or not (entry.workType or "").strip()
                    or entry.quantity is None or entry.quantity < 0):
                skipped += 1
                continue
            created.append(insert_work_log(
                conn, actor, entry.clientId, log_date, entry.workType.strip(),
                entry.quantity, entry.unit, entry.notes
            ))

        log_audit(conn, actor.id, "bulk_create", "work_logs", None,
                  {"date": log_date, "count": len(created), "skipped": skipped})
        conn.commit()

    logger.info(f"Bulk work logs for {log_date}: {len(created)} created, {skipped} skipped")
    return {"count": len(created), "skipped": skipped, "ids": created}

@router.put("/wages/work-logs/{log_id}")
async def update_work_log(log_id: str, request: WorkLogUpdate, actor: Actor = Depends(require_staff)):
    changes = request.model_dump(exclude_unset=True)
    if "date" in changes:
        changes["date"] = parse_iso_date(changes["date"], "date").isoformat()
    if "workType" in changes and not (changes["workType"] or "").strip():
        raise ValidationError("workType cannot be empty")
    if "quantity" in changes and (changes["quantity"] is None or changes["quantity"] < 0):
        raise ValidationError("quantity cannot be negative")

    columns = {"date": "date", "workType": "work_type", "quantity": "quantity", "unit": "unit", "notes": "notes"}

    with get_db() as conn:
        fetch_work_log(conn, actor.organization_id, log_id)
        if changes:
            assignments = ", ".join(f"{columns[k]} = ?" for k in changes)
            conn.execute(f"UPDATE work_logs SET {assignments} WHERE id = ?", list(changes.values()) + [log_id])
            log_audit(conn, actor.id, "update", "work_logs", log_id, {"fields": list(changes)})
            conn.commit()
        return serialize_work_log(fetch_work_log(conn, actor.organization_id, log_id))

@router.delete("/wages/work-logs/{log_id}")
async def delete_work_log(log_id: str, actor: Actor = Depends(require_staff)):
    with get_db() as conn:
        fetch_work_log(conn, actor.organization_id, log_id)
        conn.execute("DELETE FROM work_logs WHERE id = ?", (log_id,))
        log_audit(conn, actor.id, "delete", "work_logs", log_id)
        conn.commit()
    return {"success": True}
