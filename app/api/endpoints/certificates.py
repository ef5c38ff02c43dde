import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends
from app.core.config import PayrollConfig
from app.core.database import get_db, new_id, now_iso
from app.core.errors import NotFoundError, ValidationError
from app.core.security import require_staff
from app.models.auth import Actor
from app.models.clients import CertificateCreate, CertificateUpdate
from app.services.audit_service import log_audit
from app.services.certificate_service import (
    CERTIFICATE_STATUSES,
    MANUAL_STATUSES,
    bucket_expiring,
    classify_certificate,
    effective_status,
)
from app.services.validation import parse_iso_date, require_choice, require_fields

router = APIRouter()
logger = logging.getLogger(__name__)

CERTIFICATE_QUERY = '''
    SELECT cert.*, c.client_number, c.last_name, c.first_name
    FROM certificates cert
    JOIN clients c ON c.id = cert.client_id
    WHERE c.organization_id = ?
'''

def serialize_certificate(row, status: str):
    return {
        "id": row['id'],
        "clientId": row['client_id'],
        "client": {
            "clientNumber": row['client_number'],
            "lastName": row['last_name'],
            "firstName": row['first_name'],
        },
        "type": row['type'],
        "typeName": row['type_name'],
        "number": row['number'],
        "issuedAt": row['issued_at'],
        "validFrom": row['valid_from'],
        "validUntil": row['valid_until'],
        "status": status,
        "notes": row['notes'],
        "createdAt": row['created_at'],
        "updatedAt": row['updated_at'],
    }

def refresh_statuses(conn, rows, today: date):
    """Serialize rows, writing back any stored status that has gone stale"""
    certificates = []
    stale = []
    for row in rows:
        status = effective_status(row['status'], date.fromisoformat(row['valid_until'][:10]), today)
        if status != row['status']:
            stale.append((status, row['id']))
        certificates.append(serialize_certificate(row, status))

    if stale:
        conn.executemany("UPDATE certificates SET status = ? WHERE id = ?", stale)
        conn.commit()
        logger.info(f"Refreshed status of {len(stale)} certificates")
    return certificates

def fetch_certificate_row(conn, organization_id: str, certificate_id: str):
    row = conn.execute(CERTIFICATE_QUERY + " AND cert.id = ?", (organization_id, certificate_id)).fetchone()
    if not row:
        raise NotFoundError("Certificate not found")
    return row

@router.get("/certificates")
async def list_certificates(
    type: Optional[str] = None,
    status: Optional[str] = None,
    clientId: Optional[str] = None,
    expiringWithinDays: Optional[int] = None,
    actor: Actor = Depends(require_staff),
):
    today = date.today()
    query = CERTIFICATE_QUERY
    params = [actor.organization_id]
    if type:
        query += " AND cert.type = ?"
        params.append(type)
    if clientId:
        query += " AND cert.client_id = ?"
        params.append(clientId)
    if expiringWithinDays is not None:
        if expiringWithinDays < 0:
            raise ValidationError("expiringWithinDays cannot be negative")
        query += " AND cert.valid_until <= ?"
        params.append((today + timedelta(days=expiringWithinDays)).isoformat())
    query += " ORDER BY cert.valid_until"

    with get_db() as conn:
        certificates = refresh_statuses(conn, conn.execute(query, params).fetchall(), today)

    # Status is filtered after the refresh so stale rows are classified correctly
    if status:
        require_choice(status, CERTIFICATE_STATUSES, "status")
        certificates = [c for c in certificates if c['status'] == status]
    return {"certificates": certificates}

@router.get("/certificates/expiring")
async def get_expiring_certificates(days: int = PayrollConfig.CERTIFICATE_REPORT_DAYS,
                                    actor: Actor = Depends(require_staff)):
    """Certificates expired or expiring within the window, grouped by urgency"""
    if days < 0:
        raise ValidationError("days cannot be negative")
    today = date.today()
    with get_db() as conn:
        rows = conn.execute(
            CERTIFICATE_QUERY + " AND cert.valid_until <= ? ORDER BY cert.valid_until",
            (actor.organization_id, (today + timedelta(days=days)).isoformat())
        ).fetchall()
        certificates = refresh_statuses(conn, rows, today)

    buckets = bucket_expiring(certificates, today, days)
    return {
        **buckets,
        "counts": {name: len(items) for name, items in buckets.items()},
        "days": days,
    }

@router.get("/certificates/{certificate_id}")
async def get_certificate(certificate_id: str, actor: Actor = Depends(require_staff)):
    with get_db() as conn:
        row = fetch_certificate_row(conn, actor.organization_id, certificate_id)
        return refresh_statuses(conn, [row], date.today())[0]

@router.post("/certificates", status_code=201)
async def create_certificate(request: CertificateCreate, actor: Actor = Depends(require_staff)):
    require_fields(request, "clientId", "type", "typeName", "validUntil")
    valid_until = parse_iso_date(request.validUntil, "validUntil")
    for field in ("issuedAt", "validFrom"):
        if getattr(request, field):
            parse_iso_date(getattr(request, field), field)

    if request.status:
        require_choice(request.status, CERTIFICATE_STATUSES, "status")
        status = request.status
    else:
        status = classify_certificate(valid_until)

    certificate_id = new_id()
    with get_db() as conn:
        client = conn.execute(
            "SELECT id FROM clients WHERE id = ? AND organization_id = ?",
            (request.clientId, actor.organization_id)
        ).fetchone()
        if not client:
            raise NotFoundError("Client not found")

        conn.execute('''
            INSERT INTO certificates (
                id, client_id, type, type_name, number, issued_at, valid_from, valid_until,
                status, notes, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            certificate_id, request.clientId, request.type, request.typeName, request.number,
            request.issuedAt, request.validFrom, valid_until.isoformat(), status, request.notes, now_iso(),
        ))
        log_audit(conn, actor.id, "create", "certificates", certificate_id,
                  {"clientId": request.clientId, "type": request.type})
        conn.commit()

        row = fetch_certificate_row(conn, actor.organization_id, certificate_id)
        return serialize_certificate(row, row['status'])

@router.put("/certificates/{certificate_id}")
async def update_certificate(certificate_id: str, request: CertificateUpdate,
                             actor: Actor = Depends(require_staff)):
    changes = request.model_dump(exclude_unset=True)
    for field in ("type", "typeName", "validUntil"):
        if field in changes and not changes[field]:
            raise ValidationError(f"{field} cannot be empty")
    if "validUntil" in changes:
        changes["validUntil"] = parse_iso_date(changes["validUntil"], "validUntil").isoformat()
    if changes.get("status") is not None:
        require_choice(changes["status"], CERTIFICATE_STATUSES, "status")

    columns = {
        "type": "type",
        "typeName": "type_name",
        "number": "number",
        "issuedAt": "issued_at",
        "validFrom": "valid_from",
        "validUntil": "valid_until",
        "status": "status",
        "notes": "notes",
    }

    with get_db() as conn:
        existing = fetch_certificate_row(conn, actor.organization_id, certificate_id)

        # Recompute unless staff set the status explicitly
        if changes.get("status") is None:
            changes.pop("status", None)
            valid_until = date.fromisoformat((changes.get("validUntil") or existing['valid_until'])[:10])
            if "validUntil" in changes or existing['status'] not in MANUAL_STATUSES:
                changes["status"] = classify_certificate(valid_until)

        assignments = ", ".join(f"{columns[k]} = ?" for k in changes)
        conn.execute(
            f"UPDATE certificates SET {assignments}, updated_at = ? WHERE id = ?",
            list(changes.values()) + [now_iso(), certificate_id]
        )
        log_audit(conn, actor.id, "update", "certificates", certificate_id, {"fields": list(changes)})
        conn.commit()

        row = fetch_certificate_row(conn, actor.organization_id, certificate_id)
        return serialize_certificate(row, row['status'])

@router.delete("/certificates/{certificate_id}")
async def delete_certificate(certificate_id: str, actor: Actor = Depends(require_staff)):
    with get_db() as conn:
        fetch_certificate_row(conn, actor.organization_id, certificate_id)
        conn.execute("DELETE FROM certificates WHERE id = ?", (certificate_id,))
        log_audit(conn, actor.id, "delete", "certificates", certificate_id)
        conn.commit()
    return {"success": True}
