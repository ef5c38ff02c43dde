import logging
from typing import Optional

from fastapi import APIRouter, Depends
from app.core.database import get_db, new_id, now_iso
from app.core.errors import NotFoundError, ValidationError
from app.core.security import require_staff
from app.models.auth import Actor
from app.models.clients import CLIENT_STATUSES, SERVICE_TYPES, ClientCreate, ClientUpdate
from app.services.audit_service import log_audit
from app.services.validation import parse_iso_date, require_choice, require_fields

router = APIRouter()
logger = logging.getLogger(__name__)

def serialize_client(row):
    return {
        "id": row['id'],
        "organizationId": row['organization_id'],
        "clientNumber": row['client_number'],
        "lastName": row['last_name'],
        "firstName": row['first_name'],
        "serviceType": row['service_type'],
        "status": row['status'],
        "startDate": row['start_date'],
        "endDate": row['end_date'],
        "notes": row['notes'],
        "createdAt": row['created_at'],
        "updatedAt": row['updated_at'],
    }

def fetch_client(conn, organization_id: str, client_id: str):
    row = conn.execute(
        "SELECT * FROM clients WHERE id = ? AND organization_id = ?",
        (client_id, organization_id)
    ).fetchone()
    if not row:
        raise NotFoundError("Client not found")
    return row

@router.get("/clients")
async def list_clients(
    status: Optional[str] = None,
    search: Optional[str] = None,
    actor: Actor = Depends(require_staff),
):
    """List the facility's clients, optionally by status or name/number"""
    query = "SELECT * FROM clients WHERE organization_id = ?"
    params = [actor.organization_id]
    if status:
        query += " AND status = ?"
        params.append(status)
    if search:
        query += " AND (last_name LIKE ? OR first_name LIKE ? OR client_number LIKE ?)"
        params.extend([f"%{search}%"] * 3)
    query += " ORDER BY last_name, first_name"

    with get_db() as conn:
        rows = conn.execute(query, params).fetchall()
        return {"clients": [serialize_client(r) for r in rows]}

@router.get("/clients/{client_id}")
async def get_client(client_id: str, actor: Actor = Depends(require_staff)):
    with get_db() as conn:
        return serialize_client(fetch_client(conn, actor.organization_id, client_id))

@router.post("/clients", status_code=201)
async def create_client(request: ClientCreate, actor: Actor = Depends(require_staff)):
    require_fields(request, "lastName", "firstName", "serviceType")
    require_choice(request.serviceType, SERVICE_TYPES, "serviceType")
    require_choice(request.status, CLIENT_STATUSES, "status")
    for field in ("startDate", "endDate"):
        if getattr(request, field):
            parse_iso_date(getattr(request, field), field)

    client_id = new_id()
    with get_db() as conn:
        conn.execute('''
            INSERT INTO clients (
                id, organization_id, client_number, last_name, first_name, service_type,
                status, start_date, end_date, notes, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            client_id, actor.organization_id, request.clientNumber, request.lastName,
            request.firstName, request.serviceType, request.status, request.startDate,
            request.endDate, request.notes, now_iso(),
        ))
        log_audit(conn, actor.id, "create", "clients", client_id)
        conn.commit()
        logger.info(f"Client {client_id} created by {actor.id}")
        return serialize_client(fetch_client(conn, actor.organization_id, client_id))

@router.put("/clients/{client_id}")
async def update_client(client_id: str, request: ClientUpdate, actor: Actor = Depends(require_staff)):
    changes = request.model_dump(exclude_unset=True)
    for field in ("lastName", "firstName"):
        if field in changes and not changes[field]:
            raise ValidationError(f"{field} cannot be empty")
    if "serviceType" in changes:
        require_choice(changes["serviceType"], SERVICE_TYPES, "serviceType")
    if "status" in changes:
        require_choice(changes["status"], CLIENT_STATUSES, "status")
    for field in ("startDate", "endDate"):
        if changes.get(field):
            parse_iso_date(changes[field], field)

    columns = {
        "lastName": "last_name",
        "firstName": "first_name",
        "serviceType": "service_type",
        "clientNumber": "client_number",
        "status": "status",
        "startDate": "start_date",
        "endDate": "end_date",
        "notes": "notes",
    }

    with get_db() as conn:
        fetch_client(conn, actor.organization_id, client_id)
        if changes:
            assignments = ", ".join(f"{columns[k]} = ?" for k in changes)
            conn.execute(
                f"UPDATE clients SET {assignments}, updated_at = ? WHERE id = ?",
                list(changes.values()) + [now_iso(), client_id]
            )
            log_audit(conn, actor.id, "update", "clients", client_id, {"fields": list(changes)})
            conn.commit()
        return serialize_client(fetch_client(conn, actor.organization_id, client_id))
