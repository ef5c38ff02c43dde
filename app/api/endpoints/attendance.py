import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from app.core.database import get_db, new_id, now_iso
from app.core.errors import NotFoundError, ValidationError
from app.core.security import require_client, require_staff
from app.models.attendance import (
    AttendanceBulkConfirmRequest,
    AttendanceConfirmRequest,
    AttendanceReportRequest,
)
from app.models.auth import Actor
from app.services.attendance_service import (
    ATTENDANCE_STATUSES,
    count_open_days,
    daily_summary,
    summarize_client_month,
    utilization_rate,
)
from app.services.audit_service import log_audit
from app.services.payroll_run_service import parse_month
from app.services.validation import parse_iso_date, require_choice
from app.services.wage_service import parse_clock_span, parse_clock_time

router = APIRouter()
logger = logging.getLogger(__name__)

def serialize_report(row):
    if row is None:
        return None
    return {
        "id": row['id'],
        "clientId": row['client_id'],
        "date": row['date'],
        "status": row['status'],
        "checkInTime": row['check_in_time'],
        "checkOutTime": row['check_out_time'],
        "healthCondition": row['health_condition'],
        "notes": row['notes'],
        "reportedAt": row['reported_at'],
    }

def serialize_confirmation(row):
    if row is None:
        return None
    return {
        "id": row['id'],
        "clientId": row['client_id'],
        "date": row['date'],
        "status": row['status'],
        "checkInTime": row['check_in_time'],
        "checkOutTime": row['check_out_time'],
        "actualMinutes": row['actual_minutes'],
        "notes": row['notes'],
        "confirmedById": row['confirmed_by_id'],
        "confirmedAt": row['confirmed_at'],
    }

def validate_times(day: str, check_in: Optional[str], check_out: Optional[str]):
    try:
        if check_in and check_out:
            start, end = parse_clock_span(check_in, check_out, day)
        else:
            start = parse_clock_time(check_in, day) if check_in else None
            end = parse_clock_time(check_out, day) if check_out else None
    except (ValueError, TypeError):
        raise ValidationError("Invalid time. Use HH:MM or an ISO timestamp")
    if start and end and end < start:
        raise ValidationError("checkOutTime must be after checkInTime")

def upsert_confirmation(conn, actor: Actor, client_id: str, day: str, status: str,
                        check_in: Optional[str], check_out: Optional[str],
                        actual_minutes: Optional[int], notes: Optional[str]):
    """One confirmation per client and day; a second confirm overwrites the first"""
    conn.execute('''
        INSERT INTO attendance_confirmations (
            id, client_id, date, status, check_in_time, check_out_time, actual_minutes,
            notes, confirmed_by_id, confirmed_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (client_id, date) DO UPDATE SET
            status = excluded.status,
            check_in_time = excluded.check_in_time,
            check_out_time = excluded.check_out_time,
            actual_minutes = excluded.actual_minutes,
            notes = excluded.notes,
            confirmed_by_id = excluded.confirmed_by_id,
            confirmed_at = excluded.confirmed_at
    ''', (new_id(), client_id, day, status, check_in, check_out, actual_minutes,
          notes, actor.id, now_iso()))

def validate_confirmation(day: str, status: str, check_in, check_out, actual_minutes):
    require_choice(status, ATTENDANCE_STATUSES, "status")
    validate_times(day, check_in, check_out)
    if actual_minutes is not None and actual_minutes < 0:
        raise ValidationError("actualMinutes cannot be negative")

# --- client self-service ---------------------------------------------------

@router.post("/attendance/report")
async def submit_report(request: AttendanceReportRequest, actor: Actor = Depends(require_client)):
    """Client's own attendance report; resubmitting replaces the day's report"""
    day = parse_iso_date(request.date, "date").isoformat()
    require_choice(request.status, ATTENDANCE_STATUSES, "status")
    validate_times(day, request.checkInTime, request.checkOutTime)

    with get_db() as conn:
        conn.execute('''
            INSERT INTO attendance_reports (
                id, client_id, date, status, check_in_time, check_out_time,
                health_condition, notes, reported_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (client_id, date) DO UPDATE SET
                status = excluded.status,
                check_in_time = excluded.check_in_time,
                check_out_time = excluded.check_out_time,
                health_condition = excluded.health_condition,
                notes = excluded.notes,
                reported_at = excluded.reported_at
        ''', (
            new_id(), actor.client_id, day, request.status, request.checkInTime,
            request.checkOutTime, request.healthCondition, request.notes, now_iso(),
        ))
        conn.commit()

        row = conn.execute(
            "SELECT * FROM attendance_reports WHERE client_id = ? AND date = ?", (actor.client_id, day)
        ).fetchone()
        return {"report": serialize_report(row)}

@router.get("/attendance/my-history")
async def my_history(month: Optional[str] = None, actor: Actor = Depends(require_client)):
    month = month or date.today().strftime("%Y-%m")
    period_start, period_end = parse_month(month)
    params = (actor.client_id, period_start.isoformat(), period_end.isoformat())

    with get_db() as conn:
        reports = conn.execute(
            "SELECT * FROM attendance_reports WHERE client_id = ? AND date BETWEEN ? AND ? ORDER BY date",
            params
        ).fetchall()
        confirmations = conn.execute(
            "SELECT * FROM attendance_confirmations WHERE client_id = ? AND date BETWEEN ? AND ? ORDER BY date",
            params
        ).fetchall()

    return {
        "month": month,
        "reports": [serialize_report(r) for r in reports],
        "confirmations": [serialize_confirmation(c) for c in confirmations],
    }

# --- staff views -----------------------------------------------------------

@router.get("/attendance/daily")
async def daily_board(day: Optional[str] = Query(None, alias="date"), actor: Actor = Depends(require_staff)):
    """Every active client with the day's report and confirmation"""
    day = parse_iso_date(day, "date").isoformat() if day else date.today().isoformat()

    with get_db() as conn:
        clients = conn.execute('''
            SELECT id, client_number, last_name, first_name FROM clients
            WHERE organization_id = ? AND status = 'active'
            ORDER BY last_name, first_name
        ''', (actor.organization_id,)).fetchall()
        reports = {
            r['client_id']: r for r in conn.execute(
                "SELECT * FROM attendance_reports WHERE date = ?", (day,)
            ).fetchall()
        }
        confirmations = {
            c['client_id']: c for c in conn.execute(
                "SELECT * FROM attendance_confirmations WHERE date = ?", (day,)
            ).fetchall()
        }

    rows = []
    for client in clients:
        report = reports.get(client['id'])
        confirmation = confirmations.get(client['id'])
        rows.append({
            "client": {
                "id": client['id'],
                "clientNumber": client['client_number'],
                "lastName": client['last_name'],
                "firstName": client['first_name'],
            },
            "report": serialize_report(report),
            "confirmation": serialize_confirmation(confirmation),
            "needsConfirmation": report is not None and confirmation is None,
        })

    return {"date": day, "clients": rows, "summary": daily_summary(rows)}

@router.get("/attendance/monthly")
async def monthly_view(month: Optional[str] = None, clientId: Optional[str] = None,
                       actor: Actor = Depends(require_staff)):
    """Confirmations for a month with per-client totals and facility utilization"""
    month = month or date.today().strftime("%Y-%m")
    period_start, period_end = parse_month(month)
    open_days = count_open_days(period_start.year, period_start.month)

    query = '''
        SELECT ac.*, c.client_number, c.last_name, c.first_name
        FROM attendance_confirmations ac
        JOIN clients c ON c.id = ac.client_id
        WHERE c.organization_id = ? AND ac.date BETWEEN ? AND ?
    '''
    params = [actor.organization_id, period_start.isoformat(), period_end.isoformat()]
    if clientId:
        query += " AND ac.client_id = ?"
        params.append(clientId)
    query += " ORDER BY c.last_name, c.first_name, ac.date"

    with get_db() as conn:
        rows = [dict(r) for r in conn.execute(query, params).fetchall()]
        capacity = conn.execute(
            "SELECT capacity FROM organizations WHERE id = ?", (actor.organization_id,)
        ).fetchone()['capacity']

    by_client = {}
    for row in rows:
        by_client.setdefault(row['client_id'], []).append(row)

    clients = []
    for client_id, confirmations in by_client.items():
        first = confirmations[0]
        clients.append({
            "clientId": client_id,
            "clientNumber": first['client_number'],
            "name": f"{first['last_name']} {first['first_name']}",
            **summarize_client_month(confirmations, open_days),
        })

    present_days = sum(c['present'] for c in clients)
    return {
        "month": month,
        "openDays": open_days,
        "confirmations": [serialize_confirmation(r) for r in rows],
        "clients": clients,
        "utilization": utilization_rate(present_days, capacity, open_days),
    }

@router.get("/attendance/utilization")
async def get_utilization(month: Optional[str] = None, clientId: Optional[str] = None,
                          actor: Actor = Depends(require_staff)):
    """利用率: present days against capacity x weekday open days"""
    month = month or date.today().strftime("%Y-%m")
    period_start, period_end = parse_month(month)

    query = '''
        SELECT COUNT(*) FROM attendance_confirmations ac
        JOIN clients c ON c.id = ac.client_id
        WHERE c.organization_id = ? AND c.status = 'active'
        AND ac.status = 'present' AND ac.date BETWEEN ? AND ?
    '''
    params = [actor.organization_id, period_start.isoformat(), period_end.isoformat()]
    if clientId:
        query += " AND ac.client_id = ?"
        params.append(clientId)

    with get_db() as conn:
        organization = conn.execute(
            "SELECT capacity FROM organizations WHERE id = ?", (actor.organization_id,)
        ).fetchone()
        if not organization:
            raise NotFoundError("Organization not found")
        present_days = conn.execute(query, params).fetchone()[0]

    open_days = count_open_days(period_start.year, period_start.month)
    return {
        "period": month,
        "presentDays": present_days,
        "openDays": open_days,
        "capacity": organization['capacity'],
        "utilization": utilization_rate(present_days, organization['capacity'], open_days),
    }

@router.post("/attendance/confirm")
async def confirm_attendance(request: AttendanceConfirmRequest, actor: Actor = Depends(require_staff)):
    """Staff-authoritative attendance for one client and day"""
    day = parse_iso_date(request.date, "date").isoformat()
    validate_confirmation(day, request.status, request.checkInTime, request.checkOutTime, request.actualMinutes)

    with get_db() as conn:
        client = conn.execute(
            "SELECT id FROM clients WHERE id = ? AND organization_id = ?",
            (request.clientId, actor.organization_id)
        ).fetchone()
        if not client:
            raise NotFoundError("Client not found")

        upsert_confirmation(conn, actor, request.clientId, day, request.status, request.checkInTime,
                            request.checkOutTime, request.actualMinutes, request.notes)
        row = conn.execute(
            "SELECT * FROM attendance_confirmations WHERE client_id = ? AND date = ?", (request.clientId, day)
        ).fetchone()
        log_audit(conn, actor.id, "confirm", "attendance_confirmations", row['id'],
                  {"clientId": request.clientId, "date": day, "status": request.status})
        conn.commit()
        return {"confirmation": serialize_confirmation(row)}

@router.post("/attendance/confirm-bulk")
async def confirm_attendance_bulk(request: AttendanceBulkConfirmRequest, actor: Actor = Depends(require_staff)):
    """Confirm a whole day at once; all entries are validated before any is written"""
    day = parse_iso_date(request.date, "date").isoformat()
    if not request.entries:
        raise ValidationError("entries cannot be empty")
    for entry in request.entries:
        validate_confirmation(day, entry.status, entry.checkInTime, entry.checkOutTime, entry.actualMinutes)

    with get_db() as conn:
        client_ids = {
            row['id'] for row in conn.execute(
                "SELECT id FROM clients WHERE organization_id = ?", (actor.organization_id,)
            ).fetchall()
        }
        unknown = [e.clientId for e in request.entries if e.clientId not in client_ids]
        if unknown:
            raise NotFoundError(f"Client not found: {', '.join(unknown)}")

        for entry in request.entries:
            upsert_confirmation(conn, actor, entry.clientId, day, entry.status, entry.checkInTime,
                                entry.checkOutTime, entry.actualMinutes, entry.notes)
        log_audit(conn, actor.id, "bulk_confirm", "attendance_confirmations", None,
                  {"date": day, "count": len(request.entries)})
        conn.commit()

        rows = conn.execute(
            "SELECT * FROM attendance_confirmations WHERE date = ? AND client_id IN (%s)"
            % ", ".join("?" * len(request.entries)),
            [day] + [e.clientId for e in request.entries]
        ).fetchall()

    logger.info(f"Bulk confirmed {len(request.entries)} attendance records for {day}")
    return {"confirmations": [serialize_confirmation(r) for r in rows], "count": len(rows)}
