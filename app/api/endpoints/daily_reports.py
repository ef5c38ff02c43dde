import json
import logging
from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from app.core.database import get_db, new_id, now_iso, row_to_dict
from app.core.errors import ForbiddenError, NotFoundError, ValidationError
from app.core.security import get_current_actor, require_client, require_manager, require_staff
from app.models.auth import Actor
from app.models.daily_reports import DailyReportComment, DailyReportSubmit
from app.services.audit_service import log_audit
from app.services.payroll_run_service import parse_month
from app.services.validation import check_max_length, parse_iso_date

router = APIRouter()
logger = logging.getLogger(__name__)

JSON_FIELDS = ('work_content', 'concerns')

def encode_json(value):
    return json.dumps(value, ensure_ascii=False) if value is not None else None

def serialize_report(row, comments: Optional[List[dict]] = None) -> dict:
    report = row_to_dict(row, JSON_FIELDS)
    data = {
        "id": report['id'],
        "clientId": report['client_id'],
        "date": report['date'],
        "workContent": report['work_content'],
        "mood": report['mood'],
        "health": report['health'],
        "reflection": report['reflection'],
        "concerns": report['concerns'],
        "isSubmitted": bool(report['is_submitted']),
        "submittedAt": report['submitted_at'],
        "createdAt": report['created_at'],
        "updatedAt": report['updated_at'],
    }
    if 'client_number' in report:
        data["client"] = {
            "clientNumber": report['client_number'],
            "lastName": report['last_name'],
            "firstName": report['first_name'],
        }
    if comments is not None:
        data["comments"] = comments
    return data

def load_comments(conn, report_ids: List[str]) -> Dict[str, List[dict]]:
    """Comments for the given reports, newest first, keyed by report id"""
    by_report = {report_id: [] for report_id in report_ids}
    if not report_ids:
        return by_report
    rows = conn.execute(f'''
        SELECT rc.*, su.name AS staff_name
        FROM daily_report_comments rc
        JOIN staff_users su ON su.id = rc.staff_id
        WHERE rc.report_id IN ({', '.join('?' for _ in report_ids)})
        ORDER BY rc.created_at DESC
    ''', report_ids).fetchall()
    for row in rows:
        by_report[row['report_id']].append({
            "id": row['id'],
            "content": row['content'],
            "isTemplate": bool(row['is_template']),
            "staffId": row['staff_id'],
            "staffName": row['staff_name'],
            "createdAt": row['created_at'],
        })
    return by_report

def fetch_report(conn, organization_id: str, report_id: str):
    row = conn.execute('''
        SELECT dr.*, c.client_number, c.last_name, c.first_name
        FROM daily_reports dr
        JOIN clients c ON c.id = dr.client_id
        WHERE dr.id = ? AND c.organization_id = ?
    ''', (report_id, organization_id)).fetchone()
    if not row:
        raise NotFoundError("Daily report not found")
    return row

def check_scale(value: Optional[int], field: str):
    if value is not None and not 1 <= value <= 5:
        raise ValidationError(f"{field} must be between 1 and 5")

@router.post("/daily-reports")
async def submit_report(request: DailyReportSubmit, actor: Actor = Depends(get_current_actor)):
    """Submit the day's report; resubmitting the same day replaces it"""
    check_scale(request.mood, "mood")
    check_scale(request.health, "health")
    check_max_length(request.reflection, 2000, "reflection")
    day = parse_iso_date(request.date, "date").isoformat() if request.date else date.today().isoformat()

    with get_db() as conn:
        if actor.type == "client":
            client_id = actor.client_id
        else:
            if not request.clientId:
                raise ValidationError("clientId is required")
            client = conn.execute(
                "SELECT id FROM clients WHERE id = ? AND organization_id = ?",
                (request.clientId, actor.organization_id)
            ).fetchone()
            if not client:
                raise NotFoundError("Client not found")
            client_id = request.clientId

        submitted = now_iso()
        conn.execute('''
            INSERT INTO daily_reports (
                id, client_id, date, work_content, mood, health, reflection, concerns,
                is_submitted, submitted_at, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, TRUE, ?, ?, ?)
            ON CONFLICT (client_id, date) DO UPDATE SET
                work_content = excluded.work_content,
                mood = excluded.mood,
                health = excluded.health,
                reflection = excluded.reflection,
                concerns = excluded.concerns,
                is_submitted = TRUE,
                submitted_at = excluded.submitted_at,
                updated_at = excluded.updated_at
        ''', (
            new_id(), client_id, day, encode_json(request.workContent), request.mood, request.health,
            request.reflection, encode_json(request.concerns), submitted, submitted, submitted,
        ))
        conn.commit()

        row = conn.execute(
            "SELECT * FROM daily_reports WHERE client_id = ? AND date = ?", (client_id, day)
        ).fetchone()
        logger.info(f"Daily report {row['id']} submitted for client {client_id} on {day}")
        return {"report": serialize_report(row)}

@router.get("/daily-reports/my-history")
async def my_history(month: Optional[str] = None, actor: Actor = Depends(require_client)):
    month = month or date.today().strftime("%Y-%m")
    period_start, period_end = parse_month(month)

    with get_db() as conn:
        rows = conn.execute('''
            SELECT * FROM daily_reports
            WHERE client_id = ? AND date BETWEEN ? AND ?
            ORDER BY date DESC
        ''', (actor.client_id, period_start.isoformat(), period_end.isoformat())).fetchall()
        comments = load_comments(conn, [r['id'] for r in rows])

    return {"month": month, "reports": [serialize_report(r, comments[r['id']]) for r in rows]}

@router.get("/daily-reports")
async def list_reports(
    day: Optional[str] = Query(None, alias="date"),
    clientId: Optional[str] = None,
    hasComment: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
    actor: Actor = Depends(require_staff),
):
    if not 1 <= limit <= 100:
        raise ValidationError("limit must be between 1 and 100")
    if offset < 0:
        raise ValidationError("offset cannot be negative")

    where = "WHERE c.organization_id = ?"
    params = [actor.organization_id]
    if day:
        where += " AND dr.date = ?"
        params.append(parse_iso_date(day, "date").isoformat())
    if clientId:
        where += " AND dr.client_id = ?"
        params.append(clientId)
    if hasComment is not None:
        has_comment_sql = "EXISTS (SELECT 1 FROM daily_report_comments rc WHERE rc.report_id = dr.id)"
        where += f" AND {has_comment_sql}" if hasComment else f" AND NOT {has_comment_sql}"

    base = f"FROM daily_reports dr JOIN clients c ON c.id = dr.client_id {where}"
    with get_db() as conn:
        total = conn.execute(f"SELECT COUNT(*) {base}", params).fetchone()[0]
        rows = conn.execute(f'''
            SELECT dr.*, c.client_number, c.last_name, c.first_name {base}
            ORDER BY dr.date DESC, c.client_number
            LIMIT ? OFFSET ?
        ''', params + [limit, offset]).fetchall()
        comments = load_comments(conn, [r['id'] for r in rows])

    return {
        "reports": [serialize_report(r, comments[r['id']]) for r in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }

@router.get("/daily-reports/pending-comments")
async def pending_comments(actor: Actor = Depends(require_staff)):
    """Submitted reports no staff member has replied to yet"""
    with get_db() as conn:
        rows = conn.execute('''
            SELECT dr.*, c.client_number, c.last_name, c.first_name
            FROM daily_reports dr
            JOIN clients c ON c.id = dr.client_id
            WHERE c.organization_id = ? AND dr.is_submitted = TRUE
              AND NOT EXISTS (SELECT 1 FROM daily_report_comments rc WHERE rc.report_id = dr.id)
            ORDER BY dr.date DESC
            LIMIT 50
        ''', (actor.organization_id,)).fetchall()

    reports = [serialize_report(r) for r in rows]
    return {"reports": reports, "count": len(reports)}

@router.get("/daily-reports/{report_id}")
async def get_report(report_id: str, actor: Actor = Depends(require_staff)):
    with get_db() as conn:
        row = fetch_report(conn, actor.organization_id, report_id)
        comments = load_comments(conn, [report_id])
        return {"report": serialize_report(row, comments[report_id])}

@router.post("/daily-reports/{report_id}/comments", status_code=201)
async def add_comment(report_id: str, request: DailyReportComment, actor: Actor = Depends(require_staff)):
    if not request.content or not request.content.strip():
        raise ValidationError("content is required")
    check_max_length(request.content, 2000, "content")

    comment_id = new_id()
    with get_db() as conn:
        fetch_report(conn, actor.organization_id, report_id)
        conn.execute('''
            INSERT INTO daily_report_comments (id, report_id, staff_id, content, is_template, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        ''', (comment_id, report_id, actor.id, request.content, request.isTemplate, now_iso()))
        log_audit(conn, actor.id, "comment", "daily_reports", report_id, {"commentId": comment_id})
        conn.commit()

        comment = next(c for c in load_comments(conn, [report_id])[report_id] if c['id'] == comment_id)
        return {"comment": comment}

@router.delete("/daily-reports/{report_id}/comments/{comment_id}")
async def delete_comment(report_id: str, comment_id: str, actor: Actor = Depends(require_staff)):
    """Staff may remove their own comments; managers may remove any"""
    with get_db() as conn:
        fetch_report(conn, actor.organization_id, report_id)
        comment = conn.execute(
            "SELECT * FROM daily_report_comments WHERE id = ? AND report_id = ?", (comment_id, report_id)
        ).fetchone()
        if not comment:
            raise NotFoundError("Comment not found")
        if comment['staff_id'] != actor.id and actor.role not in ("admin", "service_manager"):
            raise ForbiddenError("Only the author or a manager can delete this comment")

        conn.execute("DELETE FROM daily_report_comments WHERE id = ?", (comment_id,))
        log_audit(conn, actor.id, "delete", "daily_report_comments", comment_id, {"reportId": report_id})
        conn.commit()

    return {"success": True}

@router.delete("/daily-reports/{report_id}")
async def delete_report(report_id: str, actor: Actor = Depends(require_manager)):
    with get_db() as conn:
        row = fetch_report(conn, actor.organization_id, report_id)
        conn.execute("DELETE FROM daily_report_comments WHERE report_id = ?", (report_id,))
        conn.execute("DELETE FROM daily_reports WHERE id = ?", (report_id,))
        log_audit(conn, actor.id, "delete", "daily_reports", report_id,
                  {"clientId": row['client_id'], "date": row['date']})
        conn.commit()

    logger.info(f"Daily report {report_id} deleted by {actor.id}")
    return {"success": True}
