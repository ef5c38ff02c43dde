import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, Response
from app.core.database import get_db
from app.core.errors import NotFoundError
from app.core.security import require_staff
from app.models.auth import Actor
from app.services.attendance_service import count_open_days, summarize_client_month
from app.services.audit_service import log_audit
from app.services.payroll_run_service import fetch_lines, fetch_run, parse_month, serialize_run
from app.services.report_service import (
    generate_attendance_csv,
    generate_attendance_html,
    generate_payroll_csv,
    generate_payslip_html,
)
from app.services.validation import require_choice

router = APIRouter()
logger = logging.getLogger(__name__)

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"

def csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content.encode("utf-8"),
        media_type=CSV_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@router.get("/reports/payroll/{run_id}/csv")
async def export_payroll_csv(run_id: str, actor: Actor = Depends(require_staff)):
    """Download the wage list for a payroll run"""
    with get_db() as conn:
        run = serialize_run(fetch_run(conn, actor.organization_id, run_id))
        lines = fetch_lines(conn, run_id)
        log_audit(conn, actor.id, "export", "payroll_runs", run_id, {"format": "csv", "lines": len(lines)})
        conn.commit()

    filename = f"payroll_{run['periodStart'][:7]}.csv"
    logger.info(f"Exported payroll run {run_id} as CSV ({len(lines)} lines)")
    return csv_response(generate_payroll_csv(lines), filename)

@router.get("/reports/payroll/{run_id}/slip/{client_id}", response_class=HTMLResponse)
async def payslip(run_id: str, client_id: str, actor: Actor = Depends(require_staff)):
    """Printable 工賃明細書 for one client"""
    with get_db() as conn:
        run = serialize_run(fetch_run(conn, actor.organization_id, run_id))
        line = next((l for l in fetch_lines(conn, run_id) if l['clientId'] == client_id), None)
        if line is None:
            raise NotFoundError("Client has no line in this payroll run")

        organization = conn.execute(
            "SELECT name FROM organizations WHERE id = ?", (actor.organization_id,)
        ).fetchone()
        log_audit(conn, actor.id, "export", "payroll_lines", line['id'], {"format": "html"})
        conn.commit()

    return HTMLResponse(generate_payslip_html(organization['name'] if organization else "", run, line))

@router.get("/reports/attendance/monthly")
async def attendance_report(month: Optional[str] = None, format: str = "csv",
                            actor: Actor = Depends(require_staff)):
    """Monthly attendance totals for every active client as CSV or printable HTML"""
    require_choice(format, ("csv", "html"), "format")
    month = month or date.today().strftime("%Y-%m")
    period_start, period_end = parse_month(month)
    open_days = count_open_days(period_start.year, period_start.month)

    with get_db() as conn:
        clients = conn.execute('''
            SELECT id, client_number, last_name, first_name FROM clients
            WHERE organization_id = ? AND status = 'active'
            ORDER BY client_number, last_name
        ''', (actor.organization_id,)).fetchall()
        confirmations = conn.execute('''
            SELECT ac.* FROM attendance_confirmations ac
            JOIN clients c ON c.id = ac.client_id
            WHERE c.organization_id = ? AND ac.date BETWEEN ? AND ?
        ''', (actor.organization_id, period_start.isoformat(), period_end.isoformat())).fetchall()
        log_audit(conn, actor.id, "export", "attendance_confirmations", None, {"month": month, "format": format})
        conn.commit()

    by_client = {}
    for row in confirmations:
        by_client.setdefault(row['client_id'], []).append(dict(row))

    rows = [
        {
            "clientNumber": client['client_number'],
            "name": f"{client['last_name']} {client['first_name']}",
            **summarize_client_month(by_client.get(client['id'], []), open_days),
        }
        for client in clients
    ]

    if format == "html":
        return HTMLResponse(generate_attendance_html(month, open_days, rows))
    return csv_response(generate_attendance_csv(rows), f"attendance_{month}.csv")
