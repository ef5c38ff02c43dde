# app/services/payroll_run_service.py
import calendar
import json
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from app.core.database import new_id, now_iso, row_to_dict
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.auth import Actor
from app.services.audit_service import log_audit
from app.services.wage_service import compute_payroll_line, resolve_wage_rule

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")

def parse_month(month: str) -> Tuple[date, date]:
    """Turn 'YYYY-MM' into the first and last day of that month"""
    match = MONTH_PATTERN.match(month or "")
    if not match:
        raise ValidationError("month must be in YYYY-MM format")
    year, mon = int(match.group(1)), int(match.group(2))
    if not 1 <= mon <= 12:
        raise ValidationError("month must be in YYYY-MM format")
    last_day = calendar.monthrange(year, mon)[1]
    return date(year, mon, 1), date(year, mon, last_day)

def load_wage_rules(conn, organization_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM wage_rules WHERE organization_id = ?", (organization_id,)
    ).fetchall()
    return [row_to_dict(r, ('piece_rates', 'deductions')) for r in rows]

def serialize_run(row) -> Dict[str, Any]:
    return {
        "id": row['id'],
        "organizationId": row['organization_id'],
        "periodStart": row['period_start'],
        "periodEnd": row['period_end'],
        "status": row['status'],
        "notes": row['notes'],
        "createdById": row['created_by_id'],
        "confirmedById": row['confirmed_by_id'],
        "confirmedAt": row['confirmed_at'],
        "paidAt": row['paid_at'],
        "createdAt": row['created_at'],
    }

def serialize_line(row) -> Dict[str, Any]:
    return {
        "id": row['id'],
        "payrollRunId": row['payroll_run_id'],
        "clientId": row['client_id'],
        "client": {
            "clientNumber": row['client_number'],
            "lastName": row['last_name'],
            "firstName": row['first_name'],
            "serviceType": row['service_type'],
        },
        "wageRuleId": row['wage_rule_id'],
        "workDays": row['work_days'],
        "totalMinutes": row['total_minutes'],
        "baseAmount": row['base_amount'],
        "pieceAmount": row['piece_amount'],
        "deductions": row['deductions'],
        "netAmount": row['net_amount'],
        "breakdown": json.loads(row['breakdown']) if row['breakdown'] else {},
    }

def summarize_lines(lines: List[Dict[str, Any]], detailed: bool = False) -> Dict[str, Any]:
    summary = {
        "clientCount": len(lines),
        "totalBaseAmount": sum(l['baseAmount'] for l in lines),
        "totalPieceAmount": sum(l['pieceAmount'] for l in lines),
        "totalDeductions": sum(l['deductions'] for l in lines),
        "totalNetAmount": sum(l['netAmount'] for l in lines),
    }
    if detailed:
        summary["totalWorkDays"] = sum(l['workDays'] for l in lines)
        summary["totalMinutes"] = sum(l['totalMinutes'] for l in lines)
    return summary

def fetch_run(conn, organization_id: str, run_id: str):
    row = conn.execute(
        "SELECT * FROM payroll_runs WHERE id = ? AND organization_id = ?",
        (run_id, organization_id)
    ).fetchone()
    if not row:
        raise NotFoundError("Payroll run not found")
    return row

def fetch_lines(conn, run_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute('''
        SELECT pl.*, c.client_number, c.last_name, c.first_name, c.service_type
        FROM payroll_lines pl
        JOIN clients c ON c.id = pl.client_id
        WHERE pl.payroll_run_id = ?
        ORDER BY c.last_name, c.first_name, pl.client_id
    ''', (run_id,)).fetchall()
    return [serialize_line(r) for r in rows]

def create_payroll_run(conn, actor: Actor, month: str, notes: Optional[str] = None) -> str:
    """
    Compute and store the payroll run for one month.

    The overlap check, every line and the final 'draft' status are written in
    a single write transaction, so concurrent requests for the same period
    serialize and a failure leaves nothing behind.
    """
    period_start, period_end = parse_month(month)
    start_str, end_str = period_start.isoformat(), period_end.isoformat()
    org_id = actor.organization_id

    conn.execute("BEGIN IMMEDIATE")

    existing = conn.execute('''
        SELECT id FROM payroll_runs
        WHERE organization_id = ? AND period_start <= ? AND period_end >= ?
    ''', (org_id, end_str, start_str)).fetchone()
    if existing:
        raise ConflictError(
            f"A payroll run already exists for this period (ID: {existing['id']})",
            {"existingId": existing['id']}
        )

    run_id = new_id()
    conn.execute('''
        INSERT INTO payroll_runs (id, organization_id, period_start, period_end, status, notes, created_by_id, created_at)
        VALUES (?, ?, ?, ?, 'calculating', ?, ?, ?)
    ''', (run_id, org_id, start_str, end_str, notes, actor.id, now_iso()))

    clients = conn.execute('''
        SELECT id FROM clients
        WHERE organization_id = ? AND status = 'active'
        ORDER BY last_name, first_name
    ''', (org_id,)).fetchall()
    rules = load_wage_rules(conn, org_id)

    line_count = 0
    for client in clients:
        client_id = client['id']
        confirmations = [dict(r) for r in conn.execute('''
            SELECT * FROM attendance_confirmations
            WHERE client_id = ? AND date BETWEEN ? AND ? AND status = 'present'
        ''', (client_id, start_str, end_str)).fetchall()]
        work_logs = [dict(r) for r in conn.execute('''
            SELECT * FROM work_logs
            WHERE client_id = ? AND date BETWEEN ? AND ?
            ORDER BY date, created_at
        ''', (client_id, start_str, end_str)).fetchall()]

        rule = resolve_wage_rule(rules, client_id, period_start, period_end)
        line = compute_payroll_line(client_id, confirmations, work_logs, rule)
        if line is None:
            continue

        conn.execute('''
            INSERT INTO payroll_lines (
                id, payroll_run_id, client_id, wage_rule_id, work_days, total_minutes,
                base_amount, piece_amount, deductions, net_amount, breakdown, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            new_id(), run_id, client_id, line.breakdown.wageRuleId,
            line.workDays, line.totalMinutes, line.baseAmount, line.pieceAmount,
            line.deductions, line.netAmount,
            json.dumps(line.breakdown.model_dump(), ensure_ascii=False),
            now_iso(),
        ))
        line_count += 1

    conn.execute("UPDATE payroll_runs SET status = 'draft' WHERE id = ?", (run_id,))
    log_audit(conn, actor.id, "create", "payroll_runs", run_id,
              {"month": month, "lineCount": line_count})
    conn.commit()

    logger.info(f"Payroll run {run_id} for {month} created with {line_count} lines")
    return run_id

def list_payroll_runs(conn, organization_id: str, month: Optional[str] = None,
                      status: Optional[str] = None) -> List[Dict[str, Any]]:
    query = "SELECT * FROM payroll_runs WHERE organization_id = ?"
    params: List[Any] = [organization_id]
    if month:
        period_start, _ = parse_month(month)
        query += " AND period_start = ?"
        params.append(period_start.isoformat())
    if status:
        query += " AND status = ?"
        params.append(status)
    query += " ORDER BY period_start DESC"

    runs = []
    for row in conn.execute(query, params).fetchall():
        run = serialize_run(row)
        run["summary"] = summarize_lines(fetch_lines(conn, row['id']))
        runs.append(run)
    return runs

def get_payroll_run_detail(conn, organization_id: str, run_id: str) -> Dict[str, Any]:
    run = serialize_run(fetch_run(conn, organization_id, run_id))
    lines = fetch_lines(conn, run_id)
    run["lines"] = lines
    run["summary"] = summarize_lines(lines, detailed=True)
    return run

def _advance_run(conn, actor: Actor, run_id: str, from_status: str, to_status: str,
                 stamp_sql: str, stamp_params: tuple, action: str):
    fetch_run(conn, actor.organization_id, run_id)

    cursor = conn.execute(
        f"UPDATE payroll_runs SET status = ?, {stamp_sql} WHERE id = ? AND status = ?",
        (to_status,) + stamp_params + (run_id, from_status)
    )
    if cursor.rowcount == 0:
        current = fetch_run(conn, actor.organization_id, run_id)['status']
        raise ConflictError(
            f"Payroll run must be '{from_status}' to become '{to_status}' (currently '{current}')",
            {"currentStatus": current}
        )

    log_audit(conn, actor.id, action, "payroll_runs", run_id, {"status": to_status})
    conn.commit()
    logger.info(f"Payroll run {run_id}: {from_status} -> {to_status} by {actor.id}")

def confirm_payroll_run(conn, actor: Actor, run_id: str):
    _advance_run(conn, actor, run_id, "draft", "confirmed",
                 "confirmed_by_id = ?, confirmed_at = ?", (actor.id, now_iso()), "confirm")

def mark_payroll_paid(conn, actor: Actor, run_id: str):
    _advance_run(conn, actor, run_id, "confirmed", "paid",
                 "paid_at = ?", (now_iso(),), "pay")
