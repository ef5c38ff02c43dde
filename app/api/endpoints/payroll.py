import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from app.core.database import get_db
from app.core.errors import AppError
from app.core.security import require_manager, require_staff
from app.models.auth import Actor
from app.models.wages import PAYROLL_STATUSES, PayrollRunCreate
from app.services.audit_service import log_audit
from app.services.payroll_run_service import (
    confirm_payroll_run,
    create_payroll_run,
    get_payroll_run_detail,
    list_payroll_runs,
    mark_payroll_paid,
)
from app.services.validation import require_choice

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/payroll")
async def get_payroll_runs(
    month: Optional[str] = None,  # YYYY-MM
    status: Optional[str] = None,
    actor: Actor = Depends(require_staff),
):
    """List payroll runs with per-run totals"""
    if status:
        require_choice(status, PAYROLL_STATUSES, "status")
    with get_db() as conn:
        return {"payrollRuns": list_payroll_runs(conn, actor.organization_id, month, status)}

@router.get("/payroll/{run_id}")
async def get_payroll_run(run_id: str, actor: Actor = Depends(require_staff)):
    """Payroll run with every client line, ordered by client name"""
    with get_db() as conn:
        detail = get_payroll_run_detail(conn, actor.organization_id, run_id)
        log_audit(conn, actor.id, "view", "payroll_runs", run_id)
        conn.commit()
        return detail

@router.post("/payroll", status_code=201)
async def create_payroll(request: PayrollRunCreate, actor: Actor = Depends(require_manager)):
    """Calculate wages for every active client for one month"""
    try:
        with get_db() as conn:
            run_id = create_payroll_run(conn, actor, request.month, request.notes)
            return get_payroll_run_detail(conn, actor.organization_id, run_id)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error creating payroll run for {request.month}: {e}")
        raise HTTPException(status_code=500, detail="Failed to calculate payroll")

@router.put("/payroll/{run_id}/confirm")
@router.post("/payroll/{run_id}/confirm")
async def confirm_payroll(run_id: str, actor: Actor = Depends(require_manager)):
    """Lock a draft run as confirmed"""
    with get_db() as conn:
        confirm_payroll_run(conn, actor, run_id)
        return get_payroll_run_detail(conn, actor.organization_id, run_id)

@router.put("/payroll/{run_id}/paid")
@router.post("/payroll/{run_id}/paid")
async def mark_paid(run_id: str, actor: Actor = Depends(require_manager)):
    """Record that a confirmed run has been paid out"""
    with get_db() as conn:
        mark_payroll_paid(conn, actor, run_id)
        return get_payroll_run_detail(conn, actor.organization_id, run_id)
