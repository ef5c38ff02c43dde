import json
import logging
from typing import Any, Dict, Optional

from app.core.database import now_iso

logger = logging.getLogger(__name__)

def log_audit(conn, staff_id: Optional[str], action: str, resource: str,
              resource_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
    """Record one audit row on the caller's connection; the caller commits"""
    conn.execute('''
        INSERT INTO audit_logs (staff_id, action, resource, resource_id, details, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
    ''', (
        staff_id,
        action,
        resource,
        resource_id,
        json.dumps(details, ensure_ascii=False) if details is not None else None,
        now_iso(),
    ))
    logger.debug(f"audit: {action} {resource} {resource_id or ''} by {staff_id}")
