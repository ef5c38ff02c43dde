import json
import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from app.core.config import PayrollConfig, UploadConfig
from app.core.database import get_db, new_id, now_iso, row_to_dict
from app.core.errors import AppError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.core.security import require_staff
from app.models.auth import Actor
from app.models.sessions import InterviewSessionCreate, InterviewSessionUpdate, StatusChangeRequest
from app.services import session_state
from app.services.audit_service import log_audit
from app.services.session_service import (
    AI_MODEL,
    TRANSCRIPT_CONFIDENCE,
    TRANSCRIPT_ENGINE,
    fetch_session,
    generate_mock_extraction,
    generate_mock_summary,
    generate_mock_transcript,
    latest_artifact,
    next_version,
    remove_media_files,
    save_media_file,
    serialize_session,
    set_status,
)
from app.services.validation import (
    check_max_length,
    parse_iso_date,
    parse_iso_datetime,
    require_choice,
    require_fields,
)

router = APIRouter()
logger = logging.getLogger(__name__)

TEXT_LIMITS = {
    "location": 200,
    "notes": 5000,
    "consentBy": 100,
    "consentRelationship": 100,
    "consentVersion": 50,
}

def check_text_limits(values: dict):
    for field, limit in TEXT_LIMITS.items():
        check_max_length(values.get(field), limit, field)

def check_session_date(value: str):
    session_dt = parse_iso_datetime(value, "sessionDate")
    oldest = date.today() - timedelta(days=PayrollConfig.SESSION_MAX_PAST_DAYS)
    if session_dt.date() < oldest:
        raise ValidationError(
            f"sessionDate cannot be more than {PayrollConfig.SESSION_MAX_PAST_DAYS} days in the past"
        )

def require_unlocked(session: dict):
    if session_state.is_locked(session['status']):
        label = session_state.STATUS_LABELS[session['status']]
        raise ConflictError(
            f"Session is {label} and can no longer be edited",
            {"currentStatus": session['status']}
        )

def require_ai_consent(session: dict):
    if not session['ai_processing_consent']:
        raise ConflictError("AI processing consent has not been given")

def advance(conn, session: dict, operation: str) -> str:
    """Apply an operation's automatic status change, if any; returns the new status"""
    target = session_state.auto_advance_target(session['status'], operation)
    if target is None:
        return session['status']
    session_state.check_guards(session, target)
    set_status(conn, session['id'], session['status'], target)
    return target

def session_detail(conn, session_id: str, organization_id: str) -> dict:
    session = fetch_session(conn, organization_id, session_id)
    detail = serialize_session(session)
    detail["statusLabel"] = session_state.STATUS_LABELS.get(session['status'])
    detail["allowedTransitions"] = list(session_state.allowed_transitions(session['status']))

    client = conn.execute(
        "SELECT client_number, last_name, first_name FROM clients WHERE id = ?", (session['client_id'],)
    ).fetchone()
    if client:
        detail["client"] = {
            "clientNumber": client['client_number'],
            "lastName": client['last_name'],
            "firstName": client['first_name'],
        }

    detail["mediaAssets"] = [
        {
            "id": m['id'],
            "fileName": m['file_name'],
            "originalName": m['original_name'],
            "mimeType": m['mime_type'],
            "fileSize": m['file_size'],
            "createdAt": m['created_at'],
        }
        for m in conn.execute(
            "SELECT * FROM media_assets WHERE session_id = ? ORDER BY created_at", (session_id,)
        ).fetchall()
    ]
    detail["transcripts"] = [
        {
            "id": t['id'],
            "version": t['version'],
            "language": t['language'],
            "fullText": t['full_text'],
            "segments": t['segments'],
            "processingEngine": t['engine'],
            "confidence": t['confidence'],
            "createdAt": t['created_at'],
        }
        for t in (row_to_dict(r, ('segments',)) for r in conn.execute(
            "SELECT * FROM transcripts WHERE session_id = ? ORDER BY version DESC", (session_id,)
        ).fetchall())
    ]
    detail["summaries"] = [
        {
            "id": s['id'],
            "version": s['version'],
            "summaryShort": s['summary_short'],
            "summaryMedium": s['summary_medium'],
            "summaryLong": s['summary_long'],
            "model": s['model'],
            "createdAt": s['created_at'],
        }
        for s in conn.execute(
            "SELECT * FROM ai_summaries WHERE session_id = ? ORDER BY version DESC", (session_id,)
        ).fetchall()
    ]
    detail["extractions"] = [
        {
            "id": e['id'],
            "version": e['version'],
            "extractedData": e['extracted_data'],
            "model": e['model'],
            "createdAt": e['created_at'],
        }
        for e in (row_to_dict(r, ('extracted_data',)) for r in conn.execute(
            "SELECT * FROM ai_extractions WHERE session_id = ? ORDER BY version DESC", (session_id,)
        ).fetchall())
    ]
    return detail

@router.get("/interview-sessions")
async def list_sessions(
    clientId: Optional[str] = None,
    sessionType: Optional[str] = None,
    status: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    actor: Actor = Depends(require_staff),
):
    if not 1 <= limit <= 100:
        raise ValidationError("limit must be between 1 and 100")
    if offset < 0:
        raise ValidationError("offset cannot be negative")

    where = "WHERE s.organization_id = ?"
    params = [actor.organization_id]
    if clientId:
        where += " AND s.client_id = ?"
        params.append(clientId)
    if sessionType:
        require_choice(sessionType, session_state.SESSION_TYPES, "sessionType")
        where += " AND s.session_type = ?"
        params.append(sessionType)
    if status:
        require_choice(status, session_state.SESSION_STATUSES, "status")
        where += " AND s.status = ?"
        params.append(status)
    if startDate:
        where += " AND date(s.session_date) >= ?"
        params.append(parse_iso_date(startDate, "startDate").isoformat())
    if endDate:
        where += " AND date(s.session_date) <= ?"
        params.append(parse_iso_date(endDate, "endDate").isoformat())

    with get_db() as conn:
        total = conn.execute(f"SELECT COUNT(*) FROM interview_sessions s {where}", params).fetchone()[0]
        rows = conn.execute(f'''
            SELECT s.*, c.last_name, c.first_name
            FROM interview_sessions s
            JOIN clients c ON c.id = s.client_id
            {where}
            ORDER BY s.session_date DESC
            LIMIT ? OFFSET ?
        ''', params + [limit, offset]).fetchall()

    sessions = []
    for row in rows:
        item = serialize_session(row)
        item["clientName"] = f"{row['last_name']} {row['first_name']}"
        item["statusLabel"] = session_state.STATUS_LABELS.get(row['status'])
        sessions.append(item)

    return {"sessions": sessions, "total": total, "limit": limit, "offset": offset}

@router.get("/interview-sessions/status-transitions")
async def get_status_transitions(actor: Actor = Depends(require_staff)):
    return session_state.transition_table()

@router.get("/interview-sessions/{session_id}")
async def get_session(session_id: str, actor: Actor = Depends(require_staff)):
    with get_db() as conn:
        return session_detail(conn, session_id, actor.organization_id)

@router.post("/interview-sessions", status_code=201)
async def create_session(request: InterviewSessionCreate, actor: Actor = Depends(require_staff)):
    require_fields(request, "clientId", "sessionType", "sessionDate")
    require_choice(request.sessionType, session_state.SESSION_TYPES, "sessionType")
    check_text_limits(request.model_dump())
    check_session_date(request.sessionDate)

    status = request.status or session_state.DRAFT
    require_choice(status, (session_state.DRAFT, session_state.SCHEDULED), "initial status")

    consent_date = now_iso() if (request.recordingConsent or request.aiProcessingConsent) else None
    session_id = new_id()
    created = now_iso()

    with get_db() as conn:
        client = conn.execute(
            "SELECT id FROM clients WHERE id = ? AND organization_id = ?",
            (request.clientId, actor.organization_id)
        ).fetchone()
        if not client:
            raise NotFoundError("Client not found")

        conn.execute('''
            INSERT INTO interview_sessions (
                id, organization_id, client_id, staff_id, session_type, session_date, location, notes,
                status, recording_consent, ai_processing_consent, consent_date, consent_by,
                consent_relationship, consent_version, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            session_id, actor.organization_id, request.clientId, actor.id, request.sessionType,
            request.sessionDate, request.location, request.notes, status,
            request.recordingConsent, request.aiProcessingConsent, consent_date, request.consentBy,
            request.consentRelationship, request.consentVersion, created, created,
        ))
        log_audit(conn, actor.id, "create", "interview_sessions", session_id,
                  {"clientId": request.clientId, "sessionType": request.sessionType})
        conn.commit()

        logger.info(f"Interview session {session_id} created for client {request.clientId}")
        return session_detail(conn, session_id, actor.organization_id)

@router.put("/interview-sessions/{session_id}")
async def update_session(session_id: str, request: InterviewSessionUpdate, actor: Actor = Depends(require_staff)):
    changes = request.model_dump(exclude_unset=True)
    check_text_limits(changes)
    if "sessionType" in changes:
        require_choice(changes["sessionType"], session_state.SESSION_TYPES, "sessionType")
    if "sessionDate" in changes:
        check_session_date(changes["sessionDate"])
    for field in ("recordingConsent", "aiProcessingConsent"):
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} must be true or false")

    columns = {
        "sessionType": "session_type",
        "sessionDate": "session_date",
        "location": "location",
        "notes": "notes",
        "recordingConsent": "recording_consent",
        "aiProcessingConsent": "ai_processing_consent",
        "consentBy": "consent_by",
        "consentRelationship": "consent_relationship",
        "consentVersion": "consent_version",
    }

    with get_db() as conn:
        session = fetch_session(conn, actor.organization_id, session_id)
        require_unlocked(session)

        newly_granted = (
            (changes.get("recordingConsent") and not session['recording_consent'])
            or (changes.get("aiProcessingConsent") and not session['ai_processing_consent'])
        )

        assignments = [f"{columns[k]} = ?" for k in changes]
        values = list(changes.values())
        if newly_granted:
            assignments.append("consent_date = ?")
            values.append(now_iso())
        assignments.append("updated_at = ?")
        values.append(now_iso())

        conn.execute(
            f"UPDATE interview_sessions SET {', '.join(assignments)} WHERE id = ?",
            values + [session_id]
        )
        log_audit(conn, actor.id, "update", "interview_sessions", session_id, {"fields": list(changes)})
        conn.commit()

        return session_detail(conn, session_id, actor.organization_id)

@router.put("/interview-sessions/{session_id}/status")
@router.post("/interview-sessions/{session_id}/status")
async def change_status(session_id: str, request: StatusChangeRequest, actor: Actor = Depends(require_staff)):
    """Explicit status change, checked against the transition table"""
    require_choice(request.status, session_state.SESSION_STATUSES, "status")
    check_max_length(request.reason, 500, "reason")

    with get_db() as conn:
        session = fetch_session(conn, actor.organization_id, session_id)
        previous = session['status']
        try:
            session_state.validate_transition(session, request.status)
        except ConflictError:
            logger.warning(f"Rejected session {session_id} transition {previous} -> {request.status}")
            raise

        set_status(conn, session_id, previous, request.status)
        log_audit(conn, actor.id, "status_change", "interview_sessions", session_id, {
            "from": previous,
            "to": request.status,
            "reason": request.reason,
        })
        conn.commit()

        return session_detail(conn, session_id, actor.organization_id)

@router.delete("/interview-sessions/{session_id}")
async def delete_session(session_id: str, actor: Actor = Depends(require_staff)):
    with get_db() as conn:
        session = fetch_session(conn, actor.organization_id, session_id)
        if session['status'] == session_state.COMPLETED and actor.role != "admin":
            raise ForbiddenError("Only administrators can delete a completed session")

        plan_count = conn.execute(
            "SELECT COUNT(*) FROM support_plans WHERE session_id = ?", (session_id,)
        ).fetchone()[0]
        if plan_count:
            raise ConflictError(
                "This session is linked to a support plan and cannot be deleted",
                {"supportPlanCount": plan_count}
            )

        media_paths = [
            row['storage_path'] for row in conn.execute(
                "SELECT storage_path FROM media_assets WHERE session_id = ?", (session_id,)
            ).fetchall()
        ]
        for table in ("media_assets", "transcripts", "ai_summaries", "ai_extractions"):
            conn.execute(f"DELETE FROM {table} WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM interview_sessions WHERE id = ?", (session_id,))
        log_audit(conn, actor.id, "delete", "interview_sessions", session_id,
                  {"status": session['status'], "mediaCount": len(media_paths)})
        conn.commit()

    remove_media_files(media_paths)
    logger.info(f"Interview session {session_id} deleted by {actor.id}")
    return {"success": True}

@router.post("/interview-sessions/{session_id}/media", status_code=201)
async def upload_media(session_id: str, file: UploadFile = File(...), actor: Actor = Depends(require_staff)):
    """Attach an audio recording; the first upload starts the recording stage"""
    with get_db() as conn:
        session = fetch_session(conn, actor.organization_id, session_id)

    require_unlocked(session)
    if not session['recording_consent']:
        raise ConflictError("Recording consent has not been given")
    if file.content_type not in UploadConfig.ALLOWED_AUDIO_TYPES:
        raise ValidationError(f"Unsupported file type: {file.content_type}")

    content = await file.read()
    max_bytes = UploadConfig.MAX_FILE_SIZE_MB * 1024 * 1024
    if len(content) > max_bytes:
        raise ValidationError(f"File exceeds the {UploadConfig.MAX_FILE_SIZE_MB}MB limit")

    file_name, storage_path = save_media_file(content, file.content_type, file.filename)
    asset_id = new_id()
    try:
        with get_db() as conn:
            session = fetch_session(conn, actor.organization_id, session_id)
            conn.execute('''
                INSERT INTO media_assets (
                    id, session_id, file_name, original_name, mime_type, file_size,
                    storage_path, uploaded_by_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                asset_id, session_id, file_name, file.filename, file.content_type,
                len(content), storage_path, actor.id, now_iso(),
            ))
            status = advance(conn, session, "upload")
            log_audit(conn, actor.id, "upload", "media_assets", asset_id,
                      {"sessionId": session_id, "size": len(content), "mimeType": file.content_type})
            conn.commit()
    except AppError:
        remove_media_files([storage_path])
        raise
    except Exception as e:
        remove_media_files([storage_path])
        logger.error(f"Error storing media for session {session_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to store recording")

    return {
        "mediaAsset": {
            "id": asset_id,
            "fileName": file_name,
            "originalName": file.filename,
            "mimeType": file.content_type,
            "fileSize": len(content),
        },
        "sessionStatus": status,
    }

@router.post("/interview-sessions/{session_id}/transcribe", status_code=201)
async def transcribe_session(session_id: str, actor: Actor = Depends(require_staff)):
    with get_db() as conn:
        session = fetch_session(conn, actor.organization_id, session_id)
        require_unlocked(session)
        require_ai_consent(session)

        media_count = conn.execute(
            "SELECT COUNT(*) FROM media_assets WHERE session_id = ?", (session_id,)
        ).fetchone()[0]
        if media_count == 0:
            raise ConflictError("No recording has been uploaded for this session")

        full_text, segments = generate_mock_transcript()
        version = next_version(conn, "transcripts", session_id)
        transcript_id = new_id()
        conn.execute('''
            INSERT INTO transcripts (id, session_id, version, language, full_text, segments, engine, confidence, created_at)
            VALUES (?, ?, ?, 'ja', ?, ?, ?, ?, ?)
        ''', (
            transcript_id, session_id, version, full_text,
            json.dumps(segments, ensure_ascii=False), TRANSCRIPT_ENGINE, TRANSCRIPT_CONFIDENCE, now_iso(),
        ))
        status = advance(conn, session, "transcribe")
        log_audit(conn, actor.id, "transcribe", "transcripts", transcript_id,
                  {"sessionId": session_id, "version": version, "engine": TRANSCRIPT_ENGINE})
        conn.commit()

    logger.info(f"Transcript v{version} created for session {session_id}")
    return {
        "transcript": {
            "id": transcript_id,
            "version": version,
            "language": "ja",
            "fullText": full_text,
            "segments": segments,
            "processingEngine": TRANSCRIPT_ENGINE,
            "confidence": TRANSCRIPT_CONFIDENCE,
        },
        "sessionStatus": status,
    }

@router.post("/interview-sessions/{session_id}/summarize", status_code=201)
async def summarize_session(session_id: str, actor: Actor = Depends(require_staff)):
    with get_db() as conn:
        session = fetch_session(conn, actor.organization_id, session_id)
        require_unlocked(session)
        require_ai_consent(session)

        transcript = latest_artifact(conn, "transcripts", session_id, ('segments',))
        if transcript is None:
            raise ConflictError("Transcribe the session before summarizing it")

        summary = generate_mock_summary(transcript['segments'] or [])
        version = next_version(conn, "ai_summaries", session_id)
        summary_id = new_id()
        conn.execute('''
            INSERT INTO ai_summaries (id, session_id, version, summary_short, summary_medium, summary_long, model, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            summary_id, session_id, version, summary['summaryShort'], summary['summaryMedium'],
            summary['summaryLong'], AI_MODEL, now_iso(),
        ))
        status = advance(conn, session, "summarize")
        log_audit(conn, actor.id, "summarize", "ai_summaries", summary_id,
                  {"sessionId": session_id, "version": version, "model": AI_MODEL})
        conn.commit()

    return {
        "summary": {"id": summary_id, "version": version, "model": AI_MODEL, **summary},
        "sessionStatus": status,
    }

@router.post("/interview-sessions/{session_id}/extract", status_code=201)
async def extract_session(session_id: str, actor: Actor = Depends(require_staff)):
    """Pull support-plan material out of the latest transcript"""
    with get_db() as conn:
        session = fetch_session(conn, actor.organization_id, session_id)
        require_unlocked(session)
        require_ai_consent(session)

        transcript = latest_artifact(conn, "transcripts", session_id, ('segments',))
        if transcript is None:
            raise ConflictError("Transcribe the session before extracting from it")

        extracted = generate_mock_extraction(transcript['segments'] or [])
        version = next_version(conn, "ai_extractions", session_id)
        extraction_id = new_id()
        conn.execute('''
            INSERT INTO ai_extractions (id, session_id, version, extracted_data, model, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        ''', (
            extraction_id, session_id, version,
            json.dumps(extracted, ensure_ascii=False), AI_MODEL, now_iso(),
        ))
        status = advance(conn, session, "extract")
        log_audit(conn, actor.id, "extract", "ai_extractions", extraction_id,
                  {"sessionId": session_id, "version": version, "model": AI_MODEL})
        conn.commit()

    return {
        "extraction": {"id": extraction_id, "version": version, "model": AI_MODEL, "extractedData": extracted},
        "sessionStatus": status,
    }
