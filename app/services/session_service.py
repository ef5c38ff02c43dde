# app/services/session_service.py
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from app.core.config import UploadConfig
from app.core.database import now_iso, row_to_dict
from app.core.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

TRANSCRIPT_ENGINE = "mock-whisper"
TRANSCRIPT_CONFIDENCE = 0.95
AI_MODEL = "mock-gpt4"

VERSIONED_TABLES = ("transcripts", "ai_summaries", "ai_extractions")

MIME_EXTENSIONS = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/wav": ".wav",
    "audio/m4a": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/webm": ".webm",
    "audio/ogg": ".ogg",
}

# (speaker, seconds, text) for the placeholder transcript
MOCK_DIALOGUE = [
    ("staff", 5, "本日はよろしくお願いします。"),
    ("client", 5, "よろしくお願いします。"),
    ("staff", 10, "最近の体調はいかがですか。"),
    ("client", 15, "少し疲れやすい日が続いています。"),
    ("staff", 10, "夜は眠れていますか。"),
    ("client", 15, "眠れてはいますが、朝がつらい日があります。"),
    ("staff", 12, "作業のペースはどうでしょう。"),
    ("client", 23, "続けたい気持ちはあるので、ペースを調整しながら取り組みたいです。"),
]

SPEAKER_LABELS = {"staff": "支援員", "client": "利用者"}

def serialize_session(row) -> Dict[str, Any]:
    return {
        "id": row['id'],
        "organizationId": row['organization_id'],
        "clientId": row['client_id'],
        "staffId": row['staff_id'],
        "sessionType": row['session_type'],
        "sessionDate": row['session_date'],
        "location": row['location'],
        "notes": row['notes'],
        "status": row['status'],
        "recordingConsent": bool(row['recording_consent']),
        "aiProcessingConsent": bool(row['ai_processing_consent']),
        "consentDate": row['consent_date'],
        "consentBy": row['consent_by'],
        "consentRelationship": row['consent_relationship'],
        "consentVersion": row['consent_version'],
        "createdAt": row['created_at'],
        "updatedAt": row['updated_at'],
    }

def fetch_session(conn, organization_id: str, session_id: str) -> Dict[str, Any]:
    row = conn.execute(
        "SELECT * FROM interview_sessions WHERE id = ? AND organization_id = ?",
        (session_id, organization_id)
    ).fetchone()
    if not row:
        raise NotFoundError("Interview session not found")
    return dict(row)

def next_version(conn, table: str, session_id: str) -> int:
    """Next artifact version for a session, starting at 1"""
    if table not in VERSIONED_TABLES:
        raise ValueError(f"{table} is not a versioned table")
    row = conn.execute(
        f"SELECT MAX(version) AS latest FROM {table} WHERE session_id = ?", (session_id,)
    ).fetchone()
    return (row['latest'] or 0) + 1

def latest_artifact(conn, table: str, session_id: str, json_fields=()) -> Optional[Dict[str, Any]]:
    if table not in VERSIONED_TABLES:
        raise ValueError(f"{table} is not a versioned table")
    row = conn.execute(
        f"SELECT * FROM {table} WHERE session_id = ? ORDER BY version DESC LIMIT 1", (session_id,)
    ).fetchone()
    return row_to_dict(row, json_fields)

def set_status(conn, session_id: str, from_status: str, to_status: str):
    """Move a session between statuses, failing if someone else moved it first"""
    cursor = conn.execute('''
        UPDATE interview_sessions SET status = ?, updated_at = ?
        WHERE id = ? AND status = ?
    ''', (to_status, now_iso(), session_id, from_status))
    if cursor.rowcount == 0:
        raise ConflictError(
            "Session status changed by another request, reload and retry",
            {"expectedStatus": from_status}
        )
    logger.info(f"Interview session {session_id}: {from_status} -> {to_status}")

def media_extension(mime_type: str, original_name: Optional[str]) -> str:
    if original_name:
        suffix = Path(original_name).suffix
        if suffix:
            return suffix.lower()
    return MIME_EXTENSIONS.get(mime_type, "")

def save_media_file(content: bytes, mime_type: str, original_name: Optional[str]) -> Tuple[str, str]:
    """Write an uploaded recording under UPLOAD_DIR/audio and return (file name, path)"""
    audio_dir = Path(UploadConfig.UPLOAD_DIR) / "audio"
    audio_dir.mkdir(parents=True, exist_ok=True)

    file_name = f"{uuid.uuid4()}{media_extension(mime_type, original_name)}"
    storage_path = audio_dir / file_name
    storage_path.write_bytes(content)
    return file_name, str(storage_path)

def remove_media_files(paths: List[str]):
    for path in paths:
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.warning(f"Media file already gone: {path}")
        except OSError as e:
            logger.error(f"Could not remove media file {path}: {e}")

def _timestamp(seconds: int) -> str:
    return f"{seconds // 3600:02d}:{seconds % 3600 // 60:02d}:{seconds % 60:02d}"

def generate_mock_transcript() -> Tuple[str, List[Dict[str, Any]]]:
    """Placeholder speech-to-text output: full text plus timed segments"""
    segments = []
    start = 0
    for speaker, duration, text in MOCK_DIALOGUE:
        segments.append({"start": start, "end": start + duration, "text": text, "speaker": speaker})
        start += duration

    lines = [f"{SPEAKER_LABELS[s['speaker']]}：{s['text']}" for s in segments]
    full_text = "【モック文字起こし】\n\n" + "\n\n".join(lines)
    return full_text, segments

def generate_mock_summary(segments: List[Dict[str, Any]]) -> Dict[str, str]:
    client_remarks = [s['text'] for s in segments if s.get('speaker') == 'client']

    short = "体調面の疲れやすさと、作業ペースを調整しながらの就労継続について話し合った。"
    medium = (
        "利用者から最近の体調について報告があった。"
        + "".join(client_remarks[1:])
        + "無理のない範囲で作業を続ける方針を確認した。"
    )
    long = "\n".join([
        "【面談概要】",
        "最近の体調と就労への意欲について聞き取りを行った。",
        "",
        "【利用者の発言】",
        *[f"- {remark}" for remark in client_remarks],
        "",
        "【今後の方針】",
        "- 作業時間と休息の取り方を見直す",
        "- 次回面談で体調の変化を確認する",
    ])
    return {"summaryShort": short, "summaryMedium": medium, "summaryLong": long}

def generate_mock_extraction(segments: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Placeholder structured extraction for support-plan drafting"""
    citations = [
        {"segmentIndex": index, "timestamp": _timestamp(segment['start']), "text": segment['text']}
        for index, segment in enumerate(segments)
        if segment.get('speaker') == 'client' and index > 1
    ]

    return {
        "clientIntentions": {
            "life": ["無理のないペースで生活したい"],
            "employment": ["就労を継続したい"],
            "other": [],
        },
        "currentChallenges": {
            "dailyLife": ["朝がつらい日がある"],
            "work": ["疲れやすさがある"],
            "interpersonal": [],
            "health": ["体力面の不安"],
            "other": [],
        },
        "strengths": {
            "skills": [],
            "personality": ["継続意欲がある"],
            "interests": [],
            "other": [],
        },
        "considerations": {
            "accommodations": ["作業時間の調整", "定期的な休息"],
            "restrictions": [],
            "medical": ["睡眠状態の確認"],
            "other": [],
        },
        "goals": {
            "longTerm": [
                {"description": "安定した通所を続ける", "timeframe": "1年", "priority": "high"},
            ],
            "shortTerm": [
                {"description": "起床リズムを整える", "timeframe": "1ヶ月", "priority": "medium"},
            ],
        },
        "supportContents": [
            {"type": "体調確認", "provider": "支援員", "location": "事業所内", "frequency": "毎日", "duration": "10分"},
            {"type": "就労訓練", "provider": "支援員", "location": "事業所内", "frequency": "週3回", "duration": "3時間/日"},
        ],
        "nextMonitoringCheckpoints": ["通所の安定度", "疲労感の変化", "起床リズム"],
        "citations": citations,
    }
