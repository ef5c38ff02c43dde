import logging

from fastapi import APIRouter, HTTPException
from app.core.config import ServerConfig, UploadConfig
from app.core.database import get_db

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/")
async def root():
    return {
        "message": ServerConfig.APP_NAME,
        "version": ServerConfig.APP_VERSION,
        "description": ServerConfig.APP_DESCRIPTION,
        "status": "running",
        "docs_enabled": ServerConfig.ENABLE_API_DOCS,
    }

@router.get("/config")
async def get_public_config():
    """Get public configuration information"""
    return {
        "app_name": ServerConfig.APP_NAME,
        "app_version": ServerConfig.APP_VERSION,
        "max_upload_mb": UploadConfig.MAX_FILE_SIZE_MB,
        "allowed_audio_types": UploadConfig.ALLOWED_AUDIO_TYPES,
    }

@router.get("/health")
async def health_check():
    """Health check with a database round trip"""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.execute("SELECT COUNT(*) FROM clients WHERE status = 'active'")
            client_count = cursor.fetchone()[0]

            return {
                "status": "healthy",
                "database": "connected",
                "active_clients": client_count,
            }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Service unavailable")
