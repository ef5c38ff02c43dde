import os
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

def parse_list_env(env_var: str, default: List[str] = None) -> List[str]:
    """Parse comma-separated environment variable into list"""
    if default is None:
        default = []

    value = os.getenv(env_var, "")
    if not value.strip():
        return default

    # Split by comma and strip whitespace
    return [item.strip() for item in value.split(",") if item.strip()]

def parse_bool_env(env_var: str, default: bool = False) -> bool:
    """Parse boolean environment variable"""
    return os.getenv(env_var, str(default)).lower() in ("true", "1", "yes", "on")

class AuthConfig:
    """Token and password settings from Environment"""

    JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

    # 7 days, matching the staff app's session length
    JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", str(7 * 24 * 60)))

    MIN_PASSWORD_LENGTH = int(os.getenv("MIN_PASSWORD_LENGTH", "8"))

class UploadConfig:
    """Interview recording storage settings"""

    UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
    MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "100"))

    ALLOWED_AUDIO_TYPES = parse_list_env(
        "ALLOWED_AUDIO_TYPES",
        [
            "audio/mpeg",
            "audio/mp3",
            "audio/wav",
            "audio/m4a",
            "audio/webm",
            "audio/ogg",
            "audio/x-m4a",
        ]
    )

class PayrollConfig:
    """Business thresholds used by payroll, certificates and sessions"""

    # Minutes credited for a present day with no recorded times
    DEFAULT_DAILY_MINUTES = int(os.getenv("DEFAULT_DAILY_MINUTES", "480"))

    CERTIFICATE_SOON_DAYS = int(os.getenv("CERTIFICATE_SOON_DAYS", "30"))
    CERTIFICATE_REPORT_DAYS = int(os.getenv("CERTIFICATE_REPORT_DAYS", "90"))

    SESSION_MAX_PAST_DAYS = int(os.getenv("SESSION_MAX_PAST_DAYS", "180"))

class ServerConfig:
    """Server Configuration from Environment"""

    # Server settings
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8000"))
    WORKERS = int(os.getenv("WORKERS", "1"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Database settings
    DATABASE_PATH = os.getenv("DATABASE_PATH", "shuro_support.db")

    # Development settings
    SEED_TEST_DATA = parse_bool_env("SEED_TEST_DATA", True)
    ENABLE_API_DOCS = parse_bool_env("ENABLE_API_DOCS", True)

    # CORS settings
    CORS_ORIGINS = parse_list_env("CORS_ORIGINS", ["*"])
    CORS_ALLOW_CREDENTIALS = parse_bool_env("CORS_ALLOW_CREDENTIALS", True)

    # App metadata
    APP_NAME = os.getenv("APP_NAME", "Shuro Support Backend")
    APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
    APP_DESCRIPTION = os.getenv(
        "APP_DESCRIPTION",
        "Attendance, wages and interview records for employment support facilities"
    )
