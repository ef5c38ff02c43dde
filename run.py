import uvicorn
import logging
from app.core.config import ServerConfig

# Configure logging for the main entry point
log_level = getattr(logging, ServerConfig.LOG_LEVEL.upper())
logging.basicConfig(level=log_level)
logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info(f"Starting HTTP server on {ServerConfig.HOST}:{ServerConfig.PORT}...")
    if ServerConfig.ENABLE_API_DOCS:
        logger.info(f"API Documentation: http://localhost:{ServerConfig.PORT}/docs")

    # uvicorn needs an import string to run more than one worker
    uvicorn.run(
        "app.main:app",
        host=ServerConfig.HOST,
        port=ServerConfig.PORT,
        log_level=ServerConfig.LOG_LEVEL.lower(),
        workers=ServerConfig.WORKERS if ServerConfig.WORKERS > 1 else None,
    )
