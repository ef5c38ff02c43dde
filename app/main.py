import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import PayrollConfig, ServerConfig, UploadConfig
from app.core.database import init_database, seed_test_data
from app.core.errors import register_exception_handlers
from app.api.endpoints import (
    attendance,
    auth,
    certificates,
    clients,
    daily_reports,
    general,
    interview_sessions,
    payroll,
    reports,
    support_plans,
    wages,
)

# Configure logging
log_level = getattr(logging, ServerConfig.LOG_LEVEL.upper())
logging.basicConfig(level=log_level)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    logger.info("=" * 60)
    logger.info(f"{ServerConfig.APP_NAME.upper()}")
    logger.info(f"Version: {ServerConfig.APP_VERSION}")
    logger.info("=" * 60)

    init_database()

    # Test data for development
    if ServerConfig.SEED_TEST_DATA:
        seed_test_data()

    logger.info(f"Database: {ServerConfig.DATABASE_PATH}")
    logger.info(f"Upload directory: {UploadConfig.UPLOAD_DIR} (max {UploadConfig.MAX_FILE_SIZE_MB}MB)")
    logger.info(f"Default daily minutes: {PayrollConfig.DEFAULT_DAILY_MINUTES}")
    logger.info("=" * 60)
    logger.info("Shuro Support Server started successfully!")

    yield  # Server is running

    logger.info("Shutting down Shuro Support Server...")


app = FastAPI(
    title=ServerConfig.APP_NAME,
    version=ServerConfig.APP_VERSION,
    description=ServerConfig.APP_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs" if ServerConfig.ENABLE_API_DOCS else None,
    redoc_url="/redoc" if ServerConfig.ENABLE_API_DOCS else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ServerConfig.CORS_ORIGINS,
    allow_credentials=ServerConfig.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include API routers
app.include_router(general.router, tags=["General"])
app.include_router(auth.router, tags=["Auth"])
app.include_router(clients.router, tags=["Clients"])
app.include_router(certificates.router, tags=["Certificates"])
app.include_router(attendance.router, tags=["Attendance"])
app.include_router(wages.router, tags=["Wages"])
app.include_router(payroll.router, tags=["Payroll"])
app.include_router(interview_sessions.router, tags=["Interview Sessions"])
app.include_router(support_plans.router, tags=["Support Plans"])
app.include_router(daily_reports.router, tags=["Daily Reports"])
app.include_router(reports.router, tags=["Reports"])
