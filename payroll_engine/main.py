"""
Payroll Engine - FastAPI Application Entry Point

This is the main entry point for the FastAPI application.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from payroll_engine.config import settings
from payroll_engine.database import async_session_maker, close_db, init_db
from payroll_engine.repositories.sqlalchemy_repository import SQLAlchemyPayrollRepository
from payroll_engine.routers import payroll
from payroll_engine.services.anomaly_detection_service import PayrollAnomalyDetector
from payroll_engine.services.hr_client import HTTPAttendanceProvider, HTTPEmployeeDirectory
from payroll_engine.utils.error_handling import setup_exception_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Environment: {settings.app_env}")

    # Initialize database (dev only - use migrations in production)
    if settings.is_development:
        await init_db()
        logger.info("Database tables initialized")

    app.state.payroll_repository = SQLAlchemyPayrollRepository(async_session_maker)
    app.state.employee_directory = HTTPEmployeeDirectory()
    app.state.attendance_provider = HTTPAttendanceProvider()
    app.state.anomaly_validator = PayrollAnomalyDetector() if settings.anomaly_validation_enabled else None

    if not settings.ai_validation_configured:
        logger.info("OpenAI review disabled; anomaly validation runs rule checks only")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Indonesian payroll calculation engine: BPJS, PPh21, attendance-based pay and payslips",
    version="0.1.0",
    docs_url="/api/docs" if settings.is_development else None,
    redoc_url="/api/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness check."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "environment": settings.app_env,
    }


app.include_router(payroll.router, prefix=f"/api/{settings.api_version}/payroll", tags=["Payroll"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "payroll_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
