"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

# Import database and ALL models first so the tables are registered
from leadagent.database import Base, init_db, dispose_db
from leadagent.models import (
    Mission,
    Task,
    DailyUsage,
    MissionLog,
    LeadEvent,
    Lead,
    Campaign,
    ContactedLead,
)

from leadagent.config import settings
from leadagent.routers import agent_routes
from leadagent.scheduler import start_scheduler, stop_scheduler

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Lead Generation Agent API",
    description="Mission task engine and adaptive tuning",
    version="1.0.0",
    redirect_slashes=False
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(agent_routes.router)


# ============================================
# HEALTH & ROOT ENDPOINTS
# ============================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "registered_tables": len(Base.metadata.tables),
        "tables": list(Base.metadata.tables.keys()),
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Lead Generation Agent API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


# ============================================
# STARTUP & SHUTDOWN
# ============================================

@app.on_event("startup")
async def startup_event():
    """Run on application startup."""
    logger.info("Starting Lead Generation Agent API...")
    logger.info("=" * 50)
    logger.info(f"Registered {len(Base.metadata.tables)} SQLAlchemy tables:")
    for table_name in sorted(Base.metadata.tables.keys()):
        logger.info(f"  ✓ {table_name}")
    logger.info("=" * 50)

    await init_db()

    if settings.ENABLE_SCHEDULER:
        start_scheduler()

    logger.info("Application started successfully!")


@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown."""
    logger.info("Shutting down Lead Generation Agent API...")
    stop_scheduler()
    await dispose_db()
