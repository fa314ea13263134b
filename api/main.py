"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, status
from core.config import settings
from core.logging import setup_logging
import logging

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="FDC Ingestion API",
    description="Read-only health and progress surface of the USDA FoodData Central ingestion",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Include routers
app.include_router(health.router)
app.include_router(status.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting FDC Ingestion API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Checkpoint backend: {settings.CHECKPOINT_BACKEND}")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down FDC Ingestion API")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "FDC Ingestion API",
        "version": "1.0.0",
        "docs": "/docs",
        "endpoints": {
            "health": "/health",
            "status": "/status"
        }
    }
