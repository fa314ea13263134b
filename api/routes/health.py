"""
Health check endpoint with database and checkpoint status
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_checkpoint_store, get_db
from core.exceptions import CheckpointError
from ingestion.checkpoint import CheckpointStore
from schemas.api import HealthCheckResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    store: CheckpointStore = Depends(get_checkpoint_store),
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Whether the ingestion checkpoint can be read
    - When the checkpoint was last written
    """

    db_connected = False
    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")

    checkpoint_readable = False
    last_update = None
    try:
        checkpoint = await store.load()
        checkpoint_readable = True
        if checkpoint is not None:
            last_update = checkpoint.last_update_time
    except CheckpointError as e:
        logger.error(f"Checkpoint unreadable: {e.message}")

    # Overall status is derived by the HealthCheckResponse validator
    return HealthCheckResponse(
        database_connected=db_connected,
        checkpoint_readable=checkpoint_readable,
        last_checkpoint_update=last_update,
    )
