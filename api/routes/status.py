"""
Ingestion progress endpoint
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_checkpoint_store
from core.config import Settings, get_settings
from core.exceptions import CheckpointError
from ingestion.checkpoint import CheckpointStore
from ingestion.progress import load_report
from schemas.api import StatusResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Status"])


@router.get("/status", response_model=StatusResponse)
async def ingestion_status(
    store: CheckpointStore = Depends(get_checkpoint_store),
    settings: Settings = Depends(get_settings),
):
    """
    Progress of the ingestion, read from the persisted checkpoint.

    Never touches the provider or the running pipeline.
    """
    try:
        report = await load_report(store, datetime.now(timezone.utc))
    except CheckpointError as e:
        logger.error(f"Status read failed: {e}", extra={"error_context": e.to_dict()})
        raise HTTPException(status_code=503, detail=f"Checkpoint unreadable: {e.message}")

    return StatusResponse(
        pipeline_name=settings.PIPELINE_NAME,
        checkpoint_exists=report is not None,
        progress=report,
    )
