"""
FastAPI dependencies
"""

from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from core.database import get_session
from ingestion.checkpoint import CheckpointStore, build_checkpoint_store


async def get_db() -> AsyncIterator[AsyncSession]:
    async for session in get_session():
        yield session


def get_checkpoint_store(settings: Settings = Depends(get_settings)) -> CheckpointStore:
    return build_checkpoint_store(settings)
