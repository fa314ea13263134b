"""
Durable checkpoint storage.

Two backends share one contract:
- FileCheckpointStore: a JSON file replaced atomically on every save
- DatabaseCheckpointStore: one JSONB row per pipeline name

Absence of a checkpoint means "start fresh". Any read or write failure is a
CheckpointError, which is fatal for a run.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import Settings
from core.exceptions import CheckpointError
from models.checkpoint import IngestionCheckpointRow
from schemas.checkpoint import IngestionCheckpoint

logger = logging.getLogger(__name__)


class CheckpointStore(ABC):
    """Single-writer store for one pipeline's IngestionCheckpoint"""

    backend: str = "abstract"

    @abstractmethod
    async def load(self) -> Optional[IngestionCheckpoint]:
        """Return the persisted checkpoint, or None if there is none"""

    @abstractmethod
    async def save(self, checkpoint: IngestionCheckpoint) -> None:
        """Persist the full checkpoint; readers never observe a partial write"""

    @abstractmethod
    async def reset(self) -> bool:
        """Delete the checkpoint. Returns whether one existed."""

    async def exists(self) -> bool:
        return await self.load() is not None

    def _error(self, message: str, operation: str, exc: Exception) -> CheckpointError:
        return CheckpointError(
            message,
            context={"backend": self.backend, "operation": operation},
            original_exception=exc,
        )


class FileCheckpointStore(CheckpointStore):

    backend = "file"

    def __init__(self, path: str):
        self.path = Path(path)

    async def load(self) -> Optional[IngestionCheckpoint]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise self._error(f"Cannot read checkpoint file {self.path}", "read", e)

        try:
            return IngestionCheckpoint.model_validate_json(text)
        except ValidationError as e:
            raise self._error(f"Checkpoint file {self.path} is corrupt", "read", e)

    async def save(self, checkpoint: IngestionCheckpoint) -> None:
        directory = self.path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(checkpoint.model_dump_json(indent=2))
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise self._error(f"Cannot write checkpoint file {self.path}", "write", e)

        logger.debug(f"Checkpoint saved to {self.path}")

    async def reset(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise self._error(f"Cannot delete checkpoint file {self.path}", "delete", e)
        return True

    async def exists(self) -> bool:
        return self.path.exists()


class DatabaseCheckpointStore(CheckpointStore):

    backend = "database"

    def __init__(self, session_maker: async_sessionmaker, pipeline_name: str):
        self.session_maker = session_maker
        self.pipeline_name = pipeline_name

    async def load(self) -> Optional[IngestionCheckpoint]:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(IngestionCheckpointRow.checkpoint_data).where(
                        IngestionCheckpointRow.pipeline_name == self.pipeline_name
                    )
                )
                data = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._error(f"Cannot read checkpoint '{self.pipeline_name}'", "read", e)

        if data is None:
            return None
        try:
            return IngestionCheckpoint.model_validate(data)
        except ValidationError as e:
            raise self._error(f"Checkpoint '{self.pipeline_name}' is corrupt", "read", e)

    async def save(self, checkpoint: IngestionCheckpoint) -> None:
        values = {
            "pipeline_name": self.pipeline_name,
            "checkpoint_data": json.loads(checkpoint.model_dump_json()),
            "current_data_type": checkpoint.current_data_type,
            "current_page": checkpoint.current_page,
            "processed_items": checkpoint.processed_items,
            "status": checkpoint.status,
            "last_error": checkpoint.errors[-1] if checkpoint.errors else None,
        }
        stmt = insert(IngestionCheckpointRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["pipeline_name"],
            set_={
                **{k: stmt.excluded[k] for k in values if k != "pipeline_name"},
                "updated_at": checkpoint.last_update_time,
            },
        )
        try:
            async with self.session_maker() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise self._error(f"Cannot write checkpoint '{self.pipeline_name}'", "write", e)

        logger.debug(f"Checkpoint '{self.pipeline_name}' saved")

    async def reset(self) -> bool:
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    delete(IngestionCheckpointRow).where(
                        IngestionCheckpointRow.pipeline_name == self.pipeline_name
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise self._error(f"Cannot delete checkpoint '{self.pipeline_name}'", "delete", e)
        return result.rowcount > 0


def build_checkpoint_store(
    settings: Settings,
    session_maker: Optional[async_sessionmaker] = None,
) -> CheckpointStore:
    """Pick the backend named by CHECKPOINT_BACKEND"""
    backend = settings.CHECKPOINT_BACKEND.lower()
    if backend == "file":
        return FileCheckpointStore(settings.CHECKPOINT_PATH)
    if backend == "database":
        if session_maker is None:
            from core.database import async_session_maker
            session_maker = async_session_maker
        return DatabaseCheckpointStore(session_maker, settings.PIPELINE_NAME)
    raise ValueError(f"Unknown checkpoint backend: {settings.CHECKPOINT_BACKEND}")
