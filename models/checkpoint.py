from sqlalchemy import Column, Integer, String, Enum, DateTime, Text, Index, BigInteger
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime, timezone
from models.base import Base, RunStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionCheckpointRow(Base):
    """
    Durable ingestion progress for one pipeline, when stored in the database.

    Purpose:
    - Resume a multi-week ingestion exactly where it stopped
    - Let `status` and the HTTP surface read progress without the run

    Design:
    - One row per pipeline name
    - checkpoint_data holds the full serialized IngestionCheckpoint
    - a few columns are denormalized for cheap queries
    """
    __tablename__ = "ingestion_checkpoints"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pipeline_name = Column(String(100), nullable=False)

    checkpoint_data = Column(JSONB, nullable=False)

    # Denormalized progress
    current_data_type = Column(String(50), nullable=True)
    current_page = Column(Integer, nullable=False, default=1)
    processed_items = Column(BigInteger, nullable=False, default=0)
    status = Column(Enum(RunStatus), default=RunStatus.PENDING, nullable=False)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_ingestion_checkpoint_pipeline", "pipeline_name", unique=True),
    )
