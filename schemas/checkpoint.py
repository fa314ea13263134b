"""
Ingestion checkpoint: the durable record of pipeline progress
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.base import RunStatus
from schemas.ingredient import NormalizedIngredient


class IngestionCheckpoint(BaseModel):
    """
    Progress of one pipeline instance, serialized as a flat JSON object.

    Position is (current_data_type_index, current_page, page_offset):
    page_offset counts records of the current page already processed, so a
    save taken mid-page resumes without re-processing them. batch_buffer
    holds processed records not yet flushed to the sink.

    Mutation goes through the methods below; the runner never writes fields
    directly.
    """

    data_types: List[str]
    total_items: int = 0
    processed_items: int = 0
    current_data_type: Optional[str] = None
    current_data_type_index: int = 0
    current_page: int = 1
    page_offset: int = 0
    page_size: int
    successful_inserts: int = 0
    skipped_duplicates: int = 0
    errors: List[str] = Field(default_factory=list)
    status: RunStatus = RunStatus.PENDING
    start_time: datetime
    last_update_time: datetime
    estimated_completion: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    batch_buffer: List[NormalizedIngredient] = Field(default_factory=list)

    @classmethod
    def new(
        cls,
        data_types: List[str],
        total_items: int,
        page_size: int,
        now: datetime,
    ) -> "IngestionCheckpoint":
        return cls(
            data_types=list(data_types),
            total_items=total_items,
            current_data_type=data_types[0] if data_types else None,
            page_size=page_size,
            start_time=now,
            last_update_time=now,
        )

    @property
    def is_exhausted(self) -> bool:
        """Every partition has returned an empty page"""
        return self.current_data_type_index >= len(self.data_types)

    @property
    def percent_complete(self) -> float:
        if self.total_items <= 0:
            return 0.0
        return min(100.0, self.processed_items / self.total_items * 100)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_processed(self, item: Optional[NormalizedIngredient]) -> None:
        """Count one attempted record; buffer it when it transformed cleanly"""
        self.processed_items += 1
        self.page_offset += 1
        if item is not None:
            self.batch_buffer.append(item)

    def take_buffer(self) -> List[NormalizedIngredient]:
        batch, self.batch_buffer = self.batch_buffer, []
        return batch

    def record_load(self, written: int, duplicates: int = 0) -> None:
        self.successful_inserts += written
        self.skipped_duplicates += duplicates

    def record_error(self, message: str, limit: int) -> None:
        """Append to the error log, dropping the oldest entries beyond `limit`"""
        self.errors.append(message)
        if limit > 0 and len(self.errors) > limit:
            del self.errors[: len(self.errors) - limit]

    def advance_page(self) -> None:
        self.current_page += 1
        self.page_offset = 0

    def advance_data_type(self) -> None:
        self.current_data_type_index += 1
        self.current_page = 1
        self.page_offset = 0
        if self.is_exhausted:
            self.current_data_type = None
        else:
            self.current_data_type = self.data_types[self.current_data_type_index]

    def mark(self, status: RunStatus, now: datetime) -> None:
        self.status = status
        if status == RunStatus.SUCCESS:
            self.completed_at = now

    def touch(self, now: datetime, estimated_completion: Optional[datetime]) -> None:
        self.last_update_time = now
        self.estimated_completion = estimated_completion
