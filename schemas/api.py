"""
Pydantic schemas for progress reporting and the read-only HTTP surface
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Progress Schemas
# ============================================================================

class ProgressReport(BaseModel):
    """Throughput and ETA statistics derived from a checkpoint"""
    status: str
    processed_items: int
    total_items: int
    percent_complete: float = Field(..., ge=0, le=100)
    successful_inserts: int
    skipped_duplicates: int
    error_count: int
    recent_errors: List[str] = Field(default_factory=list)

    current_data_type: Optional[str] = None
    current_page: int
    buffered_items: int = 0

    start_time: datetime
    last_update_time: datetime
    elapsed_hours: float
    items_per_hour: Optional[float] = None
    estimated_completion: Optional[datetime] = None
    hours_remaining: Optional[float] = None
    completed_at: Optional[datetime] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "running",
                "processed_items": 12400,
                "total_items": 617000,
                "percent_complete": 2.01,
                "successful_inserts": 12350,
                "skipped_duplicates": 50,
                "error_count": 2,
                "recent_errors": ["Error processing Branded page 41: TransientNetworkError"],
                "current_data_type": "Branded",
                "current_page": 43,
                "buffered_items": 12,
                "start_time": "2024-01-15T10:00:00Z",
                "last_update_time": "2024-01-16T08:30:00Z",
                "elapsed_hours": 22.5,
                "items_per_hour": 551.1,
                "estimated_completion": "2024-03-01T09:00:00Z",
                "hours_remaining": 1097.0
            }
        }
    }


class StatusResponse(BaseModel):
    """Response of GET /status"""
    pipeline_name: str
    checkpoint_exists: bool
    progress: Optional[ProgressReport] = None


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=_utcnow)
    database_connected: bool
    checkpoint_readable: bool
    last_checkpoint_update: Optional[datetime] = None

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif not self.checkpoint_readable:
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
