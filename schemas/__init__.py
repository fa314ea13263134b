"""
Pydantic schemas for data validation and serialization.

Schemas:
    fdc: Source records as returned by USDA FoodData Central
    ingredient: NormalizedIngredient, the pipeline's output unit
    checkpoint: IngestionCheckpoint, the durable progress record
    api: ProgressReport and HTTP response models

Usage:
    from schemas.fdc import SourceRecord
    from schemas.ingredient import NormalizedIngredient
    from schemas.checkpoint import IngestionCheckpoint
    from schemas.api import ProgressReport

Example:
    record = SourceRecord.from_payload(
        {"fdcId": 171705, "description": "Apples, raw", "dataType": "SR Legacy"}
    )
    assert record.fdc_id == 171705
    assert record.nutrients == []
"""

__all__ = [
    "SourceRecord",
    "NutrientAmount",
    "NormalizedIngredient",
    "IngestionCheckpoint",
    "ProgressReport",
    "StatusResponse",
    "HealthCheckResponse",
    "ErrorResponse",
]
