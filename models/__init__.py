"""
SQLAlchemy ORM models for the ingestion pipeline.

Models:
    base: Base declarative class and shared enums (FDCDataType, RunStatus)
    ingredient: The ingredient store rows written by the loader
    checkpoint: Database-backed ingestion checkpoint (one row per pipeline)

Usage:
    from models.ingredient import Ingredient
    from models.checkpoint import IngestionCheckpointRow
    from models.base import Base, FDCDataType, RunStatus
"""

__all__ = [
    "Base",
    "FDCDataType",
    "RunStatus",
    "Ingredient",
    "IngestionCheckpointRow",
]
