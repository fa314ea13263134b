from sqlalchemy import Column, String, BigInteger, Float, DateTime, Text, Index
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime, timezone
from models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Ingredient(Base):
    """
    Application ingredient store, as far as the ingestion pipeline writes it.

    Design:
    - fdc_id is the stable external key; re-ingesting a food updates its row
    - nutrient columns are per 100 g and nullable (absent in the source => NULL)
    - tags and dietary_flags are JSONB arrays
    - searchable_text is a lowercase blob used for substring search elsewhere

    Business columns owned by the surrounding application are not modelled.
    """
    __tablename__ = "ingredients"

    id = Column(BigInteger, primary_key=True, autoincrement=True)

    # Identity
    fdc_id = Column(BigInteger, nullable=False)
    name = Column(String(500), nullable=False, index=True)
    category = Column(String(200), nullable=True, index=True)
    usda_data_type = Column(String(50), nullable=True)

    # Nutrition per 100 g
    calories_per_100g = Column(Float, nullable=True)
    protein_g_per_100g = Column(Float, nullable=True)
    carbs_g_per_100g = Column(Float, nullable=True)
    fat_g_per_100g = Column(Float, nullable=True)
    fiber_g_per_100g = Column(Float, nullable=True)
    sugar_g_per_100g = Column(Float, nullable=True)
    sodium_mg_per_100g = Column(Float, nullable=True)
    calcium_mg_per_100g = Column(Float, nullable=True)
    iron_mg_per_100g = Column(Float, nullable=True)
    vitamin_c_mg_per_100g = Column(Float, nullable=True)

    # Derived annotations
    tags = Column(JSONB, nullable=True)
    dietary_flags = Column(JSONB, nullable=True)
    searchable_text = Column(Text, nullable=True)

    # Timestamps
    usda_sync_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_ingredients_fdc_id", "fdc_id", unique=True),
        Index("idx_ingredients_category_type", "category", "usda_data_type"),
    )
