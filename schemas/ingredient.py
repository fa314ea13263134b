"""
Pydantic schema for the pipeline's output unit
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


MAX_NAME_LENGTH = 500
MAX_TAGS = 10

NUTRIENT_FIELDS = (
    "calories_per_100g",
    "protein_g_per_100g",
    "carbs_g_per_100g",
    "fat_g_per_100g",
    "fiber_g_per_100g",
    "sugar_g_per_100g",
    "sodium_mg_per_100g",
    "calcium_mg_per_100g",
    "iron_mg_per_100g",
    "vitamin_c_mg_per_100g",
)


class NormalizedIngredient(BaseModel):
    """
    One ingredient row, derived deterministically from one SourceRecord.

    fdc_id is the upsert key: re-ingesting the same food updates its row.
    Nutrient fields are None when the source lacks that nutrient code.
    """

    fdc_id: int
    name: str = Field(..., max_length=MAX_NAME_LENGTH)
    category: str
    usda_data_type: Optional[str] = None

    calories_per_100g: Optional[float] = None
    protein_g_per_100g: Optional[float] = None
    carbs_g_per_100g: Optional[float] = None
    fat_g_per_100g: Optional[float] = None
    fiber_g_per_100g: Optional[float] = None
    sugar_g_per_100g: Optional[float] = None
    sodium_mg_per_100g: Optional[float] = None
    calcium_mg_per_100g: Optional[float] = None
    iron_mg_per_100g: Optional[float] = None
    vitamin_c_mg_per_100g: Optional[float] = None

    tags: List[str] = Field(default_factory=list, max_length=MAX_TAGS)
    dietary_flags: List[str] = Field(default_factory=list)
    searchable_text: str = ""
    usda_sync_date: datetime

    @field_validator("searchable_text")
    @classmethod
    def lowercase_searchable_text(cls, v):
        return v.lower()

    def nutrients(self) -> Dict[str, float]:
        """Only the nutrient fields the source actually supplied"""
        return {
            field: getattr(self, field)
            for field in NUTRIENT_FIELDS
            if getattr(self, field) is not None
        }

    def to_row(self) -> Dict[str, Any]:
        """Column mapping for the ingredients table"""
        return self.model_dump()
