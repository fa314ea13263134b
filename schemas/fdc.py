"""
Pydantic schemas for USDA FoodData Central source records
"""

import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NutrientAmount(BaseModel):
    """One (nutrient_code, amount) pair of a source food"""
    model_config = ConfigDict(frozen=True)

    code: int
    amount: float


class SourceRecord(BaseModel):
    """
    One food as returned by the provider.

    Immutable once fetched. Nutrient codes are extracted with whichever code
    field the active nutrient table is keyed by ("number" -> 208/203/...,
    "id" -> 1008/1003/...); the two encodings are never mixed in one record.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    fdc_id: int = Field(..., alias="fdcId")
    description: str = ""
    data_type: Optional[str] = Field(None, alias="dataType")
    food_category: Optional[str] = Field(None, alias="foodCategory")
    brand_owner: Optional[str] = Field(None, alias="brandOwner")
    ingredients: Optional[str] = None
    serving_size: Optional[float] = Field(None, alias="servingSize")
    serving_size_unit: Optional[str] = Field(None, alias="servingSizeUnit")
    scientific_name: Optional[str] = Field(None, alias="scientificName")
    additional_descriptions: Optional[str] = Field(None, alias="additionalDescriptions")
    nutrients: List[NutrientAmount] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def clean_description(cls, v):
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("food_category", mode="before")
    @classmethod
    def flatten_food_category(cls, v):
        """Detail payloads nest the category as {"description": ...}"""
        if isinstance(v, dict):
            v = v.get("description")
        if isinstance(v, str):
            v = v.strip()
        return v or None

    @field_validator(
        "data_type", "brand_owner", "ingredients", "serving_size_unit",
        "scientific_name", "additional_descriptions",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
        return v or None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], code_field: str = "number") -> "SourceRecord":
        """
        Build a record from a provider JSON object.

        Args:
            payload: One element of a `foods` array, or a detail response
            code_field: "number" or "id", the key the nutrient table uses
        """
        data = dict(payload)
        if not data.get("foodCategory") and data.get("brandedFoodCategory"):
            data["foodCategory"] = data["brandedFoodCategory"]
        nutrients = extract_nutrient_amounts(data.pop("foodNutrients", None) or [], code_field)
        data.pop("nutrients", None)
        return cls.model_validate({**data, "nutrients": nutrients})


def extract_nutrient_amounts(entries: List[Dict[str, Any]], code_field: str) -> List[NutrientAmount]:
    """
    Normalize the three nutrient shapes the provider returns:

    - detail:   {"nutrient": {"id": 1008, "number": "208"}, "amount": 52.0}
    - search:   {"nutrientId": 1008, "nutrientNumber": "208", "value": 52.0}
    - abridged: {"number": "208", "amount": 52.0}
    """
    if code_field not in ("number", "id"):
        raise ValueError(f"Unknown nutrient code field: {code_field}")

    amounts = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        nested = entry.get("nutrient") if isinstance(entry.get("nutrient"), dict) else {}

        if code_field == "number":
            raw_code = nested.get("number", entry.get("nutrientNumber", entry.get("number")))
        else:
            raw_code = nested.get("id", entry.get("nutrientId"))
        raw_amount = entry.get("amount", entry.get("value"))

        code = _parse_int(raw_code)
        amount = _parse_float(raw_amount)
        if code is None or amount is None:
            continue
        amounts.append(NutrientAmount(code=code, amount=amount))
    return amounts


def _parse_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (ValueError, TypeError, OverflowError):
        return None


def _parse_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        amount = float(value)
    except (ValueError, TypeError, OverflowError):
        return None
    return amount if math.isfinite(amount) else None
