"""
Transform FDC source records into normalized ingredient rows
"""

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from schemas.fdc import SourceRecord
from schemas.ingredient import MAX_NAME_LENGTH, MAX_TAGS, NormalizedIngredient
from ingestion.transformers.tables import (
    ALLERGEN_KEYWORDS,
    CATEGORY_DIETARY_FLAGS,
    CATEGORY_MAP,
    DATA_TYPE_DEFAULT_CATEGORIES,
    DEFAULT_CATEGORY,
    NUTRIENT_NUMBER_TABLE,
    WHOLE_FOOD_DATA_TYPES,
    NutrientCodeTable,
)

logger = logging.getLogger(__name__)

ELLIPSIS = "..."

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def slugify(value: str) -> str:
    """Lowercase, collapse every non-alphanumeric run into a single hyphen"""
    return _SLUG_RE.sub("-", value.lower()).strip("-")


def truncate_name(description: str, limit: int = MAX_NAME_LENGTH) -> str:
    if len(description) <= limit:
        return description
    return description[: limit - len(ELLIPSIS)] + ELLIPSIS


def _compile_keywords(
    rules: Tuple[Tuple[str, Tuple[str, ...]], ...]
) -> List[Tuple[str, "re.Pattern[str]"]]:
    compiled = []
    for flag, keywords in rules:
        alternatives = "|".join(re.escape(k) for k in keywords)
        compiled.append((flag, re.compile(rf"\b(?:{alternatives})\b")))
    return compiled


class IngredientTransformer:
    """
    Map one SourceRecord to one NormalizedIngredient.

    Pure apart from the sync timestamp, which comes from the injected clock.
    Total: missing optional source fields become absent output fields, never
    errors.

    Handles:
    - Name truncation
    - Nutrient extraction through a versioned code table
    - Category mapping with data-type fallback
    - Dietary flags, tags and searchable text
    """

    def __init__(
        self,
        nutrient_table: NutrientCodeTable = NUTRIENT_NUMBER_TABLE,
        category_map: Mapping[str, str] = CATEGORY_MAP,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.nutrient_table = nutrient_table
        self.category_map = category_map
        self.clock = clock
        self._allergen_patterns = _compile_keywords(ALLERGEN_KEYWORDS)

    def transform(self, record: SourceRecord) -> NormalizedIngredient:
        name = truncate_name(record.description)
        category = self.map_category(record.food_category, record.data_type)
        tags = self.generate_tags(record, category)

        return NormalizedIngredient(
            fdc_id=record.fdc_id,
            name=name,
            category=category,
            usda_data_type=record.data_type,
            tags=tags,
            dietary_flags=self.generate_dietary_flags(record, category),
            searchable_text=self.build_searchable_text(name, category, record, tags),
            usda_sync_date=self.clock(),
            **self.extract_nutrients(record),
        )

    def extract_nutrients(self, record: SourceRecord) -> Dict[str, float]:
        """Unknown codes are ignored; a repeated code keeps its last amount"""
        nutrition = {}
        for nutrient in record.nutrients:
            field = self.nutrient_table.codes.get(nutrient.code)
            if field is not None:
                nutrition[field] = nutrient.amount
        return nutrition

    def map_category(self, food_category: Optional[str], data_type: Optional[str]) -> str:
        if food_category:
            return self.category_map.get(food_category.lower(), food_category)
        return DATA_TYPE_DEFAULT_CATEGORIES.get(data_type or "", DEFAULT_CATEGORY)

    def generate_dietary_flags(self, record: SourceRecord, category: str) -> List[str]:
        """Best-effort annotations, not authoritative dietary claims"""
        flags: List[str] = []

        if record.data_type in WHOLE_FOOD_DATA_TYPES:
            haystack = f"{category} {record.food_category or ''}".lower()
            for keyword, category_flags in CATEGORY_DIETARY_FLAGS:
                if keyword in haystack:
                    flags.extend(category_flags)
                    break

        if record.ingredients:
            ingredients = record.ingredients.lower()
            for flag, pattern in self._allergen_patterns:
                if pattern.search(ingredients):
                    flags.append(flag)

        return _dedupe(flags)

    def generate_tags(self, record: SourceRecord, category: str) -> List[str]:
        candidates: List[str] = []
        if record.data_type:
            candidates.append(record.data_type)
        if record.food_category:
            candidates.append(record.food_category)
        candidates.append(category)
        if record.brand_owner:
            candidates.extend(["branded", record.brand_owner])
        if record.scientific_name:
            candidates.extend(record.scientific_name.split())

        slugs = [slugify(c) for c in candidates]
        return _dedupe([s for s in slugs if s])[:MAX_TAGS]

    @staticmethod
    def build_searchable_text(
        name: str,
        category: str,
        record: SourceRecord,
        tags: List[str],
    ) -> str:
        parts = [
            name,
            category,
            record.brand_owner or "",
            record.scientific_name or "",
            record.additional_descriptions or "",
            " ".join(tags),
        ]
        return " ".join(p for p in parts if p).lower()


def _dedupe(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result
