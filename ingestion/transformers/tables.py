"""
Reference tables for transforming FDC foods into ingredient rows.

Everything provider-specific lives here as data, so a provider or API
version change is a table edit rather than a code change.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Tuple


@dataclass(frozen=True)
class NutrientCodeTable:
    """
    Maps provider nutrient codes to ingredient nutrient fields.

    source_field names the nutrient attribute the codes refer to: "number"
    for the legacy SR nutrient numbers (208, 203, ...) and "id" for the FDC
    nutrient ids (1008, 1003, ...).
    """
    name: str
    source_field: str
    codes: Mapping[int, str]


NUTRIENT_NUMBER_TABLE = NutrientCodeTable(
    name="nutrient_number",
    source_field="number",
    codes=MappingProxyType({
        208: "calories_per_100g",
        203: "protein_g_per_100g",
        205: "carbs_g_per_100g",
        204: "fat_g_per_100g",
        291: "fiber_g_per_100g",
        269: "sugar_g_per_100g",
        307: "sodium_mg_per_100g",
        301: "calcium_mg_per_100g",
        303: "iron_mg_per_100g",
        401: "vitamin_c_mg_per_100g",
    }),
)

NUTRIENT_ID_TABLE = NutrientCodeTable(
    name="nutrient_id",
    source_field="id",
    codes=MappingProxyType({
        1008: "calories_per_100g",
        1003: "protein_g_per_100g",
        1005: "carbs_g_per_100g",
        1004: "fat_g_per_100g",
        1079: "fiber_g_per_100g",
        1063: "sugar_g_per_100g",
        1093: "sodium_mg_per_100g",
        1087: "calcium_mg_per_100g",
        1089: "iron_mg_per_100g",
        1162: "vitamin_c_mg_per_100g",
    }),
)

NUTRIENT_CODE_TABLES: Mapping[str, NutrientCodeTable] = MappingProxyType({
    NUTRIENT_NUMBER_TABLE.name: NUTRIENT_NUMBER_TABLE,
    NUTRIENT_ID_TABLE.name: NUTRIENT_ID_TABLE,
})


def get_nutrient_table(name: str) -> NutrientCodeTable:
    try:
        return NUTRIENT_CODE_TABLES[name]
    except KeyError:
        raise ValueError(
            f"Unknown nutrient code table '{name}'. "
            f"Expected one of: {', '.join(NUTRIENT_CODE_TABLES)}"
        ) from None


# USDA food group (lowercased) -> application category
CATEGORY_MAP: Mapping[str, str] = MappingProxyType({
    "vegetables and vegetable products": "Vegetables",
    "fruits and fruit juices": "Fruits",
    "dairy and egg products": "Dairy",
    "poultry products": "Meat & Poultry",
    "beef products": "Meat & Poultry",
    "pork products": "Meat & Poultry",
    "lamb, veal, and game products": "Meat & Poultry",
    "sausages and luncheon meats": "Meat & Poultry",
    "finfish and shellfish products": "Seafood",
    "legumes and legume products": "Legumes",
    "nut and seed products": "Nuts & Seeds",
    "cereal grains and pasta": "Grains",
    "breakfast cereals": "Grains",
    "baked products": "Baked Goods",
    "fats and oils": "Oils",
    "spices and herbs": "Seasonings",
    "beverages": "Beverages",
    "sweets": "Desserts",
    "snacks": "Snacks",
    "soups, sauces, and gravies": "Condiments",
    "meals, entrees, and side dishes": "Prepared Foods",
    "fast foods": "Fast Food",
})

# Used when a food carries no food group at all
DATA_TYPE_DEFAULT_CATEGORIES: Mapping[str, str] = MappingProxyType({
    "Foundation": "Foundation Foods",
    "SR Legacy": "Standard Reference",
    "Survey (FNDDS)": "Survey Foods",
    "Branded": "Packaged Foods",
})
DEFAULT_CATEGORY = "Other"

# Data types describing whole, unprocessed foods
WHOLE_FOOD_DATA_TYPES = frozenset({"Foundation", "SR Legacy"})

# Category keyword -> flags, applied to whole foods only
CATEGORY_DIETARY_FLAGS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("vegetables", ("vegan", "vegetarian", "gluten-free")),
    ("fruits", ("vegan", "vegetarian", "gluten-free")),
    ("legumes", ("vegan", "vegetarian", "high-protein")),
    ("nuts", ("vegan", "vegetarian", "high-fat")),
)

# Ingredient-list keywords -> allergen flag; matched on word boundaries
ALLERGEN_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("contains-dairy", ("milk", "dairy", "cheese", "cream", "whey", "casein")),
    ("contains-gluten", ("wheat", "gluten", "barley", "rye")),
    ("contains-soy", ("soy", "soya", "soybean", "soybeans")),
    ("contains-eggs", ("egg", "eggs", "egg white", "egg yolk")),
)

# Estimated partition sizes, used when the count query fails
FALLBACK_ITEM_COUNTS: Mapping[str, int] = MappingProxyType({
    "Foundation": 2000,
    "SR Legacy": 8000,
    "Survey (FNDDS)": 7000,
    "Branded": 600000,
})
DEFAULT_FALLBACK_ITEM_COUNT = 1000
