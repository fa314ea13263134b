from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class FDCDataType(str, enum.Enum):
    """USDA FoodData Central data types (ingestion partitions)"""
    FOUNDATION = "Foundation"
    SR_LEGACY = "SR Legacy"
    SURVEY = "Survey (FNDDS)"
    BRANDED = "Branded"


class RunStatus(str, enum.Enum):
    """Outcome of the last ingestion run recorded on a checkpoint"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
