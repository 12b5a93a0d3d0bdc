from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# PORTABLE COLUMN TYPES
# ============================================================================

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


# ============================================================================
# ENUMS
# ============================================================================

class ImportStatus(str, enum.Enum):
    """Bulk import progress of an automation"""
    PENDING = "pending"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"


class EntityType(str, enum.Enum):
    """Notion record types kept in the entity cache"""
    PAGE = "page"
    DATABASE = "database"
