"""
Declarative base shared by all models.
"""
from datetime import datetime, timezone
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Aware UTC timestamp for column defaults."""
    return datetime.now(timezone.utc)
