"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from datetime import timezone

from sqlalchemy import JSON, DateTime, Uuid
from sqlalchemy.types import TypeDecorator

# Use JSON instead of JSONB for cross-database compatibility
JSONType = JSON

# UUID type that works with both databases (native on PostgreSQL, CHAR(32) on SQLite)
UUIDType = Uuid


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored in UTC.

    SQLite drops tzinfo on round trip; values read back are re-tagged as UTC
    so comparisons against aware datetimes keep working on every backend.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
