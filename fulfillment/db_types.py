"""Database-agnostic type definitions for SQLAlchemy models.

Every model uses these so the same schema runs on PostgreSQL in production
and on SQLite in the test suite.
"""
from sqlalchemy import JSON, Uuid

# JSON instead of JSONB; JSONB is PostgreSQL-specific
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) elsewhere
UUIDType = Uuid
