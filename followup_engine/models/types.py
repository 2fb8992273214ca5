"""
Column helpers shared by the models.
"""
from sqlalchemy import Column, JSON
from sqlalchemy.dialects.postgresql import JSONB


def json_column() -> Column:
    """JSONB on PostgreSQL, generic JSON elsewhere. Each table needs its own Column."""
    return Column(JSON().with_variant(JSONB(), "postgresql"))
