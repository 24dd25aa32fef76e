"""Shared base utilities for data models."""
import secrets

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB


# JSONB on Postgres, plain JSON everywhere else
JSONType = JSON().with_variant(JSONB(), "postgresql")


def generate_id(prefix: str) -> str:
    """Generate a unique ID with a prefix."""
    return f"{prefix}_{secrets.token_hex(6)}"
