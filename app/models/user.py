"""User model.

Owned by the dashboard; only the columns the POS pipeline reads are declared here.
"""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func

from app.database import Base
from app.models.base import generate_id


class User(Base):
    """A tenant account (one lounge) using the platform."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: generate_id("user"))
    email = Column(String, unique=True, nullable=False, index=True)
    company_name = Column(String, nullable=True)

    # Subscription: "free" | "pro" | "multi" | "enterprise"
    subscription_tier = Column(String, nullable=False, default="free")
    subscription_expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
