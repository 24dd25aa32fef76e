"""Database models for the POS (ready2order) integration."""
from enum import Enum

from sqlalchemy import (
    Column, String, DateTime, Text, ForeignKey, Boolean, Numeric, UniqueConstraint,
)
from sqlalchemy.sql import func

from app.database import Base
from app.models.base import generate_id, JSONType


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class MappingSyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


class PosConnection(Base):
    """POS connection - one per tenant, stores the encrypted account token."""

    __tablename__ = "pos_connections"

    id = Column(String, primary_key=True, default=lambda: generate_id("pos"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    # AES-256-GCM ciphertext (hex, tag appended) and nonce (hex)
    encrypted_token = Column(Text, nullable=False)
    token_iv = Column(String, nullable=False)

    status = Column(String, nullable=False, default=ConnectionStatus.CONNECTED.value)
    webhook_registered = Column(Boolean, nullable=False, default=False)

    # Provider-side identifiers, both optional
    provider_account_id = Column(String, nullable=True, index=True)
    product_group_id = Column(String, nullable=True)

    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PosProductMapping(Base):
    """Maps a provider product to an internal inventory item."""

    __tablename__ = "pos_product_mappings"
    __table_args__ = (
        UniqueConstraint("user_id", "external_product_id", name="uq_pos_product_mappings_user_product"),
    )

    id = Column(String, primary_key=True, default=lambda: generate_id("posmap"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_item_id = Column(String, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False)

    external_product_id = Column(String, nullable=False)
    external_product_name = Column(String, nullable=True)

    sync_status = Column(String, nullable=False, default=MappingSyncStatus.PENDING.value)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class PosSalesLog(Base):
    """Append-only record of each processed provider invoice.

    The (user_id, external_invoice_id) pair is the idempotency key for
    webhook deliveries.
    """

    __tablename__ = "pos_sales_logs"
    __table_args__ = (
        UniqueConstraint("user_id", "external_invoice_id", name="uq_pos_sales_logs_user_invoice"),
    )

    id = Column(String, primary_key=True, default=lambda: generate_id("possale"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    external_invoice_id = Column(String, nullable=False)
    invoice_number = Column(String, nullable=False, default="")
    invoice_timestamp = Column(DateTime(timezone=True), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False, default=0)
    items = Column(JSONType, nullable=False, default=list)

    # Flipped once every mapped line has been decremented
    processed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
