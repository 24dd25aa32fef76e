"""
Consolidated models package.

IMPORTANT: Explicit imports only - no wildcards to prevent circular imports.
"""

# Base utilities
from app.models.base import generate_id

# User model
from app.models.user import User

# Inventory
from app.models.inventory import InventoryItem

# POS integration models
from app.models.pos import (
    ConnectionStatus,
    MappingSyncStatus,
    PosConnection,
    PosProductMapping,
    PosSalesLog,
)


__all__ = [
    # Utilities
    "generate_id",
    # User
    "User",
    # Inventory
    "InventoryItem",
    # POS
    "ConnectionStatus",
    "MappingSyncStatus",
    "PosConnection",
    "PosProductMapping",
    "PosSalesLog",
]
