"""Pydantic schemas for the POS integration."""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# PROVIDER PAYLOADS
# ============================================================================

class GrantAccessResponse(BaseModel):
    """Response of the provider's grant-access request."""
    model_config = ConfigDict(extra="ignore")

    grantAccessUri: str
    grantAccessToken: Optional[str] = None


class InvoiceItem(BaseModel):
    """One line of a provider invoice.

    Validated line by line; quantity and price are kept raw because the
    provider does not populate them reliably.
    """
    model_config = ConfigDict(extra="allow")

    product_id: Optional[Union[int, str]] = None
    item_name: Optional[str] = None
    item_quantity: Any = None
    item_price: Any = None


class InvoiceData(BaseModel):
    """The ``data`` object of an ``invoice.created`` event."""
    model_config = ConfigDict(extra="allow")

    invoice_id: Optional[Union[int, str]] = None
    invoice_number: Optional[Union[int, str]] = None
    invoice_timestamp: Any = None
    invoice_totalPrice: Any = None
    # Raw line objects, see InvoiceItem
    invoice_items: List[Any] = Field(default_factory=list)


class WebhookEvent(BaseModel):
    """Envelope of every provider webhook."""
    model_config = ConfigDict(extra="allow")

    event: str = Field(min_length=1)
    accountId: Union[str, int]
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None


# ============================================================================
# API RESPONSES
# ============================================================================

class AuthorizeResponse(BaseModel):
    grantAccessUri: str


class DisconnectResponse(BaseModel):
    disconnected: bool = True


class WebhookAck(BaseModel):
    received: bool = True


class PosConnectionStatus(BaseModel):
    """Status of the tenant's POS connection."""
    is_connected: bool
    status: Optional[str] = None
    webhook_registered: bool = False
    provider_account_id: Optional[str] = None
    product_group_id: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    mapped_products: int = 0


class PosSyncResult(BaseModel):
    """Result of an inventory push sync."""
    synced: int
    errors: int
    total: int
    message: Optional[str] = None
