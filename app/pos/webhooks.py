"""Inbound provider webhook handling."""
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import ConnectionStatus, PosConnection
from app.pos.errors import BadRequestError, ServiceUnavailableError, UnauthorizedError
from app.pos.mapping import ProductMappingResolver
from app.pos.schemas import InvoiceData, WebhookEvent
from app.pos.stock import SaleApplication, StockDecrementEngine

logger = logging.getLogger(__name__)

INVOICE_CREATED = "invoice.created"


def verify_webhook_secret(configured: Optional[str], provided: Optional[str]) -> None:
    """
    Authenticate a webhook request by its shared secret.

    Raises:
        ServiceUnavailableError: no secret is configured on our side.
        UnauthorizedError: the request's secret is missing or wrong.
    """
    if not configured:
        logger.error("POS webhook received but POS_WEBHOOK_SECRET is not set")
        raise ServiceUnavailableError("Webhook endpoint is not configured")

    if not provided or not hmac.compare_digest(
        provided.encode("utf-8"), configured.encode("utf-8")
    ):
        logger.warning("Rejected POS webhook: missing or invalid secret")
        raise UnauthorizedError("Invalid webhook secret")


def parse_webhook_event(payload: Any) -> WebhookEvent:
    if not isinstance(payload, dict):
        raise BadRequestError("Invalid webhook payload")
    try:
        event = WebhookEvent.model_validate(payload)
    except ValidationError as exc:
        raise BadRequestError("Invalid webhook payload") from exc

    if str(event.accountId).strip() == "":
        raise BadRequestError("Invalid webhook payload")
    return event


@dataclass
class WebhookResult:
    """Internal summary of one delivery; the provider only ever sees an ack."""
    user_id: Optional[str] = None
    handled: bool = False
    sale: Optional[SaleApplication] = None


class WebhookProcessor:
    """Routes an authenticated event to its tenant and applies sales."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve_tenant(self, account_id: str) -> Optional[PosConnection]:
        """Find the connected tenant linked to a provider account."""
        result = await self.db.execute(
            select(PosConnection)
            .where(
                PosConnection.provider_account_id == account_id,
                PosConnection.status == ConnectionStatus.CONNECTED.value,
            )
            .order_by(PosConnection.created_at)
        )
        connections = result.scalars().all()
        if len(connections) > 1:
            logger.warning(
                f"POS account {account_id} is linked to {len(connections)} tenants, "
                f"routing to user {connections[0].user_id}"
            )
        return connections[0] if connections else None

    async def process(self, event: WebhookEvent) -> WebhookResult:
        account_id = str(event.accountId).strip()
        connection = await self.resolve_tenant(account_id)
        if connection is None:
            logger.info(f"POS webhook for unknown account {account_id}, acknowledged")
            return WebhookResult()

        result = WebhookResult(user_id=connection.user_id)
        if event.event != INVOICE_CREATED:
            logger.debug(f"Ignoring POS event {event.event} for user {connection.user_id}")
            return result

        try:
            invoice = InvoiceData.model_validate(event.data)
        except ValidationError:
            logger.warning(f"Malformed invoice data in POS webhook for user {connection.user_id}")
            return result

        user_id = connection.user_id
        resolver = await ProductMappingResolver.load(self.db, user_id)
        engine = StockDecrementEngine(self.db)
        result.sale = await engine.apply_invoice(user_id, invoice, resolver)
        result.handled = True
        logger.info(
            f"POS invoice {result.sale.invoice_id} for user {user_id}: {result.sale.outcome.value}"
        )
        return result
