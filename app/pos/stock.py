"""Idempotent application of provider invoices to inventory."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional

from dateutil import parser as date_parser
from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import InventoryItem, PosSalesLog, generate_id
from app.pos.mapping import ProductMappingResolver
from app.pos.schemas import InvoiceData, InvoiceItem

logger = logging.getLogger(__name__)

DEFAULT_QUANTITY = Decimal("1")


class SaleOutcome(str, Enum):
    APPLIED = "applied"
    PARTIAL = "partial"
    DUPLICATE = "duplicate"
    NO_MAPPED_ITEMS = "no_mapped_items"
    MISSING_INVOICE_ID = "missing_invoice_id"


@dataclass
class LineDecrement:
    product_id: str
    inventory_item_id: str
    quantity: Decimal


@dataclass
class SaleApplication:
    """What happened to one invoice."""
    outcome: SaleOutcome
    invoice_id: Optional[str] = None
    decremented: List[LineDecrement] = field(default_factory=list)
    failed: List[LineDecrement] = field(default_factory=list)


def line_quantity(item: InvoiceItem) -> Decimal:
    """Missing, blank, unparseable or zero quantities count as a single-unit sale."""
    raw = item.item_quantity
    if raw is None or isinstance(raw, bool):
        return DEFAULT_QUANTITY
    try:
        quantity = Decimal(str(raw).strip())
    except InvalidOperation:
        return DEFAULT_QUANTITY
    if not quantity.is_finite() or quantity == 0:
        return DEFAULT_QUANTITY
    return quantity


def parse_invoice_timestamp(value: Any) -> datetime:
    """ISO 8601 strings or epoch seconds; anything else falls back to now."""
    try:
        if isinstance(value, str) and value.strip():
            parsed = date_parser.isoparse(value.strip())
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        pass

    if value not in (None, ""):
        logger.warning(f"Unparseable invoice timestamp {value!r}, using receipt time")
    return datetime.now(timezone.utc)


def _to_decimal(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value)) if value is not None else Decimal("0")
    except InvalidOperation:
        return Decimal("0")
    return amount if amount.is_finite() else Decimal("0")


class StockDecrementEngine:
    """
    Applies an invoice's mapped lines to inventory exactly once.

    Order of operations:
    1. Keep only well-formed lines whose product resolves to an inventory
       item. Malformed lines are logged and skipped like unmapped ones.
    2. Record the sales log entry; the unique (tenant, invoice) key rejects
       redeliveries, which stop here without side effects.
    3. Decrement each line with a single ``UPDATE ... SET q = q - n``, each in
       its own transaction so one failure does not block the others.
    4. Mark the log entry processed when every line succeeded.

    A crash between steps 2 and 4 leaves the invoice recorded but partially
    applied; redelivery will not repair it. ``processed`` stays false for
    such entries.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def apply_invoice(
        self,
        user_id: str,
        invoice: InvoiceData,
        resolver: ProductMappingResolver,
    ) -> SaleApplication:
        if invoice.invoice_id is None or str(invoice.invoice_id).strip() == "":
            return SaleApplication(outcome=SaleOutcome.MISSING_INVOICE_ID)

        invoice_id = str(invoice.invoice_id).strip()
        lines = self._mapped_lines(invoice, resolver)
        if not lines:
            return SaleApplication(outcome=SaleOutcome.NO_MAPPED_ITEMS, invoice_id=invoice_id)

        sales_log_id = await self._record_sale(user_id, invoice_id, invoice)
        if sales_log_id is None:
            logger.info(f"Duplicate POS invoice {invoice_id} for user {user_id}, skipping")
            return SaleApplication(outcome=SaleOutcome.DUPLICATE, invoice_id=invoice_id)

        application = SaleApplication(outcome=SaleOutcome.APPLIED, invoice_id=invoice_id)
        for line in lines:
            if await self._decrement(user_id, line):
                application.decremented.append(line)
            else:
                application.failed.append(line)

        if application.failed:
            application.outcome = SaleOutcome.PARTIAL
            logger.error(
                f"POS invoice {invoice_id} for user {user_id} partially applied: "
                f"{len(application.failed)} of {len(lines)} lines failed"
            )
        else:
            await self._mark_processed(sales_log_id)

        return application

    def _mapped_lines(self, invoice: InvoiceData, resolver: ProductMappingResolver) -> List[LineDecrement]:
        lines = []
        for position, raw in enumerate(invoice.invoice_items):
            try:
                item = InvoiceItem.model_validate(raw)
            except ValidationError:
                logger.warning(f"Skipping malformed line {position} of POS invoice {invoice.invoice_id}")
                continue

            mapping = resolver.resolve(item.product_id)
            if mapping is None:
                continue

            quantity = line_quantity(item)
            if quantity < 0:
                # Negative lines belong to cancellations, which are not applied
                logger.warning(
                    f"Skipping negative quantity {quantity} for product {mapping.external_product_id}"
                )
                continue

            lines.append(LineDecrement(
                product_id=mapping.external_product_id,
                inventory_item_id=mapping.inventory_item_id,
                quantity=quantity,
            ))
        return lines

    async def _record_sale(
        self,
        user_id: str,
        invoice_id: str,
        invoice: InvoiceData,
    ) -> Optional[str]:
        """Insert the idempotency record. Returns its id, or None if it already exists."""

        sales_log_id = generate_id("possale")
        sales_log = PosSalesLog(
            id=sales_log_id,
            user_id=user_id,
            external_invoice_id=invoice_id,
            invoice_number=str(invoice.invoice_number) if invoice.invoice_number is not None else "",
            invoice_timestamp=parse_invoice_timestamp(invoice.invoice_timestamp),
            total_price=_to_decimal(invoice.invoice_totalPrice),
            items=list(invoice.invoice_items),
            processed=False,
        )
        self.db.add(sales_log)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return None
        return sales_log_id

    async def _decrement(self, user_id: str, line: LineDecrement) -> bool:
        try:
            result = await self.db.execute(
                update(InventoryItem)
                .where(
                    InventoryItem.id == line.inventory_item_id,
                    InventoryItem.user_id == user_id,
                )
                .values(quantity_grams=InventoryItem.quantity_grams - line.quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.rollback()
                logger.error(
                    f"Inventory item {line.inventory_item_id} not found for user {user_id} "
                    f"(product {line.product_id})"
                )
                return False
            await self.db.commit()
            return True
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Failed to decrement inventory {line.inventory_item_id} by {line.quantity}: {e}"
            )
            return False

    async def _mark_processed(self, sales_log_id: str) -> None:
        try:
            await self.db.execute(
                update(PosSalesLog)
                .where(PosSalesLog.id == sales_log_id)
                .values(processed=True)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to mark sales log {sales_log_id} processed: {e}")
