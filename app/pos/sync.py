"""Push internal inventory levels to the POS provider."""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    ConnectionStatus,
    InventoryItem,
    MappingSyncStatus,
    PosConnection,
    PosProductMapping,
)
from app.pos.client import PosApiClient
from app.pos.crypto import CredentialCipher
from app.pos.errors import NotFoundError
from app.pos.schemas import PosSyncResult

logger = logging.getLogger(__name__)

DEFAULT_VAT_RATE = 19  # German standard VAT


@dataclass(frozen=True)
class _ItemSnapshot:
    id: str
    name: str
    stock: int
    price: Decimal


@dataclass(frozen=True)
class _MappingSnapshot:
    id: str
    external_product_id: str


def whole_grams(value: Optional[Decimal]) -> int:
    return int(Decimal(value or 0).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def price_per_gram(purchase_price: Optional[Decimal], package_grams: Optional[Decimal]) -> Decimal:
    if not purchase_price or not package_grams:
        return Decimal("0.00")
    return (Decimal(purchase_price) / Decimal(package_grams)).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )


class InventorySyncService:
    """
    Mirrors each inventory item to a provider product.

    For every item: update the mapped product, or adopt a provider product
    with the same name, or create a new stock-enabled product in the tenant's
    product group. Items are independent; a failure marks that mapping
    ``error`` and the run continues.
    """

    def __init__(self, db: AsyncSession, client: PosApiClient, cipher: CredentialCipher):
        self.db = db
        self.client = client
        self.cipher = cipher

    async def _get_connection(self, user_id: str) -> PosConnection:
        result = await self.db.execute(
            select(PosConnection).where(
                PosConnection.user_id == user_id,
                PosConnection.status == ConnectionStatus.CONNECTED.value,
            )
        )
        connection = result.scalar_one_or_none()
        if connection is None:
            raise NotFoundError("No active POS connection")
        return connection

    async def push_inventory(self, user_id: str) -> PosSyncResult:
        connection = await self._get_connection(user_id)
        account_token = self.cipher.decrypt(connection.encrypted_token, connection.token_iv)
        product_group_id = connection.product_group_id

        # Snapshot rows: a rollback below expires every loaded instance
        items = [
            _ItemSnapshot(
                id=i.id,
                name=i.display_name,
                stock=whole_grams(i.quantity_grams),
                price=price_per_gram(i.purchase_price, i.package_grams),
            )
            for i in (await self.db.execute(
                select(InventoryItem).where(InventoryItem.user_id == user_id)
            )).scalars().all()
        ]

        if not items:
            return PosSyncResult(synced=0, errors=0, total=0, message="No inventory to sync")

        mappings = {
            m.inventory_item_id: _MappingSnapshot(id=m.id, external_product_id=m.external_product_id)
            for m in (await self.db.execute(
                select(PosProductMapping).where(PosProductMapping.user_id == user_id)
            )).scalars().all()
        }

        provider_products = await self.client.get_products(account_token)
        products_by_name = {
            p.get("product_name"): p for p in provider_products if p.get("product_name")
        }

        synced = 0
        errors = 0
        for item in items:
            mapping = mappings.get(item.id)
            try:
                product_id = await self._push_item(
                    account_token, item, mapping, products_by_name.get(item.name), product_group_id
                )
                await self._record_mapping(user_id, item, mapping, product_id)
                synced += 1
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Failed to sync product {item.name} for user {user_id}: {e}")
                errors += 1
                if mapping:
                    await self._mark_mapping_error(mapping.id)

        await self.db.execute(
            update(PosConnection)
            .where(PosConnection.user_id == user_id)
            .values(last_sync_at=datetime.now(timezone.utc))
        )
        await self.db.commit()

        logger.info(f"POS sync for user {user_id}: {synced} synced, {errors} errors")
        return PosSyncResult(synced=synced, errors=errors, total=len(items))

    async def _push_item(
        self,
        account_token: str,
        item: _ItemSnapshot,
        mapping: Optional[_MappingSnapshot],
        existing: Optional[Dict[str, Any]],
        product_group_id: Optional[str],
    ) -> str:
        if mapping:
            updates: Dict[str, Any] = {"product_stock": item.stock, "product_name": item.name}
            if product_group_id:
                updates["product_group_id"] = product_group_id
            await self.client.update_product(account_token, mapping.external_product_id, updates)
            return mapping.external_product_id

        if existing:
            product_id = str(existing["product_id"])
            await self.client.update_product(account_token, product_id, {"product_stock": item.stock})
            return product_id

        product: Dict[str, Any] = {
            "product_name": item.name,
            "product_price": float(item.price),
            "product_vat": DEFAULT_VAT_RATE,
            "product_stockEnabled": True,
            "product_stock": item.stock,
        }
        if product_group_id:
            product["product_group_id"] = product_group_id
        created = await self.client.create_product(account_token, product)
        return str(created["product_id"])

    async def _record_mapping(
        self,
        user_id: str,
        item: _ItemSnapshot,
        mapping: Optional[_MappingSnapshot],
        product_id: str,
    ) -> None:
        now = datetime.now(timezone.utc)
        if mapping:
            await self.db.execute(
                update(PosProductMapping)
                .where(PosProductMapping.id == mapping.id)
                .values(
                    external_product_name=item.name,
                    sync_status=MappingSyncStatus.SYNCED.value,
                    last_synced_at=now,
                )
            )
        else:
            self.db.add(PosProductMapping(
                user_id=user_id,
                inventory_item_id=item.id,
                external_product_id=product_id,
                external_product_name=item.name,
                sync_status=MappingSyncStatus.SYNCED.value,
                last_synced_at=now,
            ))
        await self.db.commit()

    async def _mark_mapping_error(self, mapping_id: str) -> None:
        await self.db.execute(
            update(PosProductMapping)
            .where(PosProductMapping.id == mapping_id)
            .values(sync_status=MappingSyncStatus.ERROR.value)
        )
        await self.db.commit()
