"""Resolve provider product ids to internal inventory items."""
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import PosProductMapping


def normalize_product_id(product_id: Any) -> Optional[str]:
    """Provider ids arrive as ints or strings; mappings store strings."""
    if product_id is None or product_id == "":
        return None
    return str(product_id).strip() or None


class ProductMappingResolver:
    """
    In-memory view of one tenant's product mappings.

    Built once per webhook event. Unmapped products resolve to None; they are
    not an error, since a sale may mix mapped and unmapped items.
    """

    def __init__(self, mappings: Iterable[PosProductMapping]):
        self._by_product: Dict[str, PosProductMapping] = {
            m.external_product_id: m for m in mappings
        }

    @classmethod
    async def load(cls, db: AsyncSession, user_id: str) -> "ProductMappingResolver":
        result = await db.execute(
            select(PosProductMapping).where(PosProductMapping.user_id == user_id)
        )
        return cls(result.scalars().all())

    def resolve(self, product_id: Any) -> Optional[PosProductMapping]:
        key = normalize_product_id(product_id)
        if key is None:
            return None
        return self._by_product.get(key)
