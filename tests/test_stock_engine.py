"""
Tests for idempotent invoice application.

Runs against an in-memory SQLite database so the unique idempotency key
and the atomic decrement are exercised for real.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app.models import InventoryItem, PosSalesLog
from app.pos.mapping import ProductMappingResolver, normalize_product_id
from app.pos.schemas import InvoiceData, InvoiceItem
from app.pos.stock import (
    SaleOutcome,
    StockDecrementEngine,
    line_quantity,
    parse_invoice_timestamp,
)
from tests.conftest import make_item, make_mapping, make_user


async def quantity_of(db, item_id):
    return await db.scalar(select(InventoryItem.quantity_grams).where(InventoryItem.id == item_id))


async def sales_log_count(db):
    return await db.scalar(select(func.count()).select_from(PosSalesLog))


async def only_log(db):
    result = await db.execute(select(PosSalesLog).execution_options(populate_existing=True))
    return result.scalar_one()


def invoice(invoice_id=1001, items=None, **kwargs):
    return InvoiceData.model_validate({
        "invoice_id": invoice_id,
        "invoice_number": kwargs.get("invoice_number", "RE-1001"),
        "invoice_timestamp": kwargs.get("invoice_timestamp", "2026-10-16T20:15:00+02:00"),
        "invoice_totalPrice": kwargs.get("invoice_totalPrice", "24.50"),
        "invoice_items": items if items is not None else [{"product_id": 42, "item_quantity": 3}],
    })


@pytest_asyncio.fixture
async def seeded(db):
    await make_user(db)
    await make_item(db, "inv-abc", quantity="50")
    await make_mapping(db, "42", "inv-abc")
    return db


# =============================================================================
# Helpers
# =============================================================================

class TestHelpers:

    @pytest.mark.parametrize("raw,expected", [
        (42, "42"),
        ("42", "42"),
        (" 42 ", "42"),
        (None, None),
        ("", None),
    ])
    def test_normalize_product_id(self, raw, expected):
        assert normalize_product_id(raw) == expected

    @pytest.mark.parametrize("quantity,expected", [
        (None, Decimal("1")),
        (0, Decimal("1")),
        (3, Decimal("3")),
        ("2.5", Decimal("2.5")),
        ("", Decimal("1")),
        ("  ", Decimal("1")),
        ("n/a", Decimal("1")),
        ("NaN", Decimal("1")),
        (True, Decimal("1")),
    ])
    def test_line_quantity_defaults_to_one(self, quantity, expected):
        assert line_quantity(InvoiceItem(product_id=1, item_quantity=quantity)) == expected

    def test_parse_timestamp_keeps_offset(self):
        parsed = parse_invoice_timestamp("2026-10-16T20:15:00+02:00")

        assert parsed.utcoffset().total_seconds() == 7200

    def test_parse_timestamp_falls_back_to_now(self):
        assert parse_invoice_timestamp("yesterday-ish").tzinfo is not None
        assert parse_invoice_timestamp(None).tzinfo is not None

    def test_parse_timestamp_accepts_epoch_seconds(self):
        parsed = parse_invoice_timestamp(1760638500)

        assert parsed == datetime(2025, 10, 16, 18, 15, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [{"at": "noon"}, [2026], 10**20])
    def test_parse_timestamp_falls_back_for_other_types(self, value):
        before = datetime.now(timezone.utc)

        assert parse_invoice_timestamp(value) >= before


# =============================================================================
# Engine
# =============================================================================

class TestApplyInvoice:

    @pytest.mark.asyncio
    async def test_mapped_line_decrements_inventory(self, seeded):
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")

        result = await StockDecrementEngine(db).apply_invoice("user-1", invoice(), resolver)

        assert result.outcome == SaleOutcome.APPLIED
        assert result.invoice_id == "1001"
        assert await quantity_of(db, "inv-abc") == Decimal("47")

        log = await only_log(db)
        assert log.external_invoice_id == "1001"
        assert log.invoice_number == "RE-1001"
        assert log.processed is True

    @pytest.mark.asyncio
    async def test_redelivery_is_a_no_op(self, seeded):
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")
        engine = StockDecrementEngine(db)

        first = await engine.apply_invoice("user-1", invoice(), resolver)
        second = await engine.apply_invoice("user-1", invoice(), resolver)

        assert first.outcome == SaleOutcome.APPLIED
        assert second.outcome == SaleOutcome.DUPLICATE
        assert await sales_log_count(db) == 1
        assert await quantity_of(db, "inv-abc") == Decimal("47")

    @pytest.mark.asyncio
    async def test_same_invoice_id_for_other_tenant_is_independent(self, seeded):
        db = seeded
        await make_user(db, user_id="user-2", email="other@lounge.test")
        await make_item(db, "inv-xyz", user_id="user-2", quantity="20")
        await make_mapping(db, "42", "inv-xyz", user_id="user-2")
        engine = StockDecrementEngine(db)

        await engine.apply_invoice("user-1", invoice(), await ProductMappingResolver.load(db, "user-1"))
        other = await engine.apply_invoice("user-2", invoice(), await ProductMappingResolver.load(db, "user-2"))

        assert other.outcome == SaleOutcome.APPLIED
        assert await sales_log_count(db) == 2
        assert await quantity_of(db, "inv-xyz") == Decimal("17")

    @pytest.mark.asyncio
    async def test_unmapped_invoice_leaves_no_trace(self, seeded):
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")

        result = await StockDecrementEngine(db).apply_invoice(
            "user-1", invoice(items=[{"product_id": 999, "item_quantity": 2}]), resolver
        )

        assert result.outcome == SaleOutcome.NO_MAPPED_ITEMS
        assert await sales_log_count(db) == 0
        assert await quantity_of(db, "inv-abc") == Decimal("50")

    @pytest.mark.asyncio
    async def test_mixed_invoice_applies_only_mapped_lines(self, seeded):
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")

        result = await StockDecrementEngine(db).apply_invoice(
            "user-1",
            invoice(items=[
                {"product_id": 999, "item_quantity": 5},
                {"product_id": "42", "item_quantity": 2},
            ]),
            resolver,
        )

        assert result.outcome == SaleOutcome.APPLIED
        assert [line.inventory_item_id for line in result.decremented] == ["inv-abc"]
        assert await quantity_of(db, "inv-abc") == Decimal("48")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("line", [{"product_id": 42}, {"product_id": 42, "item_quantity": 0}])
    async def test_missing_or_zero_quantity_counts_as_one(self, seeded, line):
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")

        await StockDecrementEngine(db).apply_invoice("user-1", invoice(items=[line]), resolver)

        assert await quantity_of(db, "inv-abc") == Decimal("49")

    @pytest.mark.asyncio
    async def test_negative_quantity_is_skipped(self, seeded):
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")

        result = await StockDecrementEngine(db).apply_invoice(
            "user-1", invoice(items=[{"product_id": 42, "item_quantity": -2}]), resolver
        )

        assert result.outcome == SaleOutcome.NO_MAPPED_ITEMS
        assert await quantity_of(db, "inv-abc") == Decimal("50")

    @pytest.mark.asyncio
    async def test_missing_invoice_id_is_dropped(self, seeded):
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")

        result = await StockDecrementEngine(db).apply_invoice("user-1", invoice(invoice_id=None), resolver)

        assert result.outcome == SaleOutcome.MISSING_INVOICE_ID
        assert await sales_log_count(db) == 0
        assert await quantity_of(db, "inv-abc") == Decimal("50")

    @pytest.mark.asyncio
    async def test_quantity_may_go_negative(self, seeded):
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")

        await StockDecrementEngine(db).apply_invoice(
            "user-1", invoice(items=[{"product_id": 42, "item_quantity": 80}]), resolver
        )

        assert await quantity_of(db, "inv-abc") == Decimal("-30")

    @pytest.mark.asyncio
    async def test_missing_inventory_row_leaves_log_unprocessed(self, seeded):
        """A mapping whose inventory row is gone fails that line only."""
        db = seeded
        await make_item(db, "inv-def", quantity="10")
        await make_mapping(db, "43", "inv-gone")
        resolver = await ProductMappingResolver.load(db, "user-1")

        result = await StockDecrementEngine(db).apply_invoice(
            "user-1",
            invoice(items=[
                {"product_id": 42, "item_quantity": 1},
                {"product_id": 43, "item_quantity": 1},
            ]),
            resolver,
        )

        assert result.outcome == SaleOutcome.PARTIAL
        assert [line.inventory_item_id for line in result.failed] == ["inv-gone"]
        assert await quantity_of(db, "inv-abc") == Decimal("49")
        log = await only_log(db)
        assert log.processed is False

    @pytest.mark.asyncio
    async def test_raw_items_are_stored_verbatim(self, seeded):
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")
        raw = [{"product_id": 42, "item_quantity": 3, "item_name": "Al Fakher Mint", "item_vat": 19}]

        await StockDecrementEngine(db).apply_invoice(
            "user-1", invoice(items=raw), resolver
        )

        log = await only_log(db)
        assert log.items == raw

    @pytest.mark.asyncio
    async def test_blank_quantity_on_mapped_line_counts_as_one(self, seeded):
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")

        result = await StockDecrementEngine(db).apply_invoice(
            "user-1", invoice(items=[{"product_id": 42, "item_quantity": ""}]), resolver
        )

        assert result.outcome == SaleOutcome.APPLIED
        assert await quantity_of(db, "inv-abc") == Decimal("49")

    @pytest.mark.asyncio
    async def test_malformed_unmapped_line_does_not_block_mapped_line(self, seeded):
        """Food and drink lines with odd data are ignored like any unmapped line."""
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")

        result = await StockDecrementEngine(db).apply_invoice(
            "user-1",
            invoice(items=[
                {"product_id": 42, "item_quantity": 3},
                {"product_id": 99, "item_quantity": "n/a", "item_price": "free"},
                "not-a-line",
                {"product_id": {"nested": True}, "item_quantity": 1},
            ]),
            resolver,
        )

        assert result.outcome == SaleOutcome.APPLIED
        assert await quantity_of(db, "inv-abc") == Decimal("47")
        log = await only_log(db)
        assert log.processed is True
        assert len(log.items) == 4

    @pytest.mark.asyncio
    async def test_numeric_timestamp_and_odd_total_are_recorded(self, seeded):
        db = seeded
        resolver = await ProductMappingResolver.load(db, "user-1")

        result = await StockDecrementEngine(db).apply_invoice(
            "user-1",
            invoice(invoice_timestamp=1760638500, invoice_totalPrice="n/a"),
            resolver,
        )

        assert result.outcome == SaleOutcome.APPLIED
        log = await only_log(db)
        assert log.total_price == Decimal("0")
        assert log.invoice_timestamp.replace(tzinfo=timezone.utc) == datetime(
            2025, 10, 16, 18, 15, tzinfo=timezone.utc
        )


# =============================================================================
# Concurrent deliveries
# =============================================================================

@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed SQLite so each session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pos.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


class TestConcurrentDelivery:
    """Two deliveries of one invoice racing on separate connections."""

    @pytest.mark.asyncio
    async def test_same_invoice_applies_once(self, file_engine):
        session_factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
        async with session_factory() as setup:
            await make_user(setup)
            await make_item(setup, "inv-abc", quantity="50")
            await make_mapping(setup, "42", "inv-abc")

        async with session_factory() as first, session_factory() as second:
            engines = [StockDecrementEngine(first), StockDecrementEngine(second)]
            resolvers = [
                await ProductMappingResolver.load(first, "user-1"),
                await ProductMappingResolver.load(second, "user-1"),
            ]

            results = await asyncio.gather(*(
                engine.apply_invoice("user-1", invoice(), resolver)
                for engine, resolver in zip(engines, resolvers)
            ))

        assert sorted(r.outcome.value for r in results) == ["applied", "duplicate"]
        async with session_factory() as check:
            assert await sales_log_count(check) == 1
            assert await quantity_of(check, "inv-abc") == Decimal("47")
