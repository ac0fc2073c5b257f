"""Shared fixtures for the warehouse service test suite."""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from factories import order_event_body, restock_event_body
from warehouse.event_store import EventStoreClient
from warehouse.events import (
    IncomingOrderCreatedEvent,
    IncomingOrderPaymentAcceptedEvent,
    IncomingOrderPaymentRejectedEvent,
    IncomingSkuRestockedEvent,
)
from warehouse.ledger import StockLedgerClient
from warehouse.queries import AllocationRepository
from warehouse.schema import create_schema

# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def ledger(session_factory) -> StockLedgerClient:
    return StockLedgerClient(session_factory)


@pytest.fixture
def event_store(session_factory) -> EventStoreClient:
    return EventStoreClient(session_factory)


@pytest.fixture
def repository(session_factory) -> AllocationRepository:
    return AllocationRepository(session_factory)


@pytest.fixture
def seed_stock(session_factory):
    """Insert a sku_stock row directly."""

    async def _seed(sku: str, units: int) -> None:
        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    text("""
                        INSERT INTO sku_stock (sku, units, created_at, updated_at)
                        VALUES (:sku, :units, '2024-01-01T00:00:00Z', '2024-01-01T00:00:00Z')
                    """),
                    {"sku": sku, "units": units},
                )

    return _seed


@pytest.fixture
def stock_units(session_factory):
    async def _units(sku: str) -> int | None:
        async with session_factory() as session:
            result = await session.execute(
                text("SELECT units FROM sku_stock WHERE sku = :sku"), {"sku": sku}
            )
            row = result.fetchone()
        return row.units if row else None

    return _units


@pytest.fixture
def allocation_status(session_factory):
    async def _status(sku: str, order_id: str) -> str | None:
        async with session_factory() as session:
            result = await session.execute(
                text("""
                    SELECT allocation_status FROM stock_allocations
                    WHERE sku = :sku AND order_id = :order_id
                """),
                {"sku": sku, "order_id": order_id},
            )
            row = result.fetchone()
        return row.allocation_status if row else None

    return _status


@pytest.fixture
def stored_events(session_factory):
    async def _events() -> list[tuple[str, str]]:
        async with session_factory() as session:
            result = await session.execute(
                text("SELECT aggregate_id, event_name FROM event_store ORDER BY created_at")
            )
            return [(row.aggregate_id, row.event_name) for row in result.fetchall()]

    return _events


# ---------------------------------------------------------------------------
# Raw events
# ---------------------------------------------------------------------------


@pytest.fixture
def order_created_event():
    def _build(**overrides) -> IncomingOrderCreatedEvent:
        body = order_event_body("ORDER_CREATED_EVENT", **overrides)
        return IncomingOrderCreatedEvent.validate_and_build(body).value

    return _build


@pytest.fixture
def payment_rejected_event():
    def _build(**overrides) -> IncomingOrderPaymentRejectedEvent:
        body = order_event_body("ORDER_PAYMENT_REJECTED_EVENT", **overrides)
        return IncomingOrderPaymentRejectedEvent.validate_and_build(body).value

    return _build


@pytest.fixture
def payment_accepted_event():
    def _build(**overrides) -> IncomingOrderPaymentAcceptedEvent:
        body = order_event_body("ORDER_PAYMENT_ACCEPTED_EVENT", **overrides)
        return IncomingOrderPaymentAcceptedEvent.validate_and_build(body).value

    return _build


@pytest.fixture
def sku_restocked_event():
    def _build(**overrides) -> IncomingSkuRestockedEvent:
        return IncomingSkuRestockedEvent.validate_and_build(restock_event_body(**overrides)).value

    return _build
