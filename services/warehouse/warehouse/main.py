"""
Warehouse Service — FastAPI エントリーポイント

在庫割り当てサービス。イベント駆動 + 冪等な書き込み。

  HTTP:    入荷 API / SKU 一覧 API / 割り当て参照 / イベントストア参照
  Workers: Redis Streams から受信イベントを読み、ワーカーサービスへ渡す

起動: uvicorn warehouse.main:create_app --factory
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

import redis.asyncio as aioredis
from fastapi import Body, FastAPI, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from . import consumer, event_store, queries, schema, subscriber
from .commands import GetOrderAllocationCommand, ListSkusCommand
from .config import WarehouseSettings
from .event_store import EventStoreClient
from .events import SkuRestockedEvent
from .ledger import StockLedgerClient
from .queries import AllocationRepository
from .result import FailureKind, Result, is_failure, is_failure_of_kind
from .workers import (
    AllocateOrderStockWorkerService,
    CompleteOrderPaymentAcceptedWorkerService,
    DeallocateOrderPaymentRejectedWorkerService,
    RestockSkuWorkerService,
)

logger = logging.getLogger(__name__)


def _raise_for_failure(result: Result) -> None:
    """Failure を HTTP ステータスに変換する。"""
    if not is_failure(result):
        return
    if is_failure_of_kind(result, FailureKind.INVALID_ARGUMENTS):
        raise HTTPException(status_code=400, detail=str(result.error))
    raise HTTPException(status_code=500, detail=result.failure_kind.value)


def _parse_limit(value: str | None) -> int | str | None:
    """数値でなければそのまま返し、コマンドの検証で 400 にする。"""
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return value


def build_controllers(
    settings: WarehouseSettings,
    session_factory: async_sessionmaker[AsyncSession],
) -> list[tuple[str, consumer.BatchConsumerController]]:
    """ストリーム名とコントローラの組を返す。クライアントはここで 1 回だけ組み立てる。"""
    repository = AllocationRepository(session_factory)
    ledger = StockLedgerClient(session_factory)
    events = EventStoreClient(session_factory)
    return [
        (
            settings.order_created_stream,
            consumer.allocate_order_stock_controller(AllocateOrderStockWorkerService(ledger, events)),
        ),
        (
            settings.order_payment_rejected_stream,
            consumer.deallocate_order_payment_rejected_controller(
                DeallocateOrderPaymentRejectedWorkerService(repository, ledger)
            ),
        ),
        (
            settings.order_payment_accepted_stream,
            consumer.complete_order_payment_accepted_controller(
                CompleteOrderPaymentAcceptedWorkerService(repository, ledger)
            ),
        ),
        (
            settings.sku_restocked_stream,
            consumer.restock_sku_controller(RestockSkuWorkerService(ledger)),
        ),
    ]


def create_app(settings: WarehouseSettings | None = None, engine: AsyncEngine | None = None) -> FastAPI:
    settings = settings or WarehouseSettings()
    logging.basicConfig(level=settings.log_level)

    owns_engine = engine is None
    if engine is None:
        engine = create_async_engine(settings.database_url, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    event_store_client = EventStoreClient(async_session)
    allocation_repository = AllocationRepository(async_session)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await schema.create_schema(engine)

        shutdown_event = asyncio.Event()
        redis_conn: aioredis.Redis | None = None
        tasks: list[asyncio.Task] = []
        if settings.run_workers:
            redis_conn = aioredis.from_url(settings.redis_url, decode_responses=True)
            for stream, controller in build_controllers(settings, async_session):
                tasks.append(
                    asyncio.create_task(
                        subscriber.run_consumer(
                            redis_conn,
                            stream,
                            settings.consumer_group,
                            f"{controller.name}-worker",
                            controller,
                            shutdown_event,
                            batch_size=settings.batch_size,
                            block_ms=settings.block_ms,
                            retry_idle_ms=settings.retry_idle_ms,
                            max_deliveries=settings.max_deliveries,
                        ),
                        name=f"consumer-{stream}",
                    )
                )
            logger.info("Started %d stream consumers", len(tasks))

        yield

        shutdown_event.set()
        await asyncio.gather(*tasks, return_exceptions=True)
        if redis_conn is not None:
            await redis_conn.aclose()
        if owns_engine:
            await engine.dispose()

    app = FastAPI(title="Warehouse Service", lifespan=lifespan)

    # ── Command Endpoints (Write 側) ─────────────────

    @app.post("/api/v1/warehouse/stock", status_code=202)
    async def cmd_restock_sku(payload: Any = Body(None)):
        """
        入荷 API

        SKU_RESTOCKED_EVENT をイベントストアに書き込むだけで、在庫数は
        ワーカーがイベントを受信したときに増える。同じロットの再送は 202 のまま。
        """
        event_result = SkuRestockedEvent.validate_and_build(payload)
        _raise_for_failure(event_result)

        event = event_result.value
        raise_result = await event_store_client.raise_event(event)
        if not is_failure_of_kind(raise_result, FailureKind.DUPLICATE_EVENT_RAISED):
            _raise_for_failure(raise_result)
        return event.to_dict()

    # ── Query Endpoints (Read 側) ────────────────────

    @app.get("/api/v1/warehouse/stock")
    async def query_list_skus(
        sku: str | None = None,
        sort_direction: str | None = Query(None, alias="sortDirection"),
        limit: str | None = None,
    ):
        """sku 指定なら 1 件、無ければ created_at 順に limit 件"""
        command_result = ListSkusCommand.validate_and_build(
            {"sku": sku, "sort_direction": sort_direction, "limit": _parse_limit(limit)}
        )
        _raise_for_failure(command_result)
        async with async_session() as session:
            return await queries.list_skus(session, command_result.value)

    @app.get("/api/v1/warehouse/stock/{sku}")
    async def query_get_sku(sku: str):
        async with async_session() as session:
            stock = await queries.get_sku_stock(session, sku)
        if not stock:
            raise HTTPException(404, "SKU not found")
        return stock

    @app.get("/queries/allocations/{sku}/{order_id}")
    async def query_get_allocation(sku: str, order_id: str):
        command_result = GetOrderAllocationCommand.validate_and_build({"sku": sku, "order_id": order_id})
        _raise_for_failure(command_result)

        allocation_result = await allocation_repository.get_order_allocation(command_result.value)
        _raise_for_failure(allocation_result)
        if allocation_result.value is None:
            raise HTTPException(404, "Allocation not found")
        return allocation_result.value.to_dict()

    # ── Event Store (デバッグ用) ─────────────────────

    @app.get("/events")
    async def get_all_events():
        async with async_session() as session:
            return await event_store.load_all_events(session)

    @app.get("/events/{aggregate_id}")
    async def get_aggregate_events(aggregate_id: str):
        async with async_session() as session:
            return await event_store.load_events(session, aggregate_id)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "warehouse-service"}

    return app
