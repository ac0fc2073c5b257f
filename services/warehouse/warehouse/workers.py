"""
Warehouse Service — ワーカーサービス

1 つの業務操作（割り当て・解放・完了・入荷）について
コマンド生成 → 台帳更新 → 後続イベント発行 を順に実行する。

各ステップは Result を返す。失敗はその場で呼び出し側へ返し、
リトライするかどうかはバッチコンシューマに任せる（ここではリトライしない）。

依存するクライアントはすべてコンストラクタで受け取る。
"""

import logging

from .commands import (
    AllocateOrderStockCommand,
    CompleteOrderPaymentAcceptedCommand,
    DeallocateOrderPaymentRejectedCommand,
    GetOrderAllocationCommand,
    RestockSkuCommand,
)
from .event_store import EventStoreClient
from .events import (
    IncomingOrderCreatedEvent,
    IncomingOrderPaymentAcceptedEvent,
    IncomingOrderPaymentRejectedEvent,
    IncomingSkuRestockedEvent,
    OrderStockAllocatedEvent,
    OrderStockDepletedEvent,
)
from .ledger import StockLedgerClient
from .queries import AllocationRepository
from .result import (
    FailureKind,
    Result,
    is_failure,
    is_failure_of_kind,
    is_success,
    make_failure,
    make_success,
)
from .validators import AllocationStatus

logger = logging.getLogger(__name__)


def _unexpected_event(expected: type, incoming_event) -> Result:
    logger.error("Expected %s but got %r", expected.__name__, incoming_event)
    return make_failure(
        FailureKind.INVALID_ARGUMENTS,
        f"Expected {expected.__name__} but got {incoming_event!r}",
        False,
    )


async def _raise_event(event_store: EventStoreClient, event) -> Result:
    """発行済み (DuplicateEventRaisedError) は成功として扱う。"""
    result = await event_store.raise_event(event)
    if is_failure_of_kind(result, FailureKind.DUPLICATE_EVENT_RAISED):
        logger.info("Event %s for %s was already raised", event.event_name.value, event.subject_id)
        return make_success()
    return result


async def _get_allocation(repository: AllocationRepository, incoming_event) -> Result:
    command_result = GetOrderAllocationCommand.validate_and_build(
        {
            "order_id": incoming_event.event_data.order_id,
            "sku": incoming_event.event_data.sku,
        }
    )
    if is_failure(command_result):
        return command_result
    return await repository.get_order_allocation(command_result.value)


# ── 在庫割り当て ──────────────────────────────────


class AllocateOrderStockWorkerService:
    """
    ORDER_CREATED_EVENT を受けて在庫を割り当てる。

    台帳の結果              → 発行するイベント
      Success / Duplicate   → ORDER_STOCK_ALLOCATED_EVENT
      Depleted              → ORDER_STOCK_DEPLETED_EVENT
      それ以外              → 発行せず、失敗をそのまま返す
    """

    def __init__(self, ledger: StockLedgerClient, event_store: EventStoreClient) -> None:
        self._ledger = ledger
        self._event_store = event_store

    async def allocate_order_stock(self, incoming_event: IncomingOrderCreatedEvent) -> Result:
        if not isinstance(incoming_event, IncomingOrderCreatedEvent):
            return _unexpected_event(IncomingOrderCreatedEvent, incoming_event)

        command_result = AllocateOrderStockCommand.validate_and_build(
            {"incoming_order_created_event": incoming_event}
        )
        if is_failure(command_result):
            return command_result
        command = command_result.value

        allocation_result = await self._ledger.allocate_order_stock(command)
        if is_success(allocation_result) or is_failure_of_kind(
            allocation_result, FailureKind.DUPLICATE_STOCK_ALLOCATION
        ):
            event_class = OrderStockAllocatedEvent
        elif is_failure_of_kind(allocation_result, FailureKind.DEPLETED_STOCK_ALLOCATION):
            event_class = OrderStockDepletedEvent
        else:
            return allocation_result

        data = command.command_data
        event_result = event_class.validate_and_build(
            {
                "order_id": data.order_id,
                "sku": data.sku,
                "units": data.units,
                "price": data.price,
                "user_id": data.user_id,
            }
        )
        if is_failure(event_result):
            return event_result

        raise_result = await _raise_event(self._event_store, event_result.value)
        if is_failure(raise_result):
            return raise_result

        logger.info(
            "Allocation of order %s sku %s finished with %s",
            data.order_id,
            data.sku,
            event_class.fixed_event_name.value,
        )
        return make_success()


# ── 在庫解放（支払い拒否の補償） ─────────────────


class DeallocateOrderPaymentRejectedWorkerService:
    """
    ORDER_PAYMENT_REJECTED_EVENT を受けて割り当てを解放する。

    割り当て行が無い、または既に解放済みなら何もせず成功を返す。
    補償が一度実行された後の再配信はこの経路に入る。
    """

    def __init__(self, repository: AllocationRepository, ledger: StockLedgerClient) -> None:
        self._repository = repository
        self._ledger = ledger

    async def deallocate_order_stock(self, incoming_event: IncomingOrderPaymentRejectedEvent) -> Result:
        if not isinstance(incoming_event, IncomingOrderPaymentRejectedEvent):
            return _unexpected_event(IncomingOrderPaymentRejectedEvent, incoming_event)

        allocation_result = await _get_allocation(self._repository, incoming_event)
        if is_failure(allocation_result):
            return allocation_result

        existing = allocation_result.value
        if existing is None:
            logger.warning(
                "No allocation for order %s sku %s, nothing to deallocate",
                incoming_event.event_data.order_id,
                incoming_event.event_data.sku,
            )
            return make_success()
        if existing.allocation_status is AllocationStatus.DEALLOCATED_PAYMENT_REJECTED:
            logger.warning(
                "Allocation for order %s sku %s is already deallocated",
                existing.order_id,
                existing.sku,
            )
            return make_success()

        command_result = DeallocateOrderPaymentRejectedCommand.validate_and_build(
            {
                "existing_order_allocation_data": existing,
                "incoming_order_payment_rejected_event": incoming_event,
            }
        )
        if is_failure(command_result):
            return command_result

        return await self._ledger.deallocate_order_stock(command_result.value)


# ── 割り当て完了（支払い承認） ───────────────────


class CompleteOrderPaymentAcceptedWorkerService:
    def __init__(self, repository: AllocationRepository, ledger: StockLedgerClient) -> None:
        self._repository = repository
        self._ledger = ledger

    async def complete_order_stock(self, incoming_event: IncomingOrderPaymentAcceptedEvent) -> Result:
        """ALLOCATED → COMPLETED_PAYMENT_ACCEPTED。在庫数は変わらない。"""
        if not isinstance(incoming_event, IncomingOrderPaymentAcceptedEvent):
            return _unexpected_event(IncomingOrderPaymentAcceptedEvent, incoming_event)

        allocation_result = await _get_allocation(self._repository, incoming_event)
        if is_failure(allocation_result):
            return allocation_result

        existing = allocation_result.value
        if existing is None:
            logger.warning(
                "No allocation for order %s sku %s, nothing to complete",
                incoming_event.event_data.order_id,
                incoming_event.event_data.sku,
            )
            return make_success()
        if existing.allocation_status is AllocationStatus.COMPLETED_PAYMENT_ACCEPTED:
            logger.warning(
                "Allocation for order %s sku %s is already completed",
                existing.order_id,
                existing.sku,
            )
            return make_success()

        command_result = CompleteOrderPaymentAcceptedCommand.validate_and_build(
            {
                "existing_order_allocation_data": existing,
                "incoming_order_payment_accepted_event": incoming_event,
            }
        )
        if is_failure(command_result):
            return command_result

        return await self._ledger.complete_order_stock(command_result.value)


# ── 入荷 ─────────────────────────────────────────


class RestockSkuWorkerService:
    def __init__(self, ledger: StockLedgerClient) -> None:
        self._ledger = ledger

    async def restock_sku(self, incoming_event: IncomingSkuRestockedEvent) -> Result:
        if not isinstance(incoming_event, IncomingSkuRestockedEvent):
            return _unexpected_event(IncomingSkuRestockedEvent, incoming_event)

        command_result = RestockSkuCommand.validate_and_build(
            {"incoming_sku_restocked_event": incoming_event}
        )
        if is_failure(command_result):
            return command_result

        restock_result = await self._ledger.restock_sku(command_result.value)
        if is_failure_of_kind(restock_result, FailureKind.DUPLICATE_RESTOCK_OPERATION):
            logger.info(
                "Lot %s of sku %s was already restocked",
                incoming_event.event_data.lot_id,
                incoming_event.event_data.sku,
            )
            return make_success()
        return restock_result
