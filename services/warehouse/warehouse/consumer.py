"""
Warehouse Service — バッチコンシューマ

メッセージのバッチを 1 件ずつ独立に処理し、再配信すべき ID だけを返す。

  ステージの結果                     一時的?  retry_ids に入れる?
  ─────────────────────────────────────────────────────────────
  エンベロープが壊れている            -        入れない (ack)
  ドメインイベントの検証に失敗        No       入れない (ack)
  ワーカー: InvalidArgumentsError     No       入れない (ack)
  ワーカー: Duplicate* / Depleted*    No       入れない (ack)
  ワーカー: UnrecognizedError         Yes      入れる   (retry)
  ワーカー: Success                   -        入れない (ack)

1 件の結果が他のメッセージの処理に影響することはない。
"""

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .events import (
    IncomingOrderCreatedEvent,
    IncomingOrderPaymentAcceptedEvent,
    IncomingOrderPaymentRejectedEvent,
    IncomingSkuRestockedEvent,
)
from .result import Result, is_failure, is_failure_transient
from .workers import (
    AllocateOrderStockWorkerService,
    CompleteOrderPaymentAcceptedWorkerService,
    DeallocateOrderPaymentRejectedWorkerService,
    RestockSkuWorkerService,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    id: str
    body: Any


@dataclass
class BatchResponse:
    retry_ids: list[str] = field(default_factory=list)


class BatchConsumerController:
    """
    build_event: 生の dict → Result[受信イベント]（スマートコンストラクタ）
    handle_event: 受信イベント → Result（ワーカーサービスの操作）
    """

    def __init__(
        self,
        name: str,
        build_event: Callable[[Any], Result],
        handle_event: Callable[[Any], Awaitable[Result]],
    ) -> None:
        self.name = name
        self._build_event = build_event
        self._handle_event = handle_event

    async def process_batch(self, messages: list[Message]) -> BatchResponse:
        response = BatchResponse()
        for message in messages:
            if await self._process_message(message):
                response.retry_ids.append(message.id)

        logger.info(
            "%s processed %d messages, %d to retry",
            self.name,
            len(messages),
            len(response.retry_ids),
        )
        return response

    async def _process_message(self, message: Message) -> bool:
        """True を返したメッセージだけが再配信される。"""
        try:
            raw_event = json.loads(message.body)
        except (TypeError, ValueError):
            logger.error("%s: malformed message %s, dropping", self.name, message.id)
            return False
        if not isinstance(raw_event, dict):
            logger.error("%s: message %s is not a JSON object, dropping", self.name, message.id)
            return False

        event_result = self._build_event(raw_event)
        if is_failure(event_result):
            logger.error("%s: invalid event in message %s, dropping", self.name, message.id)
            return False

        try:
            result = await self._handle_event(event_result.value)
        except Exception:
            # 分類されていない例外は一時的な障害として扱う
            logger.exception("%s: unexpected error on message %s", self.name, message.id)
            return True

        if is_failure_transient(result):
            logger.error(
                "%s: transient failure on message %s: %s",
                self.name,
                message.id,
                result.error,
            )
            return True
        if is_failure(result):
            logger.warning(
                "%s: message %s finished with %s",
                self.name,
                message.id,
                result.failure_kind.value,
            )
        return False


# ── ワーカーごとのコントローラ ───────────────────


def allocate_order_stock_controller(worker: AllocateOrderStockWorkerService) -> BatchConsumerController:
    return BatchConsumerController(
        "allocate-order-stock",
        IncomingOrderCreatedEvent.validate_and_build,
        worker.allocate_order_stock,
    )


def deallocate_order_payment_rejected_controller(
    worker: DeallocateOrderPaymentRejectedWorkerService,
) -> BatchConsumerController:
    return BatchConsumerController(
        "deallocate-order-payment-rejected",
        IncomingOrderPaymentRejectedEvent.validate_and_build,
        worker.deallocate_order_stock,
    )


def complete_order_payment_accepted_controller(
    worker: CompleteOrderPaymentAcceptedWorkerService,
) -> BatchConsumerController:
    return BatchConsumerController(
        "complete-order-payment-accepted",
        IncomingOrderPaymentAcceptedEvent.validate_and_build,
        worker.complete_order_stock,
    )


def restock_sku_controller(worker: RestockSkuWorkerService) -> BatchConsumerController:
    return BatchConsumerController(
        "restock-sku",
        IncomingSkuRestockedEvent.validate_and_build,
        worker.restock_sku,
    )
