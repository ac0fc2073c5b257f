"""
Warehouse Service — コマンド定義 (CQRS の Write / Read 要求)

コマンドは 1 回の呼び出しの中だけで使われる検証済みの値オブジェクト。
永続化はされない。

各コマンドの validate_and_build() は 2 段階:
  1. 入力（受信イベントや既存の割り当て行）をスキーマで再検証する
  2. 成功した場合だけ commandData を組み立ててインスタンス化する
"""

import logging
from typing import Any

from pydantic import model_validator

from .events import (
    IncomingOrderCreatedEvent,
    IncomingOrderPaymentAcceptedEvent,
    IncomingOrderPaymentRejectedEvent,
    IncomingSkuRestockedEvent,
)
from .model import OrderAllocationData, ValueObject, utc_now_iso, validate_input
from .result import Result, is_failure
from .validators import (
    AllocationStatus,
    CreatedAt,
    Limit,
    LotId,
    OrderId,
    Price,
    Sku,
    SortDirection,
    Units,
    UpdatedAt,
    UserId,
    allocation_status_group,
)

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


# ── 在庫割り当て ──────────────────────────────────


class AllocateOrderStockCommandData(ValueObject):
    order_id: OrderId
    sku: Sku
    units: Units
    price: Price
    user_id: UserId
    created_at: CreatedAt
    updated_at: UpdatedAt
    allocation_status: allocation_status_group(AllocationStatus.ALLOCATED)


class _AllocateOrderStockCommandInput(ValueObject):
    incoming_order_created_event: IncomingOrderCreatedEvent


class AllocateOrderStockCommand(ValueObject):
    command_data: AllocateOrderStockCommandData

    @classmethod
    def validate_and_build(cls, command_input: Any) -> Result:
        input_result = validate_input(_AllocateOrderStockCommandInput, command_input)
        if is_failure(input_result):
            return input_result

        event_data = input_result.value.incoming_order_created_event.event_data
        now = utc_now_iso()
        return cls._build(
            {
                "command_data": {
                    "order_id": event_data.order_id,
                    "sku": event_data.sku,
                    "units": event_data.units,
                    "price": event_data.price,
                    "user_id": event_data.user_id,
                    "created_at": now,
                    "updated_at": now,
                    "allocation_status": AllocationStatus.ALLOCATED,
                }
            }
        )


# ── 割り当ての参照 ────────────────────────────────


class GetOrderAllocationCommandData(ValueObject):
    order_id: OrderId
    sku: Sku


class GetOrderAllocationCommand(ValueObject):
    command_data: GetOrderAllocationCommandData

    @classmethod
    def validate_and_build(cls, command_input: Any) -> Result:
        input_result = validate_input(GetOrderAllocationCommandData, command_input)
        if is_failure(input_result):
            return input_result
        return cls._build({"command_data": input_result.value})


# ── 状態遷移（解放 / 完了）共通 ──────────────────


class TransitionOrderAllocationCommandData(ValueObject):
    """
    割り当て行のステータス遷移。

    expected_allocation_status が楽観的ロックの条件になる:
    行のステータスが期待値と一致しないと書き込みは拒否される。
    """

    order_id: OrderId
    sku: Sku
    units: Units
    updated_at: UpdatedAt
    allocation_status: AllocationStatus
    expected_allocation_status: AllocationStatus


def _check_same_allocation(existing: OrderAllocationData, event_data: Any) -> None:
    if existing.allocation_status is not AllocationStatus.ALLOCATED:
        raise ValueError(f"expected an ALLOCATED allocation but got {existing.allocation_status.value}")
    if existing.order_id != event_data.order_id or existing.sku != event_data.sku:
        raise ValueError("existing allocation does not belong to the incoming event's order and sku")
    if existing.units != event_data.units:
        # 解放・完了には保存済みの units を使う
        logger.warning(
            "Units mismatch for order %s sku %s: stored=%s event=%s",
            existing.order_id,
            existing.sku,
            existing.units,
            event_data.units,
        )


def _transition_command_data(
    existing: OrderAllocationData,
    event_data: Any,
    new_status: AllocationStatus,
) -> dict:
    return {
        "order_id": event_data.order_id,
        "sku": event_data.sku,
        "units": existing.units,
        "updated_at": utc_now_iso(),
        "allocation_status": new_status,
        "expected_allocation_status": existing.allocation_status,
    }


# ── 在庫解放（支払い拒否の補償） ─────────────────


class _DeallocateOrderPaymentRejectedCommandInput(ValueObject):
    existing_order_allocation_data: OrderAllocationData
    incoming_order_payment_rejected_event: IncomingOrderPaymentRejectedEvent

    @model_validator(mode="after")
    def _same_allocation(self):
        _check_same_allocation(
            self.existing_order_allocation_data,
            self.incoming_order_payment_rejected_event.event_data,
        )
        return self


class DeallocateOrderPaymentRejectedCommand(ValueObject):
    command_data: TransitionOrderAllocationCommandData

    @classmethod
    def validate_and_build(cls, command_input: Any) -> Result:
        input_result = validate_input(_DeallocateOrderPaymentRejectedCommandInput, command_input)
        if is_failure(input_result):
            return input_result

        valid_input = input_result.value
        return cls._build(
            {
                "command_data": _transition_command_data(
                    valid_input.existing_order_allocation_data,
                    valid_input.incoming_order_payment_rejected_event.event_data,
                    AllocationStatus.DEALLOCATED_PAYMENT_REJECTED,
                )
            }
        )


# ── 割り当て完了（支払い承認） ───────────────────


class _CompleteOrderPaymentAcceptedCommandInput(ValueObject):
    existing_order_allocation_data: OrderAllocationData
    incoming_order_payment_accepted_event: IncomingOrderPaymentAcceptedEvent

    @model_validator(mode="after")
    def _same_allocation(self):
        _check_same_allocation(
            self.existing_order_allocation_data,
            self.incoming_order_payment_accepted_event.event_data,
        )
        return self


class CompleteOrderPaymentAcceptedCommand(ValueObject):
    command_data: TransitionOrderAllocationCommandData

    @classmethod
    def validate_and_build(cls, command_input: Any) -> Result:
        input_result = validate_input(_CompleteOrderPaymentAcceptedCommandInput, command_input)
        if is_failure(input_result):
            return input_result

        valid_input = input_result.value
        return cls._build(
            {
                "command_data": _transition_command_data(
                    valid_input.existing_order_allocation_data,
                    valid_input.incoming_order_payment_accepted_event.event_data,
                    AllocationStatus.COMPLETED_PAYMENT_ACCEPTED,
                )
            }
        )


# ── 入荷 ─────────────────────────────────────────


class RestockSkuCommandData(ValueObject):
    sku: Sku
    units: Units
    lot_id: LotId
    created_at: CreatedAt
    updated_at: UpdatedAt


class _RestockSkuCommandInput(ValueObject):
    incoming_sku_restocked_event: IncomingSkuRestockedEvent


class RestockSkuCommand(ValueObject):
    command_data: RestockSkuCommandData

    @classmethod
    def validate_and_build(cls, command_input: Any) -> Result:
        input_result = validate_input(_RestockSkuCommandInput, command_input)
        if is_failure(input_result):
            return input_result

        event_data = input_result.value.incoming_sku_restocked_event.event_data
        now = utc_now_iso()
        return cls._build(
            {
                "command_data": {
                    "sku": event_data.sku,
                    "units": event_data.units,
                    "lot_id": event_data.lot_id,
                    "created_at": now,
                    "updated_at": now,
                }
            }
        )


# ── SKU 一覧 (Read 側) ───────────────────────────


class ListSkusQueryData(ValueObject):
    sku: Sku | None = None
    sort_direction: SortDirection = SortDirection.ASC
    limit: Limit = DEFAULT_LIST_LIMIT


class ListSkusCommand(ValueObject):
    query_data: ListSkusQueryData

    @classmethod
    def validate_and_build(cls, command_input: Any) -> Result:
        if isinstance(command_input, dict):
            command_input = {k: v for k, v in command_input.items() if v is not None}
        input_result = validate_input(ListSkusQueryData, command_input)
        if is_failure(input_result):
            return input_result
        return cls._build({"query_data": input_result.value})
