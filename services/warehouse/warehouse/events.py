"""
Warehouse Service — イベント定義

倉庫ドメインで受信・発行するイベント。
形はすべて共通: {eventName, eventData, createdAt, updatedAt}

受信 (Incoming): 他サービスが発行し、ワーカーが消費するイベント
発行 (Outgoing): ワーカー / API がイベントストアに書き込むイベント
"""

from typing import Any, ClassVar

from .model import ValueObject, utc_now_iso
from .result import Result
from .validators import (
    CreatedAt,
    LotId,
    OrderId,
    Price,
    Sku,
    Units,
    UpdatedAt,
    UserId,
    WarehouseEventName,
    event_name_group,
)


class OrderEventData(ValueObject):
    order_id: OrderId
    sku: Sku
    units: Units
    price: Price
    user_id: UserId


class SkuRestockedEventData(ValueObject):
    sku: Sku
    units: Units
    lot_id: LotId


class WarehouseEvent(ValueObject):
    event_name: WarehouseEventName
    created_at: CreatedAt
    updated_at: UpdatedAt

    @classmethod
    def validate_and_build(cls, raw_event: Any) -> Result:
        return cls._build(raw_event)


class OrderEvent(WarehouseEvent):
    aggregate_type: ClassVar[str] = "Order"

    event_data: OrderEventData

    @property
    def subject_id(self) -> str:
        return f"ORDER_ID#{self.event_data.order_id}"


# ── 受信イベント ──────────────────────────────────


class IncomingOrderCreatedEvent(OrderEvent):
    """注文が作成された → 在庫を割り当てる"""

    event_name: event_name_group(WarehouseEventName.ORDER_CREATED_EVENT)


class IncomingOrderPaymentRejectedEvent(OrderEvent):
    """支払いが拒否された → 割り当てを解放する（補償）"""

    event_name: event_name_group(WarehouseEventName.ORDER_PAYMENT_REJECTED_EVENT)


class IncomingOrderPaymentAcceptedEvent(OrderEvent):
    """支払いが承認された → 割り当てを完了にする"""

    event_name: event_name_group(WarehouseEventName.ORDER_PAYMENT_ACCEPTED_EVENT)


class IncomingSkuRestockedEvent(WarehouseEvent):
    """SKU が入荷した → 在庫数を増やす"""

    aggregate_type: ClassVar[str] = "Sku"

    event_name: event_name_group(WarehouseEventName.SKU_RESTOCKED_EVENT)
    event_data: SkuRestockedEventData


# ── 発行イベント ──────────────────────────────────


class _OutgoingOrderEvent(OrderEvent):
    fixed_event_name: ClassVar[WarehouseEventName]

    @classmethod
    def validate_and_build(cls, event_data: Any) -> Result:
        """
        eventData から発行用イベントを組み立てる。
        eventName と日時はここで確定させる。
        """
        now = utc_now_iso()
        return cls._build(
            {
                "event_name": cls.fixed_event_name,
                "event_data": event_data,
                "created_at": now,
                "updated_at": now,
            }
        )


class OrderStockAllocatedEvent(_OutgoingOrderEvent):
    """在庫が割り当てられた"""

    fixed_event_name: ClassVar[WarehouseEventName] = WarehouseEventName.ORDER_STOCK_ALLOCATED_EVENT

    event_name: event_name_group(WarehouseEventName.ORDER_STOCK_ALLOCATED_EVENT)


class OrderStockDepletedEvent(_OutgoingOrderEvent):
    """在庫不足で割り当てできなかった"""

    fixed_event_name: ClassVar[WarehouseEventName] = WarehouseEventName.ORDER_STOCK_DEPLETED_EVENT

    event_name: event_name_group(WarehouseEventName.ORDER_STOCK_DEPLETED_EVENT)


class SkuRestockedEvent(WarehouseEvent):
    """入荷 API が発行するイベント（lot ごとに 1 回だけ）"""

    aggregate_type: ClassVar[str] = "Sku"

    event_name: event_name_group(WarehouseEventName.SKU_RESTOCKED_EVENT)
    event_data: SkuRestockedEventData

    @classmethod
    def validate_and_build(cls, event_data: Any) -> Result:
        now = utc_now_iso()
        return cls._build(
            {
                "event_name": WarehouseEventName.SKU_RESTOCKED_EVENT,
                "event_data": event_data,
                "created_at": now,
                "updated_at": now,
            }
        )

    @property
    def subject_id(self) -> str:
        return f"SKU#{self.event_data.sku}#LOT_ID#{self.event_data.lot_id}"


# 発行イベントは (subject_id, event_name) でイベントストアに一意に記録される
OutgoingEvent = OrderStockAllocatedEvent | OrderStockDepletedEvent | SkuRestockedEvent
