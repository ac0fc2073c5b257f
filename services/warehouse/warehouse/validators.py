"""
Warehouse Service — 値バリデータ

プリミティブな値の検証ルールを一箇所にまとめる。
外部から値を受け取る境界ではどこでも同じルールを再適用する。
（前段で検証済みだと仮定しない）

- 識別子・日時: 空白のみ不可、前後の空白を除いて 4 文字以上、列の長さ以下
- units: 1 以上の整数（2.0 のような整数値の float も可）、INTEGER 列に収まる値まで
- price: 0 以上の数値、NUMERIC(12, 2) 列に収まる値まで
- 列挙値: 閉じた集合のいずれかに完全一致

上限は schema.py の列定義と同じ値を使う。
書き込めない値を検証で通すと、毎回同じ失敗で再配信され続ける。
"""

from enum import Enum
from typing import Annotated, Any

from pydantic import AfterValidator, BeforeValidator, Field, Strict, StringConstraints, TypeAdapter, ValidationError


class WarehouseEventName(str, Enum):
    ORDER_CREATED_EVENT = "ORDER_CREATED_EVENT"
    ORDER_PAYMENT_ACCEPTED_EVENT = "ORDER_PAYMENT_ACCEPTED_EVENT"
    ORDER_PAYMENT_REJECTED_EVENT = "ORDER_PAYMENT_REJECTED_EVENT"
    ORDER_STOCK_ALLOCATED_EVENT = "ORDER_STOCK_ALLOCATED_EVENT"
    ORDER_STOCK_DEPLETED_EVENT = "ORDER_STOCK_DEPLETED_EVENT"
    SKU_RESTOCKED_EVENT = "SKU_RESTOCKED_EVENT"


class AllocationStatus(str, Enum):
    ALLOCATED = "ALLOCATED"
    COMPLETED_PAYMENT_ACCEPTED = "COMPLETED_PAYMENT_ACCEPTED"
    DEALLOCATED_PAYMENT_REJECTED = "DEALLOCATED_PAYMENT_REJECTED"
    DEALLOCATED_ORDER_CANCELED = "DEALLOCATED_ORDER_CANCELED"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


# ── フィールド型 ─────────────────────────────────

MAX_ID_LENGTH = 255
MAX_TIMESTAMP_LENGTH = 64
MAX_UNITS = 2**31 - 1
MAX_PRICE = 9_999_999_999.99


def _integral_float_to_int(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


_Identifier = Annotated[
    str, Strict(), StringConstraints(strip_whitespace=True, min_length=4, max_length=MAX_ID_LENGTH)
]
_Timestamp = Annotated[
    str, Strict(), StringConstraints(strip_whitespace=True, min_length=4, max_length=MAX_TIMESTAMP_LENGTH)
]

OrderId = _Identifier
Sku = _Identifier
UserId = _Identifier
LotId = _Identifier
CreatedAt = _Timestamp
UpdatedAt = _Timestamp

Units = Annotated[int, Strict(), Field(ge=1, le=MAX_UNITS), BeforeValidator(_integral_float_to_int)]
Price = Annotated[float, Strict(), Field(ge=0, le=MAX_PRICE, allow_inf_nan=False)]
Limit = Annotated[int, Strict(), Field(ge=1, le=1000)]


def event_name_group(*event_names: WarehouseEventName) -> Any:
    """指定したイベント名のいずれかだけを受け付ける型を返す。"""
    allowed = frozenset(event_names)

    def _check(value: WarehouseEventName) -> WarehouseEventName:
        if value not in allowed:
            raise ValueError(f"eventName must be one of {sorted(e.value for e in allowed)}")
        return value

    return Annotated[WarehouseEventName, AfterValidator(_check)]


def allocation_status_group(*statuses: AllocationStatus) -> Any:
    """指定した割り当てステータスのいずれかだけを受け付ける型を返す。"""
    allowed = frozenset(statuses)

    def _check(value: AllocationStatus) -> AllocationStatus:
        if value not in allowed:
            raise ValueError(f"allocationStatus must be one of {sorted(s.value for s in allowed)}")
        return value

    return Annotated[AllocationStatus, AfterValidator(_check)]


# ── 述語関数 ─────────────────────────────────────


def _is_valid(adapter: TypeAdapter, value: Any) -> bool:
    try:
        adapter.validate_python(value)
    except ValidationError:
        return False
    return True


_order_id = TypeAdapter(OrderId)
_sku = TypeAdapter(Sku)
_user_id = TypeAdapter(UserId)
_lot_id = TypeAdapter(LotId)
_timestamp = TypeAdapter(CreatedAt)
_units = TypeAdapter(Units)
_price = TypeAdapter(Price)
_limit = TypeAdapter(Limit)
_event_name = TypeAdapter(WarehouseEventName)
_allocation_status = TypeAdapter(AllocationStatus)
_sort_direction = TypeAdapter(SortDirection)


def is_valid_order_id(value: Any) -> bool:
    return _is_valid(_order_id, value)


def is_valid_sku(value: Any) -> bool:
    return _is_valid(_sku, value)


def is_valid_user_id(value: Any) -> bool:
    return _is_valid(_user_id, value)


def is_valid_lot_id(value: Any) -> bool:
    return _is_valid(_lot_id, value)


def is_valid_timestamp(value: Any) -> bool:
    return _is_valid(_timestamp, value)


def is_valid_units(value: Any) -> bool:
    return _is_valid(_units, value)


def is_valid_price(value: Any) -> bool:
    return _is_valid(_price, value)


def is_valid_limit(value: Any) -> bool:
    return _is_valid(_limit, value)


def is_valid_event_name(value: Any) -> bool:
    return _is_valid(_event_name, value)


def is_valid_allocation_status(value: Any) -> bool:
    return _is_valid(_allocation_status, value)


def is_valid_sort_direction(value: Any) -> bool:
    return _is_valid(_sort_direction, value)
