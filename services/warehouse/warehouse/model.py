"""
Warehouse Service — 値オブジェクトの基底とデータモデル

すべてのコマンド・イベントは ValueObject を継承し、
validate_and_build() を通してのみ生成する（スマートコンストラクタ）。

  1. 入力全体をスキーマで検証する
  2. 成功した場合だけイミュータブルなインスタンスを生成する

どれか 1 つでも不正なフィールドがあれば InvalidArgumentsError を返し、
部分的なオブジェクトは決して返さない。
"""

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from .result import FailureKind, Result, make_failure, make_success
from .validators import AllocationStatus, CreatedAt, OrderId, Price, Sku, Units, UpdatedAt, UserId

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ValueObject(BaseModel):
    # 既存インスタンスを受け取った場合も必ず再検証する
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        revalidate_instances="always",
    )

    @classmethod
    def _build(cls, props: Any) -> Result:
        try:
            value = cls.model_validate(props)
        except ValidationError as error:
            logger.error("%s.validate_and_build exit failure: %s", cls.__name__, error)
            return make_failure(FailureKind.INVALID_ARGUMENTS, error, False)
        return make_success(value)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def validate_input(schema: type[ValueObject], raw_input: Any) -> Result:
    """コマンドの入力をスキーマで検証する（インスタンスは生成しない段階）。"""
    if raw_input is None:
        return make_failure(
            FailureKind.INVALID_ARGUMENTS,
            f"Expected {schema.__name__} but got None",
            False,
        )
    return schema._build(raw_input)


class OrderAllocationData(ValueObject):
    """在庫割り当て 1 行分（sku × order ごとに 1 行）"""

    order_id: OrderId
    sku: Sku
    units: Units
    price: Price
    user_id: UserId
    created_at: CreatedAt
    updated_at: UpdatedAt
    allocation_status: AllocationStatus


class SkuStockData(ValueObject):
    sku: Sku
    units: int
    created_at: CreatedAt
    updated_at: UpdatedAt
