"""
Warehouse Service — クエリ (CQRS Read 側)

割り当て行の参照は解放・完了の両ワーカーで共有する（AllocationRepository）。
"""

import logging

from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .commands import GetOrderAllocationCommand, ListSkusCommand
from .model import OrderAllocationData, SkuStockData
from .result import FailureKind, Result, make_failure, make_success
from .validators import SortDirection

logger = logging.getLogger(__name__)


class AllocationRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_order_allocation(self, command: GetOrderAllocationCommand) -> Result:
        """
        (sku, order_id) の割り当て行を返す。

        行が無ければ Success(None)。
        """
        if not isinstance(command, GetOrderAllocationCommand):
            return make_failure(
                FailureKind.INVALID_ARGUMENTS,
                f"Expected GetOrderAllocationCommand but got {command!r}",
                False,
            )

        data = command.command_data
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    text("""
                        SELECT order_id, sku, units, price, user_id,
                               allocation_status, created_at, updated_at
                        FROM stock_allocations
                        WHERE sku = :sku AND order_id = :order_id
                    """),
                    {"sku": data.sku, "order_id": data.order_id},
                )
                row = result.fetchone()
        except Exception as error:
            logger.exception("get_order_allocation failed for %s %s", data.sku, data.order_id)
            return make_failure(FailureKind.UNRECOGNIZED, error, True)

        if not row:
            logger.info("No allocation for order %s sku %s", data.order_id, data.sku)
            return make_success(None)

        try:
            allocation = OrderAllocationData(
                order_id=row.order_id,
                sku=row.sku,
                units=row.units,
                price=float(row.price),
                user_id=row.user_id,
                created_at=row.created_at,
                updated_at=row.updated_at,
                allocation_status=row.allocation_status,
            )
        except ValidationError as error:
            # 保存済みの行が壊れている。リトライしても直らない
            logger.error("Stored allocation is invalid for %s %s: %s", data.sku, data.order_id, error)
            return make_failure(FailureKind.INVALID_ARGUMENTS, error, False)

        return make_success(allocation)


def _sku_row(row) -> dict:
    return SkuStockData(
        sku=row.sku,
        units=row.units,
        created_at=row.created_at,
        updated_at=row.updated_at,
    ).to_dict()


async def list_skus(session: AsyncSession, command: ListSkusCommand) -> list[dict]:
    query = command.query_data
    if query.sku:
        result = await session.execute(
            text("SELECT sku, units, created_at, updated_at FROM sku_stock WHERE sku = :sku"),
            {"sku": query.sku},
        )
        return [_sku_row(row) for row in result.fetchall()]

    # ORDER BY の向きは列挙値からのみ選ぶ
    direction = "DESC" if query.sort_direction is SortDirection.DESC else "ASC"
    result = await session.execute(
        text(f"""
            SELECT sku, units, created_at, updated_at
            FROM sku_stock
            ORDER BY created_at {direction}, sku {direction}
            LIMIT :limit
        """),
        {"limit": query.limit},
    )
    return [_sku_row(row) for row in result.fetchall()]


async def get_sku_stock(session: AsyncSession, sku: str) -> dict | None:
    result = await session.execute(
        text("SELECT sku, units, created_at, updated_at FROM sku_stock WHERE sku = :sku"),
        {"sku": sku},
    )
    row = result.fetchone()
    if not row:
        return None
    return _sku_row(row)
