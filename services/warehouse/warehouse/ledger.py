"""
Warehouse Service — 在庫台帳クライアント

割り当て行 (stock_allocations) と SKU 在庫行 (sku_stock) を
1 つのトランザクションで同時に更新する。片方だけが反映された状態は存在しない。

アプリケーション側のロックは一切使わない。
同時実行の整合性はすべてコミット時に評価される条件（主キー / WHERE 句）で守る。

  allocate   : 割り当て行を INSERT（未存在が条件）+ 在庫を減算（units >= 要求数が条件）
  deallocate : 割り当て行のステータスを期待値から遷移 + 在庫を加算
  complete   : 割り当て行のステータスを期待値から遷移（在庫は変えない）
  restock    : 入荷ロット行を INSERT（未存在が条件）+ 在庫を加算（行が無ければ作る）
"""

import logging

from sqlalchemy import text
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .commands import (
    AllocateOrderStockCommand,
    CompleteOrderPaymentAcceptedCommand,
    DeallocateOrderPaymentRejectedCommand,
    RestockSkuCommand,
)
from .result import FailureKind, Result, make_failure, make_success

logger = logging.getLogger(__name__)


class _ConditionFailed(Exception):
    """条件付き書き込みが拒否された。トランザクションをロールバックさせるために使う。"""

    def __init__(self, failure_kind: FailureKind, error: Exception | str) -> None:
        super().__init__(str(error))
        self.failure_kind = failure_kind
        self.error = error


def _invalid_command(expected: type, command) -> Result:
    logger.error("Expected %s but got %r", expected.__name__, command)
    return make_failure(
        FailureKind.INVALID_ARGUMENTS,
        f"Expected {expected.__name__} but got {command!r}",
        False,
    )


class StockLedgerClient:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def allocate_order_stock(self, command: AllocateOrderStockCommand) -> Result:
        """
        在庫割り当て

        - 割り当て行が既にある      → DuplicateStockAllocationError（以前の試行が成功済み）
        - 在庫が足りない / SKU が無い → DepletedStockAllocationError（業務上の拒否）
        - それ以外                  → UnrecognizedError（一時的）

        重複の判定を先に行う。重複なら操作は既に成功しているので、
        在庫不足かどうかは問題にならない。
        """
        if not isinstance(command, AllocateOrderStockCommand):
            return _invalid_command(AllocateOrderStockCommand, command)

        data = command.command_data

        async def _write(session: AsyncSession) -> None:
            try:
                await session.execute(
                    text("""
                        INSERT INTO stock_allocations
                            (sku, order_id, units, price, user_id, allocation_status, created_at, updated_at)
                        VALUES
                            (:sku, :order_id, :units, :price, :user_id, :status, :created_at, :updated_at)
                    """),
                    {
                        "sku": data.sku,
                        "order_id": data.order_id,
                        "units": data.units,
                        "price": data.price,
                        "user_id": data.user_id,
                        "status": data.allocation_status.value,
                        "created_at": data.created_at,
                        "updated_at": data.updated_at,
                    },
                )
            except IntegrityError as error:
                raise _ConditionFailed(FailureKind.DUPLICATE_STOCK_ALLOCATION, error) from error

            result = await session.execute(
                text("""
                    UPDATE sku_stock
                    SET units = units - :units, updated_at = :updated_at
                    WHERE sku = :sku AND units >= :units
                """),
                {"sku": data.sku, "units": data.units, "updated_at": data.updated_at},
            )
            if result.rowcount != 1:
                raise _ConditionFailed(
                    FailureKind.DEPLETED_STOCK_ALLOCATION,
                    f"Not enough stock for sku {data.sku} to allocate {data.units} units",
                )

        return await self._transact("allocate_order_stock", _write)

    async def deallocate_order_stock(self, command: DeallocateOrderPaymentRejectedCommand) -> Result:
        """
        在庫解放（補償）

        割り当て行のステータスが expected_allocation_status と一致するときだけ遷移し、
        同じトランザクションで在庫を戻す。既に遷移済みなら拒否される（再適用はされない）。
        """
        if not isinstance(command, DeallocateOrderPaymentRejectedCommand):
            return _invalid_command(DeallocateOrderPaymentRejectedCommand, command)

        data = command.command_data

        async def _write(session: AsyncSession) -> None:
            await self._transition_allocation(session, command, FailureKind.INVALID_STOCK_DEALLOCATION)
            result = await session.execute(
                text("""
                    UPDATE sku_stock
                    SET units = units + :units, updated_at = :updated_at
                    WHERE sku = :sku
                """),
                {"sku": data.sku, "units": data.units, "updated_at": data.updated_at},
            )
            if result.rowcount != 1:
                raise _ConditionFailed(
                    FailureKind.INVALID_STOCK_DEALLOCATION,
                    f"No stock row for sku {data.sku}",
                )

        return await self._transact("deallocate_order_stock", _write)

    async def complete_order_stock(self, command: CompleteOrderPaymentAcceptedCommand) -> Result:
        if not isinstance(command, CompleteOrderPaymentAcceptedCommand):
            return _invalid_command(CompleteOrderPaymentAcceptedCommand, command)

        async def _write(session: AsyncSession) -> None:
            await self._transition_allocation(session, command, FailureKind.INVALID_STOCK_COMPLETION)

        return await self._transact("complete_order_stock", _write)

    async def restock_sku(self, command: RestockSkuCommand) -> Result:
        """
        入荷

        同じ (sku, lot_id) は 1 回しか反映されない。
        2 回目は DuplicateRestockOperationError（非一時的）。
        """
        if not isinstance(command, RestockSkuCommand):
            return _invalid_command(RestockSkuCommand, command)

        data = command.command_data

        async def _write(session: AsyncSession) -> None:
            try:
                await session.execute(
                    text("""
                        INSERT INTO sku_restocks (sku, lot_id, units, created_at, updated_at)
                        VALUES (:sku, :lot_id, :units, :created_at, :updated_at)
                    """),
                    {
                        "sku": data.sku,
                        "lot_id": data.lot_id,
                        "units": data.units,
                        "created_at": data.created_at,
                        "updated_at": data.updated_at,
                    },
                )
            except IntegrityError as error:
                raise _ConditionFailed(FailureKind.DUPLICATE_RESTOCK_OPERATION, error) from error

            await session.execute(
                text("""
                    INSERT INTO sku_stock (sku, units, created_at, updated_at)
                    VALUES (:sku, :units, :created_at, :updated_at)
                    ON CONFLICT (sku) DO UPDATE SET
                        units = sku_stock.units + excluded.units,
                        updated_at = excluded.updated_at
                """),
                {
                    "sku": data.sku,
                    "units": data.units,
                    "created_at": data.created_at,
                    "updated_at": data.updated_at,
                },
            )

        return await self._transact("restock_sku", _write)

    # ── 内部処理 ─────────────────────────────────

    @staticmethod
    async def _transition_allocation(session: AsyncSession, command, failure_kind: FailureKind) -> None:
        data = command.command_data
        result = await session.execute(
            text("""
                UPDATE stock_allocations
                SET allocation_status = :new_status, updated_at = :updated_at
                WHERE sku = :sku
                  AND order_id = :order_id
                  AND units = :units
                  AND allocation_status = :expected_status
            """),
            {
                "sku": data.sku,
                "order_id": data.order_id,
                "units": data.units,
                "updated_at": data.updated_at,
                "new_status": data.allocation_status.value,
                "expected_status": data.expected_allocation_status.value,
            },
        )
        if result.rowcount != 1:
            raise _ConditionFailed(
                failure_kind,
                f"Allocation {data.sku}/{data.order_id} is not in status "
                f"{data.expected_allocation_status.value} with {data.units} units",
            )

    async def _transact(self, operation: str, write) -> Result:
        """write を 1 トランザクションで実行し、結果を分類する。"""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await write(session)
        except _ConditionFailed as rejection:
            logger.warning("%s rejected: %s: %s", operation, rejection.failure_kind.value, rejection)
            return make_failure(rejection.failure_kind, rejection.error, False)
        except DataError as error:
            # 列に収まらない値。リトライしても同じ結果になる
            logger.error("%s rejected by the store: %s", operation, error)
            return make_failure(FailureKind.INVALID_ARGUMENTS, error, False)
        except Exception as error:
            logger.exception("%s failed", operation)
            return make_failure(FailureKind.UNRECOGNIZED, error, True)

        logger.info("%s succeeded", operation)
        return make_success()
