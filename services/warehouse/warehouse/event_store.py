"""
Warehouse Service — イベントストア

ドメインイベントを追記専用で保存する。
(aggregate_id, event_name) が主キーなので、同じイベントは 1 回しか書けない。

  - 初回の書き込み          → Success
  - 2 回目以降（一意制約違反）→ DuplicateEventRaisedError（非一時的）
                               呼び出し側は「発行済み」として成功扱いにする
  - それ以外のストア障害     → UnrecognizedError（一時的）
                               存在しない場合のみ書く条件付き INSERT なので、
                               リトライしても二重発行にはならない
"""

import json
import logging

from sqlalchemy import text
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .events import OrderStockAllocatedEvent, OrderStockDepletedEvent, SkuRestockedEvent
from .result import FailureKind, Result, make_failure, make_success

logger = logging.getLogger(__name__)

_RAISABLE_EVENTS = (OrderStockAllocatedEvent, OrderStockDepletedEvent, SkuRestockedEvent)


class EventStoreClient:
    """冪等なイベント発行クライアント (Idempotent Producer)"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def raise_event(self, event) -> Result:
        if not isinstance(event, _RAISABLE_EVENTS):
            logger.error("raise_event exit failure: unexpected event %r", event)
            return make_failure(
                FailureKind.INVALID_ARGUMENTS,
                f"Expected a raisable WarehouseEvent but got {event!r}",
                False,
            )

        payload = event.to_dict()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        text("""
                            INSERT INTO event_store
                                (aggregate_id, aggregate_type, event_name, event_data, created_at, updated_at)
                            VALUES
                                (:agg_id, :agg_type, :event_name, :event_data, :created_at, :updated_at)
                        """),
                        {
                            "agg_id": event.subject_id,
                            "agg_type": event.aggregate_type,
                            "event_name": payload["eventName"],
                            "event_data": json.dumps(payload["eventData"]),
                            "created_at": payload["createdAt"],
                            "updated_at": payload["updatedAt"],
                        },
                    )
        except IntegrityError as error:
            logger.warning(
                "Event already raised: %s %s",
                event.subject_id,
                payload["eventName"],
            )
            return make_failure(FailureKind.DUPLICATE_EVENT_RAISED, error, False)
        except DataError as error:
            logger.error("Event rejected by the store: %s %s: %s", event.subject_id, payload["eventName"], error)
            return make_failure(FailureKind.INVALID_ARGUMENTS, error, False)
        except Exception as error:
            logger.exception("raise_event failed for %s %s", event.subject_id, payload["eventName"])
            return make_failure(FailureKind.UNRECOGNIZED, error, True)

        logger.info("Raised event %s for %s", payload["eventName"], event.subject_id)
        return make_success()


async def load_events(session: AsyncSession, aggregate_id: str) -> list[dict]:
    """指定した集約のイベントを作成順に返す。"""
    result = await session.execute(
        text("""
            SELECT aggregate_id, aggregate_type, event_name, event_data, created_at, updated_at
            FROM event_store
            WHERE aggregate_id = :agg_id
            ORDER BY created_at ASC
        """),
        {"agg_id": aggregate_id},
    )
    return [_event_row(row) for row in result.fetchall()]


async def load_all_events(session: AsyncSession) -> list[dict]:
    """すべてのイベントを時系列順に返す（デバッグ用）。"""
    result = await session.execute(
        text("""
            SELECT aggregate_id, aggregate_type, event_name, event_data, created_at, updated_at
            FROM event_store
            ORDER BY created_at ASC
        """),
    )
    return [_event_row(row) for row in result.fetchall()]


def _event_row(row) -> dict:
    return {
        "aggregateId": row.aggregate_id,
        "aggregateType": row.aggregate_type,
        "eventName": row.event_name,
        "eventData": json.loads(row.event_data)
        if isinstance(row.event_data, str)
        else row.event_data,
        "createdAt": row.created_at,
        "updatedAt": row.updated_at,
    }
