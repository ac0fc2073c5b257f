"""
Warehouse Service — Redis Streams コンシューマ

コンシューマグループでストリームを読み、バッチごとにコントローラへ渡す。

  - retry_ids 以外の ID はすべて XACK する（処理済み）
  - retry_ids の ID は ack しない。Pending のまま残り、
    retry_idle_ms 経過後に XAUTOCLAIM で取り直して再処理する
  - 配信回数が max_deliveries を超えたメッセージは <stream>:dead-letter に
    XADD してから XACK する（再配信の上限）

Pub/Sub と違い、サービス停止中のメッセージも失われない（少なくとも 1 回配信）。
"""

import asyncio
import logging

import redis.asyncio as aioredis

from .consumer import BatchConsumerController, Message

logger = logging.getLogger(__name__)


def dead_letter_stream(stream: str) -> str:
    return f"{stream}:dead-letter"


async def ensure_group(redis_conn: aioredis.Redis, stream: str, group: str) -> None:
    """コンシューマグループを作る。既にあれば (BUSYGROUP) 何もしない。"""
    try:
        await redis_conn.xgroup_create(stream, group, id="0", mkstream=True)
    except aioredis.ResponseError as error:
        if "BUSYGROUP" not in str(error):
            raise


def _to_messages(entries) -> list[Message]:
    return [Message(id=msg_id, body=(fields or {}).get("body")) for msg_id, fields in entries]


async def dead_letter_exhausted(
    redis_conn: aioredis.Redis,
    stream: str,
    group: str,
    entries,
    max_deliveries: int,
) -> list:
    """
    配信回数が上限を超えたエントリを dead-letter ストリームへ移して ack する。

    残りの（まだ処理してよい）エントリを返す。
    """
    remaining = []
    for msg_id, fields in entries:
        pending = await redis_conn.xpending_range(stream, group, min=msg_id, max=msg_id, count=1)
        times_delivered = pending[0]["times_delivered"] if pending else 0
        if times_delivered <= max_deliveries:
            remaining.append((msg_id, fields))
            continue

        logger.error(
            "Dead-lettering message %s on %s/%s after %d deliveries",
            msg_id,
            stream,
            group,
            times_delivered,
        )
        await redis_conn.xadd(
            dead_letter_stream(stream),
            {
                "body": (fields or {}).get("body") or "",
                "source_id": msg_id,
                "deliveries": str(times_delivered),
            },
        )
        await redis_conn.xack(stream, group, msg_id)
    return remaining


async def process_entries(
    redis_conn: aioredis.Redis,
    stream: str,
    group: str,
    controller: BatchConsumerController,
    entries,
) -> list[str]:
    """1 バッチを処理して ack し、再配信対象の ID を返す。"""
    messages = _to_messages(entries)
    if not messages:
        return []

    response = await controller.process_batch(messages)
    retry_ids = set(response.retry_ids)
    ack_ids = [message.id for message in messages if message.id not in retry_ids]
    if ack_ids:
        await redis_conn.xack(stream, group, *ack_ids)
    return response.retry_ids


async def run_consumer(
    redis_conn: aioredis.Redis,
    stream: str,
    group: str,
    consumer_name: str,
    controller: BatchConsumerController,
    shutdown_event: asyncio.Event,
    batch_size: int = 10,
    block_ms: int = 1000,
    retry_idle_ms: int = 30_000,
    max_deliveries: int = 360,
) -> None:
    """
    shutdown_event がセットされるまでストリームを読み続ける。

    各周回で先に XAUTOCLAIM で放置された Pending を取り直し、
    上限を超えたものを dead-letter に移してから残りを処理する。
    その後 XREADGROUP で新着を読む。
    """
    await ensure_group(redis_conn, stream, group)
    logger.info("Consuming %s as %s/%s", stream, group, consumer_name)

    claim_cursor = "0-0"
    while not shutdown_event.is_set():
        try:
            claimed = await redis_conn.xautoclaim(
                stream,
                group,
                consumer_name,
                min_idle_time=retry_idle_ms,
                start_id=claim_cursor,
                count=batch_size,
            )
            claim_cursor = claimed[0]
            if claimed[1]:
                logger.info("Reclaimed %d pending messages on %s", len(claimed[1]), stream)
                entries = await dead_letter_exhausted(redis_conn, stream, group, claimed[1], max_deliveries)
                await process_entries(redis_conn, stream, group, controller, entries)

            entries = await redis_conn.xreadgroup(
                groupname=group,
                consumername=consumer_name,
                streams={stream: ">"},
                count=batch_size,
                block=block_ms,
            )
            for _stream, stream_entries in entries or []:
                await process_entries(redis_conn, stream, group, controller, stream_entries)
        except asyncio.CancelledError:
            logger.info("Consumer for %s cancelled", stream)
            raise
        except Exception:
            logger.exception("Consumer loop error for %s/%s", stream, group)
            await asyncio.sleep(1)

    logger.info("Stopped consuming %s", stream)
