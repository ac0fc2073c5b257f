"""
Warehouse Service — テーブル定義

在庫台帳とイベントストアの DDL。PostgreSQL / SQLite の両方で動く SQL のみを使う。

条件付き書き込みはすべて主キーと WHERE 句で表現する:
  - 「まだ存在しないこと」 → 主キーへの INSERT（一意制約違反 = 条件不成立）
  - 「期待値と一致すること」 → UPDATE ... WHERE（更新 0 行 = 条件不成立）

列の長さ・桁数は validators.py の上限と揃える。
sku_stock.units は入荷の累積で INTEGER を超えうるので BIGINT。
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from .validators import MAX_ID_LENGTH, MAX_TIMESTAMP_LENGTH

_ID = f"VARCHAR({MAX_ID_LENGTH})"
_TS = f"VARCHAR({MAX_TIMESTAMP_LENGTH})"
# SKU#<sku>#LOT_ID#<lot_id>
_AGGREGATE_ID = f"VARCHAR({MAX_ID_LENGTH * 2 + 16})"

DDL = [
    f"""
    CREATE TABLE IF NOT EXISTS sku_stock (
        sku         {_ID} PRIMARY KEY,
        units       BIGINT NOT NULL,
        created_at  {_TS} NOT NULL,
        updated_at  {_TS} NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS stock_allocations (
        sku                {_ID}          NOT NULL,
        order_id           {_ID}          NOT NULL,
        units              INTEGER        NOT NULL,
        price              NUMERIC(12, 2) NOT NULL,
        user_id            {_ID}          NOT NULL,
        allocation_status  VARCHAR(64)    NOT NULL,
        created_at         {_TS}          NOT NULL,
        updated_at         {_TS}          NOT NULL,
        PRIMARY KEY (sku, order_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS sku_restocks (
        sku         {_ID}   NOT NULL,
        lot_id      {_ID}   NOT NULL,
        units       INTEGER NOT NULL,
        created_at  {_TS}   NOT NULL,
        updated_at  {_TS}   NOT NULL,
        PRIMARY KEY (sku, lot_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS event_store (
        aggregate_id    {_AGGREGATE_ID} NOT NULL,
        aggregate_type  VARCHAR(64)     NOT NULL,
        event_name      VARCHAR(64)     NOT NULL,
        event_data      TEXT            NOT NULL,
        created_at      {_TS}           NOT NULL,
        updated_at      {_TS}           NOT NULL,
        PRIMARY KEY (aggregate_id, event_name)
    )
    """,
]


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for statement in DDL:
            await conn.execute(text(statement))
