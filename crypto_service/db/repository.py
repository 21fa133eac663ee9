"""
本地行情库只读访问
集合：
  coins              - 币种最新行情（由独立的入库任务写入）
  historical_prices  - 每日历史价格
本模块从不写库。
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from crypto_service.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

COINS = "coins"
HISTORICAL_PRICES = "historical_prices"

# 排序字段映射：接口参数 → 文档字段
SORT_FIELDS = {
    "marketCap": "market_cap",
    "price": "current_price",
    "volume": "volume_24h",
    "change": "price_change_24h",
}

# 这些字段可能以字符串存储，排序与比较前需转换为数值
NUMERIC_SORT_KEYS = frozenset({"price", "volume", "change"})


def numeric(field: str) -> Dict[str, Any]:
    """聚合表达式：将字段转换为 double，无法解析或缺失时为 0"""
    return {"$convert": {"input": f"${field}", "to": "double", "onError": 0, "onNull": 0}}


class CoinRepository:
    """币种行情仓储；db 为 None 时表现为空库"""

    def __init__(self, db: Optional[AsyncIOMotorDatabase]):
        self._db = db

    @property
    def available(self) -> bool:
        return self._db is not None

    # ── 单币种 ────────────────────────────────────────────

    async def find_coin(self, coin_id: str) -> Optional[Dict[str, Any]]:
        """按 CoinGecko ID 精确查找"""
        if self._db is None:
            return None
        try:
            doc = await self._db[COINS].find_one({"coingecko_id": coin_id})
            if doc is None:
                logger.debug(f"本地库无此币种: {coin_id}")
            return doc
        except PyMongoError as exc:
            raise StoreUnavailable(f"查询币种失败: {coin_id}", details={"error": str(exc)}) from exc

    async def find_history(
        self, coin_id: str, since: datetime, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """读取 since 之后的历史价格，按时间倒序（最新在前）"""
        if self._db is None:
            return []
        try:
            cursor = (
                self._db[HISTORICAL_PRICES]
                .find({"coingecko_id": coin_id, "timestamp": {"$gte": since}})
                .sort("timestamp", -1)
            )
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=limit)
        except PyMongoError as exc:
            raise StoreUnavailable(f"查询历史价格失败: {coin_id}", details={"error": str(exc)}) from exc

    # ── 列表 ──────────────────────────────────────────────

    async def top_by_market_cap(self, limit: int) -> List[Dict[str, Any]]:
        """按市值降序取前 limit 个币种"""
        if self._db is None:
            return []
        try:
            cursor = self._db[COINS].find({}).sort("market_cap", -1).limit(limit)
            return await cursor.to_list(length=limit)
        except PyMongoError as exc:
            raise StoreUnavailable("查询市值排行失败", details={"error": str(exc)}) from exc

    @staticmethod
    def build_filter(
        search: Optional[str] = None,
        min_market_cap: Optional[float] = None,
        max_market_cap: Optional[float] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
    ) -> Dict[str, Any]:
        """构造列表查询条件：名称 / 代码 / ID 模糊匹配 + 市值区间 + 价格区间（按数值比较）"""
        query: Dict[str, Any] = {}
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [
                {"name": pattern},
                {"symbol": pattern},
                {"coingecko_id": pattern},
            ]
        cap: Dict[str, float] = {}
        if min_market_cap is not None:
            cap["$gte"] = min_market_cap
        if max_market_cap is not None:
            cap["$lte"] = max_market_cap
        if cap:
            query["market_cap"] = cap
        price_bounds = []
        if min_price is not None:
            price_bounds.append({"$gte": [numeric("current_price"), min_price]})
        if max_price is not None:
            price_bounds.append({"$lte": [numeric("current_price"), max_price]})
        if price_bounds:
            query["$expr"] = {"$and": price_bounds}
        return query

    async def list_coins(
        self,
        query: Dict[str, Any],
        sort_by: str = "marketCap",
        sort_order: str = "desc",
        skip: int = 0,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        if self._db is None:
            return []
        field = SORT_FIELDS.get(sort_by, "market_cap")
        direction = 1 if sort_order == "asc" else -1
        try:
            if sort_by in NUMERIC_SORT_KEYS:
                pipeline: List[Dict[str, Any]] = [
                    {"$match": query},
                    {"$addFields": {"_sort": numeric(field)}},
                    {"$sort": {"_sort": direction}},
                ]
                if skip:
                    pipeline.append({"$skip": skip})
                pipeline += [{"$limit": limit}, {"$project": {"_sort": 0}}]
                cursor = self._db[COINS].aggregate(pipeline)
            else:
                cursor = (
                    self._db[COINS]
                    .find(query)
                    .sort(field, direction)
                    .skip(skip)
                    .limit(limit)
                )
            return await cursor.to_list(length=limit)
        except PyMongoError as exc:
            raise StoreUnavailable("查询币种列表失败", details={"error": str(exc)}) from exc

    async def count_coins(self, query: Dict[str, Any]) -> int:
        if self._db is None:
            return 0
        try:
            return await self._db[COINS].count_documents(query)
        except PyMongoError as exc:
            raise StoreUnavailable("统计币种数量失败", details={"error": str(exc)}) from exc

    async def market_stats(self) -> Dict[str, Any]:
        """
        统计价格非负的币种：总数、价格区间、市值区间

        Returns:
            {"total", "min_price", "max_price", "min_market_cap", "max_market_cap"}；
            空库时返回空字典
        """
        if self._db is None:
            return {}
        pipeline = [
            {"$addFields": {"_price": numeric("current_price"), "_cap": numeric("market_cap")}},
            {"$match": {"_price": {"$gte": 0}}},
            {
                "$group": {
                    "_id": None,
                    "total": {"$sum": 1},
                    "min_price": {"$min": "$_price"},
                    "max_price": {"$max": "$_price"},
                    "min_market_cap": {"$min": "$_cap"},
                    "max_market_cap": {"$max": "$_cap"},
                }
            },
        ]
        try:
            rows = await self._db[COINS].aggregate(pipeline).to_list(length=1)
        except PyMongoError as exc:
            raise StoreUnavailable("统计行情概要失败", details={"error": str(exc)}) from exc
        if not rows:
            return {}
        stats = dict(rows[0])
        stats.pop("_id", None)
        return stats
