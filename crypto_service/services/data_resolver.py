"""
数据解析服务
根据意图取数：本地库优先（即使数据陈旧也不访问远程），未命中再走数据源搜索；
所有数据在此处统一标准化，任何异常都转换为具名失败，resolve 从不抛出。
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from crypto_service.db.repository import CoinRepository
from crypto_service.exceptions import RemoteRateLimited, RemoteUnavailable, StoreUnavailable
from crypto_service.layers.acquisition import RemoteClient
from crypto_service.layers.cache import CacheGateway, CacheType, make_key
from crypto_service.layers.processing import ProcessingLayer
from crypto_service.models.intent import SINGLE_COIN_INTENTS, Intent, IntentType
from crypto_service.models.market import CoinSnapshot, HistoryPoint
from crypto_service.models.resolution import LookupFailure, Resolution, TrendWindow

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class DataResolver:
    """意图 → 行情数据"""

    def __init__(
        self,
        repository: CoinRepository,
        remote: RemoteClient,
        cache: CacheGateway,
        processing: Optional[ProcessingLayer] = None,
        max_history_points: int = 100,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._repo = repository
        self._remote = remote
        self._cache = cache
        self._proc = processing or ProcessingLayer()
        self._max_history_points = max_history_points
        self._clock = clock

    async def resolve(self, intent: Intent) -> Resolution:
        try:
            if intent.type in SINGLE_COIN_INTENTS:
                return await self._resolve_single(intent)
            if intent.type == IntentType.TREND:
                return await self._resolve_trend(intent)
            if intent.type == IntentType.TOP_LIST:
                return await self._resolve_top(intent)
            # UNKNOWN：无数据可取
            return Resolution()
        except RemoteRateLimited as exc:
            logger.warning(f"数据源限流，无法解析 {intent.type.value}: {exc}")
            return Resolution.fail(LookupFailure.RATE_LIMITED, coin_name=intent.coin)
        except RemoteUnavailable as exc:
            logger.warning(f"数据源不可用，无法解析 {intent.type.value}: {exc}")
            return Resolution.fail(LookupFailure.REMOTE_UNAVAILABLE, coin_name=intent.coin)
        except StoreUnavailable as exc:
            logger.error(f"本地行情库不可用: {exc.message}", exc_info=True)
            return Resolution.fail(LookupFailure.STORE_UNAVAILABLE, coin_name=intent.coin)

    # ── 币种定位 ──────────────────────────────────────────

    async def find_coin(self, coin_name: str) -> Tuple[Optional[CoinSnapshot], Optional[str]]:
        """
        定位币种：先查本地库（按标准化 ID），未命中再在数据源索引中搜索

        Returns:
            (snapshot, origin)，origin 为 "local" / "remote"；均未找到时为 (None, None)
        """
        coin_id = coin_name.lower().strip()
        doc = await self._repo.find_coin(coin_id)
        if doc:
            return self._proc.normalize_coin(doc, origin="local"), "local"

        snapshot = await self._remote.search_coin(coin_id)
        if snapshot is not None:
            return snapshot, "remote"
        return None, None

    async def _resolve_single(self, intent: Intent) -> Resolution:
        snapshot, origin = await self.find_coin(intent.coin or "")
        if snapshot is None:
            return Resolution.fail(LookupFailure.COIN_NOT_FOUND, coin_name=intent.coin)
        return Resolution.success(snapshot, origin=origin)

    # ── 趋势 ──────────────────────────────────────────────

    async def load_history(
        self, coin_id: str, days: int, limit: Optional[int] = None
    ) -> List[HistoryPoint]:
        """读取本地历史价格窗口（最新在前，最多 limit 个点，默认 max_history_points），带旁路缓存"""
        limit = limit or self._max_history_points
        key = make_key(CacheType.HISTORY, coin_id, days, limit)
        cached = await self._cache.get(key)
        if cached is not None:
            return [HistoryPoint.model_validate(p) for p in cached]

        since = self._clock() - timedelta(days=days)
        docs = await self._repo.find_history(coin_id, since, limit=limit)
        points = self._proc.history_from_store(docs)[:limit]
        if points:
            await self._cache.set(
                key,
                [p.model_dump(mode="json") for p in points],
                self._cache.ttl_for(CacheType.HISTORY),
            )
        return points

    async def _resolve_trend(self, intent: Intent) -> Resolution:
        days = intent.days or 30
        snapshot, origin = await self.find_coin(intent.coin or "")
        if snapshot is None:
            return Resolution.fail(LookupFailure.COIN_NOT_FOUND, coin_name=intent.coin)
        if origin == "remote":
            # 远程搜索到的币种在本地没有历史数据，且不按需拉取
            return Resolution.fail(
                LookupFailure.HISTORY_UNAVAILABLE, coin_name=snapshot.name, origin="remote"
            )

        points = await self.load_history(snapshot.coin_id, days)
        if not points:
            return Resolution.fail(
                LookupFailure.HISTORY_UNAVAILABLE, coin_name=snapshot.name, origin="local"
            )
        return Resolution.success(
            TrendWindow(coin=snapshot, days=days, points=points), origin="local"
        )

    # ── 排行 ──────────────────────────────────────────────

    async def _resolve_top(self, intent: Intent) -> Resolution:
        """市值排行只读本地库，无数据时返回空列表而非失败"""
        docs = await self._repo.top_by_market_cap(intent.limit or 10)
        return Resolution.success(self._proc.normalize_coins(docs, origin="local"), origin="local")
