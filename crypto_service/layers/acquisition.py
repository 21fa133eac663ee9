"""
Layer 1 – 数据获取层
从 CoinGecko 拉取行情列表、每日历史价格与全量币种索引，
在边界处完成标准化，向上层只暴露 CoinSnapshot / HistoryPoint。
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from crypto_service.config import CryptoServiceSettings
from crypto_service.exceptions import RemoteRateLimited, RemoteUnavailable
from crypto_service.layers.cache import CacheGateway, CacheType, make_key
from crypto_service.layers.processing import ProcessingLayer
from crypto_service.models.market import CoinSnapshot, HistoryPoint

logger = logging.getLogger(__name__)

_MAX_PER_PAGE = 250
_MISS = object()


def match_coin(index: Sequence[Dict[str, Any]], query: str) -> Optional[Dict[str, Any]]:
    """
    在币种索引中查找

    先按 id / symbol / name 精确匹配（索引顺序中第一个命中者胜出），
    无精确匹配时再按 name / symbol 子串匹配，同样取第一个。
    """
    q = query.lower().strip()
    if not q:
        return None

    def _field(coin: Dict[str, Any], name: str) -> str:
        return str(coin.get(name) or "").lower()

    for coin in index:
        if q in (_field(coin, "id"), _field(coin, "symbol"), _field(coin, "name")):
            return coin
    for coin in index:
        if q in _field(coin, "name") or q in _field(coin, "symbol"):
            return coin
    return None


class RemoteClient:
    """CoinGecko 数据源客户端"""

    def __init__(
        self,
        http: httpx.AsyncClient,
        cache: CacheGateway,
        processing: Optional[ProcessingLayer] = None,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: Optional[str] = None,
        max_retries: int = 3,
        retry_base_delay: float = 10.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self._http = http
        self._cache = cache
        self._proc = processing or ProcessingLayer()
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(
        cls,
        cfg: CryptoServiceSettings,
        http: httpx.AsyncClient,
        cache: CacheGateway,
        processing: Optional[ProcessingLayer] = None,
    ) -> "RemoteClient":
        return cls(
            http,
            cache,
            processing=processing,
            base_url=cfg.COINGECKO_BASE_URL,
            api_key=cfg.COINGECKO_API_KEY,
            max_retries=cfg.COINGECKO_MAX_RETRIES,
            retry_base_delay=cfg.COINGECKO_RETRY_BASE_DELAY,
        )

    # ── HTTP ──────────────────────────────────────────────

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """发起 GET 请求；429 → RemoteRateLimited，其它失败 → RemoteUnavailable"""
        request_params = dict(params or {})
        if self._api_key:
            request_params["x_cg_demo_api_key"] = self._api_key
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        try:
            response = await self._http.get(url, params=request_params)
        except httpx.HTTPError as exc:
            raise RemoteUnavailable(f"CoinGecko 请求失败: {endpoint}: {exc}") from exc

        if response.status_code == 429:
            raise RemoteRateLimited(f"CoinGecko 限流: {endpoint}")
        if response.is_error:
            raise RemoteUnavailable(
                f"CoinGecko 返回错误: {endpoint}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteUnavailable(f"CoinGecko 响应无法解析: {endpoint}") from exc

    # ── 行情列表 ──────────────────────────────────────────

    async def fetch_markets(self, limit: int = 10) -> List[CoinSnapshot]:
        """按市值降序获取前 limit 个币种的行情"""
        rows = await self._get(
            "coins/markets",
            {
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": max(1, min(limit, _MAX_PER_PAGE)),
                "page": 1,
                "sparkline": "false",
            },
        )
        if not isinstance(rows, list):
            raise RemoteUnavailable("CoinGecko 行情列表格式错误")
        return self._proc.normalize_coins(rows, origin="remote")

    # ── 历史价格（429 指数退避重试） ──────────────────────

    async def fetch_history(self, coin_id: str, days: int = 30) -> List[HistoryPoint]:
        """
        获取每日历史价格，最新在前

        仅对 429 重试：第 n 次重试前等待 base * 2^n 秒（默认 10s / 20s / 40s），
        重试耗尽后抛出 RemoteRateLimited；其它错误立即抛出。
        """
        params = {"vs_currency": "usd", "days": days, "interval": "daily"}
        attempt = 0
        while True:
            try:
                data = await self._get(f"coins/{coin_id}/market_chart", params)
                break
            except RemoteRateLimited as exc:
                if attempt >= self._max_retries:
                    raise RemoteRateLimited(
                        f"CoinGecko 限流，已重试 {attempt} 次: {coin_id}",
                        attempts=attempt + 1,
                    ) from exc
                wait = self._retry_base_delay * (2 ** attempt)
                logger.warning(
                    f"⚠️ CoinGecko 限流，{wait:g}s 后重试（第 {attempt + 1}/{self._max_retries} 次）: {coin_id}"
                )
                await self._sleep(wait)
                attempt += 1

        prices = data.get("prices", []) if isinstance(data, dict) else []
        return self._proc.history_from_provider(prices)

    # ── 币种搜索 ──────────────────────────────────────────

    async def search_coin(self, query: str) -> Optional[CoinSnapshot]:
        """
        在全量币种索引中模糊查找并返回其行情

        结果（包括未找到）缓存 1 小时。搜索仅作参考：数据源异常时记录日志并返回 None。
        """
        normalized = query.lower().strip()
        key = make_key(CacheType.SEARCH, normalized)
        try:
            cached = await self._cache.get(key, default=_MISS)
            if cached is not _MISS:
                return CoinSnapshot.model_validate(cached) if cached else None

            index = await self._get("coins/list", {"include_platform": "false"})
            matched = match_coin(index if isinstance(index, list) else [], normalized)
            if matched is None:
                await self._cache.set(key, None, self._cache.ttl_for(CacheType.SEARCH))
                return None

            rows = await self._get(
                "coins/markets",
                {"vs_currency": "usd", "ids": matched["id"], "sparkline": "false"},
            )
            result = (
                self._proc.normalize_coin(rows[0], origin="remote")
                if isinstance(rows, list) and rows
                else None
            )
            await self._cache.set(
                key,
                result.model_dump(mode="json") if result else None,
                self._cache.ttl_for(CacheType.SEARCH),
            )
            return result
        except Exception as exc:
            logger.warning(f"币种搜索失败，按未找到处理: {query}: {exc}")
            return None
