"""
测试公共夹具
  - FakeRedis      : 带可控时钟的内存 Redis（get / setex / ping）
  - FakeRepository : 内存版本地行情库
  - make_remote    : 以 httpx.MockTransport 驱动的 RemoteClient 工厂
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

# 确保仓库根目录在 sys.path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from crypto_service.db.repository import CoinRepository  # noqa: E402
from crypto_service.layers.acquisition import RemoteClient  # noqa: E402
from crypto_service.layers.cache import CacheGateway, CacheType  # noqa: E402
from crypto_service.models.market import to_finite_float  # noqa: E402

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
BASE_URL = "https://api.coingecko.com/api/v3"
TTLS = {CacheType.COINS: 60, CacheType.HISTORY: 300, CacheType.SEARCH: 3600}


class FakeRedis:
    """只实现用到的命令；过期时间按 self.now（秒）判断"""

    def __init__(self):
        self.now = 0.0
        self.store: Dict[str, tuple] = {}
        self.fail = False

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def get(self, key: str) -> Optional[str]:
        if self.fail:
            raise ConnectionError("redis down")
        item = self.store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self.now >= expires_at:
            del self.store[key]
            return None
        return value

    async def setex(self, key: str, ttl: int, value: str) -> bool:
        if self.fail:
            raise ConnectionError("redis down")
        self.store[key] = (value, self.now + ttl)
        return True

    async def ping(self) -> bool:
        return True


class FakeRepository(CoinRepository):
    """内存版行情库；coins 为文档列表，history 为 coin_id → 文档列表"""

    def __init__(self, coins: Optional[List[dict]] = None, history: Optional[Dict[str, List[dict]]] = None):
        super().__init__(None)
        self.coins = list(coins or [])
        self.history = dict(history or {})
        self.find_coin_calls: List[str] = []
        self.queries: List[dict] = []

    async def find_coin(self, coin_id: str):
        self.find_coin_calls.append(coin_id)
        return next((c for c in self.coins if c["coingecko_id"] == coin_id), None)

    async def find_history(self, coin_id, since, limit=None):
        docs = [d for d in self.history.get(coin_id, []) if d["timestamp"] >= since]
        docs.sort(key=lambda d: d["timestamp"], reverse=True)
        return docs[:limit] if limit else docs

    async def top_by_market_cap(self, limit: int):
        return sorted(self.coins, key=lambda c: c.get("market_cap") or 0, reverse=True)[:limit]

    async def list_coins(self, query, sort_by="marketCap", sort_order="desc", skip=0, limit=50):
        self.queries.append(query)
        ranked = await self.top_by_market_cap(len(self.coins))
        return ranked[skip:skip + limit]

    async def count_coins(self, query) -> int:
        return len(self.coins)

    async def market_stats(self):
        if not self.coins:
            return {}
        prices = [to_finite_float(c.get("current_price")) for c in self.coins]
        caps = [to_finite_float(c.get("market_cap")) for c in self.coins]
        return {
            "total": len(self.coins),
            "min_price": min(prices),
            "max_price": max(prices),
            "min_market_cap": min(caps),
            "max_market_cap": max(caps),
        }


def coin_doc(coin_id: str, name: str, symbol: str, price: Any, market_cap: Any = 0, **extra) -> dict:
    doc = {
        "coingecko_id": coin_id,
        "name": name,
        "symbol": symbol,
        "current_price": price,
        "market_cap": market_cap,
        "price_change_24h": extra.pop("change", "0"),
        "volume_24h": extra.pop("volume", "0"),
        "last_updated": NOW,
    }
    doc.update(extra)
    return doc


def history_docs(coin_id: str, prices_oldest_first: List[float]) -> List[dict]:
    n = len(prices_oldest_first)
    return [
        {"coingecko_id": coin_id, "timestamp": NOW - timedelta(days=n - 1 - i), "price": str(p)}
        for i, p in enumerate(prices_oldest_first)
    ]


class Provider:
    """MockTransport 请求处理器：按路径返回预设响应并记录请求"""

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes = dict(routes or {})
        self.requests: List[httpx.Request] = []

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.replace("/api/v3/", "", 1)
        route = self.routes.get(path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        if isinstance(route, httpx.Response):
            # 每次返回新的响应对象，同一路由可被多次请求
            return httpx.Response(route.status_code, content=route.content)
        return httpx.Response(200, json=route)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis) -> CacheGateway:
    return CacheGateway(fake_redis, TTLS)


@pytest.fixture
def make_remote(cache) -> Callable[..., RemoteClient]:
    def _factory(provider: Provider, sleep: Optional[AsyncMock] = None, gateway: Optional[CacheGateway] = None):
        http = httpx.AsyncClient(transport=httpx.MockTransport(provider))
        return RemoteClient(
            http,
            gateway or cache,
            base_url=BASE_URL,
            sleep=sleep or AsyncMock(),
        )
    return _factory
