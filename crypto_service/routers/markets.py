"""
实时行情路由（直连 CoinGecko，带旁路缓存）
GET /api/markets/live                  - 市值排行实时行情
GET /api/markets/{coin_id}/history     - 数据源每日历史价格（429 自动退避重试）
"""

from fastapi import APIRouter, Depends, Query

from crypto_service.layers.cache import CacheType, make_key
from crypto_service.models.response import ApiResponse
from crypto_service.routers.dependencies import get_services
from crypto_service.services.chat_service import Services

router = APIRouter(prefix="/api/markets", tags=["实时行情"])


@router.get("/live", response_model=ApiResponse)
async def live_markets(
    limit: int = Query(default=10, ge=1, le=250),
    services: Services = Depends(get_services),
):
    """按市值降序获取实时行情"""
    cache = services.cache
    key = make_key(CacheType.COINS, "live", limit)
    cached = await cache.get(key)
    if cached is not None:
        return ApiResponse.ok(data={"count": len(cached), "coins": cached}, message="cache")

    coins = [c.model_dump(mode="json") for c in await services.remote.fetch_markets(limit)]
    await cache.set(key, coins, cache.ttl_for(CacheType.COINS))
    return ApiResponse.ok(data={"count": len(coins), "coins": coins})


@router.get("/{coin_id}/history", response_model=ApiResponse)
async def remote_history(
    coin_id: str,
    days: int = Query(default=30, ge=1, le=365),
    services: Services = Depends(get_services),
):
    """从数据源获取每日历史价格（按时间正序）"""
    coin_id = coin_id.lower().strip()
    cache = services.cache
    key = make_key(CacheType.HISTORY, "remote", coin_id, days)
    cached = await cache.get(key)
    if cached is None:
        points = await services.remote.fetch_history(coin_id, days)
        cached = [p.model_dump(mode="json") for p in services.processing.chronological(points)]
        if cached:
            await cache.set(key, cached, cache.ttl_for(CacheType.HISTORY))
    return ApiResponse.ok(data={"coinId": coin_id, "days": days, "history": cached})
