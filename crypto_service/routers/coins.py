"""
本地行情路由
GET /api/coins                     - 币种列表（排行 / 分页 / 搜索 / 价格与市值筛选 / 排序）
GET /api/coins/metadata            - 本地库概要（总数 / 价格区间 / 市值区间）
GET /api/coins/{coin_id}/history   - 本地历史价格
"""

import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from crypto_service.models.response import ApiResponse
from crypto_service.routers.dependencies import get_services
from crypto_service.services.chat_service import Services

router = APIRouter(prefix="/api/coins", tags=["本地行情"])

_DEFAULT_PAGE_SIZE = 50

# 空库时筛选控件使用的默认区间
_DEFAULT_MAX_PRICE = 100000.0
_DEFAULT_MAX_MARKET_CAP = 1e12


@router.get("/metadata", response_model=ApiResponse)
async def coins_metadata(services: Services = Depends(get_services)):
    """本地库概要：币种总数、价格区间、市值区间（供筛选控件使用）"""
    stats = await services.repository.market_stats()
    return ApiResponse.ok(
        data={
            "totalCount": stats.get("total", 0),
            "priceRange": {
                "min": stats.get("min_price") or 0.0,
                "max": stats.get("max_price") or _DEFAULT_MAX_PRICE,
            },
            "marketCapRange": {
                "min": stats.get("min_market_cap") or 0.0,
                "max": stats.get("max_market_cap") or _DEFAULT_MAX_MARKET_CAP,
            },
        },
    )


@router.get("", response_model=ApiResponse)
async def list_coins(
    top: Optional[int] = Query(default=None, ge=1, le=100, description="市值前 N 名"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=_DEFAULT_PAGE_SIZE, ge=1, le=100, alias="pageSize"),
    search: Optional[str] = Query(default=None, description="名称 / 代码 / ID 模糊搜索"),
    min_market_cap: Optional[float] = Query(default=None, alias="minMarketCap"),
    max_market_cap: Optional[float] = Query(default=None, alias="maxMarketCap"),
    min_price: Optional[float] = Query(default=None, alias="minPrice"),
    max_price: Optional[float] = Query(default=None, alias="maxPrice"),
    sort_by: str = Query(default="marketCap", alias="sortBy", pattern="^(marketCap|price|volume|change)$"),
    sort_order: str = Query(default="desc", alias="sortOrder", pattern="^(asc|desc)$"),
    services: Services = Depends(get_services),
):
    """获取本地币种列表"""
    repo = services.repository
    limit = top or page_size
    skip = 0 if top else (page - 1) * page_size
    query = repo.build_filter(
        search=search.strip().lower() if search else None,
        min_market_cap=min_market_cap,
        max_market_cap=max_market_cap,
        min_price=min_price,
        max_price=max_price,
    )
    total = await repo.count_coins(query)
    docs = await repo.list_coins(query, sort_by=sort_by, sort_order=sort_order, skip=skip, limit=limit)
    coins = services.processing.normalize_coins(docs, origin="local")
    return ApiResponse.ok(
        data={
            "coins": [c.model_dump(mode="json") for c in coins],
            "pagination": {
                "total": total,
                "page": 1 if top else page,
                "pageSize": limit,
                "totalPages": math.ceil(total / limit) if limit else 0,
            },
        },
    )


@router.get("/{coin_id}/history", response_model=ApiResponse)
async def get_coin_history(
    coin_id: str,
    days: int = Query(default=30, ge=1, le=365),
    services: Services = Depends(get_services),
):
    """获取本地库中的历史价格（按时间正序，便于绘图）"""
    coin_id = coin_id.lower().strip()
    doc = await services.repository.find_coin(coin_id)
    if not doc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"币种 '{coin_id}' 不存在",
        )
    proc = services.processing
    coin = proc.normalize_coin(doc, origin="local")
    points = await services.resolver.load_history(coin_id, days, limit=days + 1)
    return ApiResponse.ok(
        data={
            "coinId": coin.coin_id,
            "coinName": coin.name,
            "symbol": coin.symbol,
            "days": days,
            "history": [p.model_dump(mode="json") for p in proc.chronological(points)],
        },
    )
