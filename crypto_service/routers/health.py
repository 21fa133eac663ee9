"""健康检查路由"""

import time

from fastapi import APIRouter, Request

from crypto_service import __version__
from crypto_service.config import settings
from crypto_service.db import check_health

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health(request: Request):
    """服务健康检查（含 MongoDB / Redis 状态）"""
    db_health = await check_health(request.app.state.connections, settings)
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "Crypto Chat Service",
            "databases": db_health,
        },
        "message": "服务运行正常",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request):
    """Kubernetes readiness probe：服务装配完成即就绪"""
    return {"ready": getattr(request.app.state, "services", None) is not None}
