"""
加密货币行情问答服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn crypto_service.main:app --host 0.0.0.0 --port 8002
    python -m crypto_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crypto_service import __version__
from crypto_service import db
from crypto_service.config import settings
from crypto_service.exceptions import (
    CryptoServiceError,
    RemoteRateLimited,
    RemoteUnavailable,
    StoreUnavailable,
)
from crypto_service.routers import chat, coins, health, markets
from crypto_service.services.chat_service import build_services

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子：建立连接并一次性装配服务"""
    logger.info("=" * 60)
    logger.info(f"🚀 Crypto Chat Service v{__version__} 启动中")
    logger.info(f"   MongoDB   : {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
    logger.info(f"   Redis     : {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    logger.info(f"   CoinGecko : {settings.COINGECKO_BASE_URL}")
    logger.info("=" * 60)

    # 初始化数据库连接（失败不阻断启动，降级运行）
    conns = await db.open_connections(settings)
    if conns.mongo_db is not None and conns.redis is not None:
        logger.info("✅ 所有数据库连接就绪")
    elif conns.mongo_db is not None:
        logger.warning("⚠️ Redis 不可用，缓存降级为直通模式")
    elif conns.redis is not None:
        logger.warning("⚠️ MongoDB 不可用，所有查询将走远程数据源")
    else:
        logger.warning("⚠️ 数据库均不可用，无缓存且仅使用远程数据源")

    http = httpx.AsyncClient(
        timeout=settings.COINGECKO_TIMEOUT,
        headers={"Accept": "application/json"},
        follow_redirects=True,
    )
    app.state.connections = conns
    app.state.services = build_services(settings, conns, http)

    yield

    logger.info("🔄 行情问答服务正在关闭...")
    await http.aclose()
    await db.close_connections(conns)
    logger.info("✅ 行情问答服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="Crypto Chat Service",
    description=(
        "加密货币行情问答微服务，提供以下功能：\n"
        "- 💬 规则匹配的自然语言行情问答（价格 / 趋势 / 成交量 / 涨跌幅 / 市值 / 排行）\n"
        "- 📊 本地行情库查询（MongoDB）\n"
        "- 🌐 CoinGecko 实时行情（429 指数退避重试）\n"
        "- 🗄️ Redis 旁路缓存（不可用时自动降级）\n\n"
        "**分层架构**\n"
        "```\n"
        "Acquisition Layer  ← 从 CoinGecko 拉取原始数据\n"
        "Cache Layer        ← Redis 旁路缓存\n"
        "Processing Layer   ← 数据清洗、标准化、趋势计算\n"
        "Services           ← 分类 → 取数 → 回答\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 异常处理 ──────────────────────────────────────────────
_ERROR_STATUS = {
    RemoteRateLimited: 429,
    RemoteUnavailable: 502,
    StoreUnavailable: 503,
}


@app.exception_handler(CryptoServiceError)
async def service_exception_handler(request: Request, exc: CryptoServiceError):
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    logger.warning(f"请求失败 {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"success": False, **exc.to_dict()},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "内部服务错误", "message": str(exc)},
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(chat.router)
app.include_router(coins.router)
app.include_router(markets.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Crypto Chat Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "crypto_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
