"""
数据库连接管理模块
统一管理 MongoDB（异步，本地行情库）和 Redis（异步，缓存）连接

连接在应用启动时创建一次，以 Connections 对象显式传递给下游组件；
任一后端连接失败时对应句柄为 None，服务降级运行。
"""

import logging
from dataclasses import dataclass
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from redis.asyncio import Redis, ConnectionPool

from crypto_service.config import CryptoServiceSettings

logger = logging.getLogger(__name__)


@dataclass
class Connections:
    """进程级连接句柄集合"""

    mongo_client: Optional[AsyncIOMotorClient] = None
    mongo_db: Optional[AsyncIOMotorDatabase] = None
    redis: Optional[Redis] = None
    redis_pool: Optional[ConnectionPool] = None


async def init_mongodb(cfg: CryptoServiceSettings, conns: Connections) -> bool:
    """初始化 MongoDB 异步连接，返回是否成功"""
    if not cfg.MONGODB_ENABLED:
        logger.info("MongoDB 未启用，本地行情库视为空库")
        return False
    try:
        client = AsyncIOMotorClient(
            cfg.MONGO_URI,
            maxPoolSize=cfg.MONGO_MAX_CONNECTIONS,
            minPoolSize=cfg.MONGO_MIN_CONNECTIONS,
            serverSelectionTimeoutMS=cfg.MONGO_SERVER_SELECTION_TIMEOUT_MS,
            connectTimeoutMS=cfg.MONGO_CONNECT_TIMEOUT_MS,
            socketTimeoutMS=cfg.MONGO_SOCKET_TIMEOUT_MS,
        )
        await client.admin.command("ping")
        conns.mongo_client = client
        conns.mongo_db = client[cfg.MONGODB_DATABASE]
        logger.info(f"✅ MongoDB 连接成功: {cfg.MONGODB_HOST}:{cfg.MONGODB_PORT}")
        return True
    except Exception as exc:
        logger.warning(f"⚠️ MongoDB 连接失败（本地库不可用，全部走远程数据源）: {exc}")
        conns.mongo_client = None
        conns.mongo_db = None
        return False


async def init_redis(cfg: CryptoServiceSettings, conns: Connections) -> bool:
    """初始化 Redis 异步连接，返回是否成功"""
    if not cfg.REDIS_ENABLED:
        logger.info("Redis 未启用，缓存降级为直通模式")
        return False
    try:
        pool = ConnectionPool.from_url(
            cfg.REDIS_URL,
            max_connections=cfg.REDIS_MAX_CONNECTIONS,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=10,
        )
        client = Redis(connection_pool=pool)
        await client.ping()
        conns.redis = client
        conns.redis_pool = pool
        logger.info(f"✅ Redis 连接成功: {cfg.REDIS_HOST}:{cfg.REDIS_PORT}")
        return True
    except Exception as exc:
        logger.warning(f"⚠️ Redis 连接失败（缓存降级为直通模式）: {exc}")
        conns.redis = None
        conns.redis_pool = None
        return False


async def open_connections(cfg: CryptoServiceSettings) -> Connections:
    """建立全部连接，失败的后端以 None 表示"""
    conns = Connections()
    await init_mongodb(cfg, conns)
    await init_redis(cfg, conns)
    return conns


async def close_connections(conns: Connections) -> None:
    """关闭所有数据库连接"""
    if conns.mongo_client:
        conns.mongo_client.close()
        conns.mongo_client = None
        conns.mongo_db = None
        logger.info("MongoDB 连接已关闭")
    if conns.redis:
        await conns.redis.aclose()
        conns.redis = None
    if conns.redis_pool:
        await conns.redis_pool.disconnect()
        conns.redis_pool = None
        logger.info("Redis 连接已关闭")


async def check_health(conns: Connections, cfg: CryptoServiceSettings) -> dict:
    """检查所有数据库连接健康状态"""
    result = {
        "mongodb": {"status": "disabled"},
        "redis": {"status": "disabled"},
    }
    if conns.mongo_client:
        try:
            await conns.mongo_client.admin.command("ping")
            result["mongodb"] = {"status": "healthy", "host": cfg.MONGODB_HOST}
        except Exception as exc:
            result["mongodb"] = {"status": "unhealthy", "error": str(exc)}
    elif cfg.MONGODB_ENABLED:
        result["mongodb"] = {"status": "disconnected"}

    if conns.redis:
        try:
            await conns.redis.ping()
            result["redis"] = {"status": "healthy", "host": cfg.REDIS_HOST}
        except Exception as exc:
            result["redis"] = {"status": "unhealthy", "error": str(exc)}
    elif cfg.REDIS_ENABLED:
        result["redis"] = {"status": "disconnected"}

    return result
