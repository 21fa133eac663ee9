"""
Layer 2 – 缓存层
Redis 旁路缓存（cache-aside）：调用方先 get，未命中再做实际工作并 set。
存储未配置或不可达时，get / set 均降级为空操作，绝不抛出异常。

键格式：crypto:<type>:<arg1>:<arg2>...，type ∈ {coins, history, search}
"""

import hashlib
import json
import logging
from enum import Enum
from typing import Any, Dict, Optional

from redis.asyncio import Redis

from crypto_service.config import CryptoServiceSettings

logger = logging.getLogger(__name__)

KEY_PREFIX = "crypto"


class CacheType(str, Enum):
    COINS = "coins"
    HISTORY = "history"
    SEARCH = "search"


def make_key(cache_type: CacheType, *args: Any) -> str:
    """生成规范化缓存键"""
    raw = ":".join([KEY_PREFIX, CacheType(cache_type).value] + [str(a) for a in args])
    if len(raw) > 200:
        raw = f"{KEY_PREFIX}:{CacheType(cache_type).value}:" + hashlib.md5(raw.encode()).hexdigest()
    return raw


def default_ttls(cfg: CryptoServiceSettings) -> Dict[CacheType, int]:
    return {
        CacheType.COINS: cfg.CACHE_TTL_COINS,
        CacheType.HISTORY: cfg.CACHE_TTL_HISTORY,
        CacheType.SEARCH: cfg.CACHE_TTL_SEARCH,
    }


class CacheGateway:
    """
    键值 + TTL 缓存网关

    Args:
        redis: 异步 Redis 客户端（需 decode_responses=True）；None 表示未配置
        ttls: 各缓存类型的固定 TTL（秒）
    """

    def __init__(self, redis: Optional[Redis], ttls: Dict[CacheType, int]):
        self._redis = redis
        self._ttls = dict(ttls)

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    def ttl_for(self, cache_type: CacheType) -> int:
        return self._ttls[CacheType(cache_type)]

    async def get(self, key: str, default: Any = None) -> Any:
        """
        读取缓存

        未命中返回 default。已缓存的 None（负结果）会原样返回 None，
        调用方可传入哨兵对象作为 default 来区分“未命中”与“缓存了空结果”。
        """
        if self._redis is None:
            logger.debug(f"缓存未配置，跳过读取: {key}")
            return default
        try:
            raw = await self._redis.get(key)
        except Exception as exc:
            logger.debug(f"Redis 读取失败: {key}: {exc}")
            return default
        if raw is None:
            logger.debug(f"缓存未命中: {key}")
            return default
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.debug(f"缓存内容无法解析，按未命中处理: {key}: {exc}")
            return default
        logger.debug(f"缓存命中: {key}")
        return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        """写入缓存并设置过期时间；value 需可 JSON 序列化"""
        if self._redis is None:
            logger.debug(f"缓存未配置，跳过写入: {key}")
            return
        try:
            serialized = json.dumps(value, ensure_ascii=False, default=str)
            await self._redis.setex(key, ttl, serialized)
            logger.debug(f"缓存写入: {key}, TTL: {ttl}s")
        except Exception as exc:
            logger.debug(f"Redis 写入失败: {key}: {exc}")
