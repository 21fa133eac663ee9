"""
行情问答服务
原始问题 → 分类 → 取数 → 生成回答；任何情况下都返回回答文本，不向调用方抛出异常。
"""

import logging
from dataclasses import dataclass

import httpx

from crypto_service.config import CryptoServiceSettings
from crypto_service.db import Connections
from crypto_service.db.repository import CoinRepository
from crypto_service.layers.acquisition import RemoteClient
from crypto_service.layers.cache import CacheGateway, default_ttls
from crypto_service.layers.processing import ProcessingLayer
from crypto_service.models.intent import Intent
from crypto_service.services.data_resolver import DataResolver
from crypto_service.services.query_classifier import ClassifierDefaults, QueryClassifier
from crypto_service.services.response_formatter import (
    ChatAnswer,
    ResponseFormatter,
    generic_apology,
)

logger = logging.getLogger(__name__)


class ChatService:
    """问答业务服务"""

    def __init__(
        self,
        classifier: QueryClassifier,
        resolver: DataResolver,
        formatter: ResponseFormatter,
    ):
        self._classifier = classifier
        self._resolver = resolver
        self._formatter = formatter

    async def answer_query(self, text: str) -> ChatAnswer:
        """
        回答一条自然语言行情问题

        Args:
            text: 原始问题（非空校验由 HTTP 层负责）

        Returns:
            ChatAnswer(answer, data)
        """
        intent = Intent.unknown()
        try:
            intent = self._classifier.classify(text)
            logger.debug(f"问题分类: {text!r} → {intent.type.value} ({intent.rule})")
            resolution = await self._resolver.resolve(intent)
            if not resolution.ok:
                logger.info(
                    f"问题未能解析: {intent.type.value} coin={intent.coin!r} "
                    f"failure={resolution.failure.value}"
                )
            return self._formatter.format(intent, resolution)
        except Exception as exc:
            logger.error(f"问答处理失败: {text!r}: {exc}", exc_info=True)
            return ChatAnswer(answer=generic_apology(intent))


# ── 依赖装配（进程启动时调用一次） ────────────────────────

@dataclass
class Services:
    processing: ProcessingLayer
    repository: CoinRepository
    cache: CacheGateway
    remote: RemoteClient
    resolver: DataResolver
    chat: ChatService


def build_services(
    cfg: CryptoServiceSettings, conns: Connections, http: httpx.AsyncClient
) -> Services:
    """根据配置与已建立的连接装配问答流水线"""
    processing = ProcessingLayer()
    cache = CacheGateway(conns.redis, default_ttls(cfg))
    repository = CoinRepository(conns.mongo_db)
    remote = RemoteClient.from_settings(cfg, http, cache, processing=processing)
    resolver = DataResolver(
        repository,
        remote,
        cache,
        processing=processing,
        max_history_points=cfg.MAX_HISTORY_POINTS,
    )
    classifier = QueryClassifier(
        defaults=ClassifierDefaults(
            trend_days=cfg.DEFAULT_TREND_DAYS,
            top_limit=cfg.DEFAULT_TOP_LIMIT,
            max_top_limit=cfg.MAX_TOP_LIMIT,
        )
    )
    chat = ChatService(classifier, resolver, ResponseFormatter(processing))
    return Services(processing, repository, cache, remote, resolver, chat)
