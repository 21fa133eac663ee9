"""
行情问答流水线单元测试

覆盖范围：
  - 问题分类器（规则优先级、参数提取、纯函数性）
  - 数据处理层（数值强制转换、历史价格标准化、趋势计算）
  - 回答生成（金额 / 百分比格式、各意图句式）
  - 数据解析（本地优先、远程回退、趋势窗口、排行）
  - 问答服务端到端场景
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import NOW, FakeRepository, coin_doc, history_docs
from crypto_service.exceptions import RemoteRateLimited, StoreUnavailable
from crypto_service.layers.acquisition import RemoteClient
from crypto_service.layers.processing import ProcessingLayer
from crypto_service.models.intent import Intent, IntentType
from crypto_service.models.market import CoinSnapshot, HistoryPoint
from crypto_service.models.resolution import LookupFailure, Resolution, TrendWindow
from crypto_service.services.chat_service import ChatService
from crypto_service.services.data_resolver import DataResolver
from crypto_service.services.query_classifier import (
    DEFAULT_RULES,
    ClassifierDefaults,
    QueryClassifier,
)
from crypto_service.services.response_formatter import (
    EMPTY_STORE_TEXT,
    HELP_TEXT,
    ResponseFormatter,
    format_currency,
    format_percent,
)


def _remote(search_result=None) -> MagicMock:
    remote = MagicMock(spec=RemoteClient)
    remote.search_coin = AsyncMock(return_value=search_result)
    return remote


def _resolver(repo, remote=None, cache=None) -> DataResolver:
    gateway = cache or MagicMock(
        get=AsyncMock(return_value=None), set=AsyncMock(), ttl_for=MagicMock(return_value=300)
    )
    return DataResolver(repo, remote or _remote(), gateway, clock=lambda: NOW)


def _chat(repo, remote=None) -> ChatService:
    return ChatService(QueryClassifier(), _resolver(repo, remote), ResponseFormatter())


# ─────────────────────────────────────────────────────────
# 1. 问题分类器
# ─────────────────────────────────────────────────────────

class TestQueryClassifier:
    def setup_method(self):
        self.clf = QueryClassifier()

    def test_rule_order(self):
        assert [r.name for r in self.clf.rules] == [
            "price", "trend", "volume", "change", "market_cap", "top_list",
        ]
        assert self.clf.rules == DEFAULT_RULES

    def test_custom_rule_table(self):
        clf = QueryClassifier(rules=DEFAULT_RULES[-1:])
        assert [r.name for r in clf.rules] == ["top_list"]
        assert clf.classify("price of bitcoin").type == IntentType.UNKNOWN
        assert clf.classify("top 3 coins").limit == 3

    def test_price(self):
        intent = self.clf.classify("What is the price of Bitcoin?")
        assert intent.type == IntentType.PRICE and intent.coin == "bitcoin"

    def test_price_wins_over_change(self):
        # 两条规则都包含 “of <coin>”，价格规则在前
        intent = self.clf.classify("what is the price of bitcoin")
        assert intent.type == IntentType.PRICE

    def test_price_change_is_change(self):
        intent = self.clf.classify("What is the price change of ethereum?")
        assert intent.type == IntentType.CHANGE and intent.coin == "ethereum"

    def test_trend_with_days(self):
        intent = self.clf.classify("Show me the 7-day trend of Ethereum")
        assert intent.type == IntentType.TREND
        assert intent.coin == "ethereum" and intent.days == 7

    def test_trend_default_days(self):
        intent = self.clf.classify("history of solana?")
        assert intent.type == IntentType.TREND and intent.days == 30

    def test_trend_days_clamped(self):
        assert self.clf.classify("9999-day trend of btc").days == 365

    def test_volume(self):
        intent = self.clf.classify("What is the 24h trading volume of Cardano?")
        assert intent.type == IntentType.VOLUME and intent.coin == "cardano"

    def test_change(self):
        intent = self.clf.classify("What is the 24h change of Bitcoin?")
        assert intent.type == IntentType.CHANGE and intent.coin == "bitcoin"

    def test_market_cap(self):
        for text in ("What is the market cap of XRP?", "market capitalization of xrp"):
            intent = self.clf.classify(text)
            assert intent.type == IntentType.MARKET_CAP and intent.coin == "xrp"

    def test_top_list(self):
        intent = self.clf.classify("Show me top 3 coins")
        assert intent.type == IntentType.TOP_LIST and intent.limit == 3

    def test_top_list_defaults_and_clamp(self):
        clf = QueryClassifier(defaults=ClassifierDefaults(top_limit=10, max_top_limit=100))
        assert clf.classify("top coins").limit == 10
        assert clf.classify("show me top 500 coins").limit == 100
        assert clf.classify("show me top 0 coins").limit == 1

    def test_top_needs_word_boundary(self):
        for text in ("stop coins", "laptop 5 coins", "desktop coin"):
            assert self.clf.classify(text).type == IntentType.UNKNOWN
        assert self.clf.classify("Show me the top 5 coins").type == IntentType.TOP_LIST

    def test_coin_name_trimmed_and_lowercased(self):
        intent = self.clf.classify("  PRICE   OF   Shiba Inu  ? ")
        assert intent.coin == "shiba inu"

    def test_coin_not_validated(self):
        assert self.clf.classify("price of notacoin").coin == "notacoin"

    def test_unknown(self):
        assert self.clf.classify("banana").type == IntentType.UNKNOWN
        assert self.clf.classify("").type == IntentType.UNKNOWN

    def test_empty_coin_falls_through(self):
        assert self.clf.classify("price of ?").type == IntentType.UNKNOWN

    def test_idempotent(self):
        text = "Show me the 14-day history of dogecoin"
        assert self.clf.classify(text) == self.clf.classify(text)


# ─────────────────────────────────────────────────────────
# 2. 数据处理层
# ─────────────────────────────────────────────────────────

class TestProcessingLayer:
    def setup_method(self):
        self.proc = ProcessingLayer()

    def test_normalize_local_coerces_strings(self):
        coin = self.proc.normalize_coin(
            coin_doc("bitcoin", "Bitcoin", "btc", "45000.50", market_cap=None, volume="abc")
        )
        assert coin.current_price == 45000.5
        assert coin.market_cap == 0.0
        assert coin.volume_24h == 0.0
        assert coin.origin == "local"

    def test_normalize_remote_shape(self):
        coin = self.proc.normalize_coin(
            {
                "id": "ethereum",
                "symbol": "eth",
                "name": "Ethereum",
                "current_price": 3000,
                "total_volume": 1.5e10,
                "price_change_percentage_24h": None,
                "market_cap": float("nan"),
                "last_updated": "2024-06-01T10:00:00.000Z",
            },
            origin="remote",
        )
        assert coin.coin_id == "ethereum"
        assert coin.volume_24h == 1.5e10
        assert coin.price_change_24h == 0.0
        assert coin.market_cap == 0.0
        assert coin.last_updated.year == 2024
        assert coin.origin == "remote"

    def test_history_from_provider_newest_first(self):
        day = 86_400_000
        points = self.proc.history_from_provider([[0, 1], [day, 2], [2 * day, "bad"], ["x", 9]])
        assert [p.price for p in points] == [0.0, 2.0, 1.0]
        assert points[0].timestamp > points[-1].timestamp

    def test_history_from_store(self):
        points = self.proc.history_from_store(history_docs("bitcoin", [100, 110, 105]))
        assert [p.price for p in points] == [105.0, 110.0, 100.0]

    def test_chronological(self):
        points = self.proc.history_from_store(history_docs("bitcoin", [1, 2, 3]))
        assert [p.price for p in self.proc.chronological(points)] == [1.0, 2.0, 3.0]

    def test_trend_change(self):
        points = self.proc.history_from_store(history_docs("bitcoin", [100, 110, 105]))
        stats = self.proc.trend_change(points)
        assert stats.start_price == 100 and stats.end_price == 105
        assert stats.change_pct == pytest.approx(5.0)

    def test_trend_zero_oldest(self):
        points = self.proc.history_from_store(history_docs("x", [0, 5]))
        assert self.proc.trend_change(points).change_pct == 0.0

    def test_trend_single_point(self):
        points = self.proc.history_from_store(history_docs("x", [42]))
        assert self.proc.trend_change(points).change_pct == 0.0

    def test_trend_empty(self):
        assert self.proc.trend_change([]).change_pct == 0.0


# ─────────────────────────────────────────────────────────
# 3. 回答生成
# ─────────────────────────────────────────────────────────

class TestResponseFormatter:
    def setup_method(self):
        self.fmt = ResponseFormatter()
        self.btc = CoinSnapshot(
            coin_id="bitcoin", symbol="btc", name="Bitcoin",
            current_price=45000.5, volume_24h=1234567.891,
            price_change_24h=-2.5, market_cap=880000000000,
        )

    def test_currency(self):
        assert format_currency(45000.5) == "$45,000.50"
        assert format_currency(0) == "$0.00"

    def test_percent(self):
        assert format_percent(5) == "+5.00%"
        assert format_percent(0) == "+0.00%"
        assert format_percent(-0.0) == "+0.00%"
        assert format_percent(-1.234) == "-1.23%"

    def test_volume(self):
        out = self.fmt.format(Intent(type=IntentType.VOLUME, coin="bitcoin"), Resolution.success(self.btc))
        assert out.answer == "The 24-hour trading volume of Bitcoin (BTC) is $1,234,567.89"

    def test_change(self):
        out = self.fmt.format(Intent(type=IntentType.CHANGE, coin="bitcoin"), Resolution.success(self.btc))
        assert out.answer == "The 24-hour price change of Bitcoin (BTC) is -2.50%"

    def test_market_cap(self):
        out = self.fmt.format(Intent(type=IntentType.MARKET_CAP, coin="bitcoin"), Resolution.success(self.btc))
        assert out.answer == "The market capitalization of Bitcoin (BTC) is $880,000,000,000.00"

    def test_unknown_help(self):
        out = self.fmt.format(Intent.unknown(), Resolution())
        assert out.answer == HELP_TEXT
        assert "What is the price of Bitcoin?" in out.answer

    def test_history_unavailable_messages(self):
        intent = Intent(type=IntentType.TREND, coin="pepe", days=7)
        remote = self.fmt.format(intent, Resolution.fail(LookupFailure.HISTORY_UNAVAILABLE, "Pepe", "remote"))
        local = self.fmt.format(intent, Resolution.fail(LookupFailure.HISTORY_UNAVAILABLE, "Pepe", "local"))
        assert remote.answer.startswith("I found Pepe, but I don't have 7-day historical data for it.")
        assert "may still be loading" in local.answer

    def test_rate_limited_and_generic(self):
        intent = Intent(type=IntentType.VOLUME, coin="btc")
        limited = self.fmt.format(intent, Resolution.fail(LookupFailure.RATE_LIMITED))
        broken = self.fmt.format(intent, Resolution.fail(LookupFailure.STORE_UNAVAILABLE))
        assert "rate limiting" in limited.answer
        assert broken.answer == "Sorry, I encountered an error while fetching the volume. Please try again later."

    def test_trend_payload_newest_first(self):
        proc = ProcessingLayer()
        points = proc.history_from_store(history_docs("bitcoin", [100, 110, 105]))
        window = TrendWindow(coin=self.btc, days=3, points=points)
        out = self.fmt.format(Intent(type=IntentType.TREND, coin="bitcoin", days=3), Resolution.success(window))
        assert out.data["coinId"] == "bitcoin"
        assert [p["price"] for p in out.data["history"]] == [105.0, 110.0, 100.0]


# ─────────────────────────────────────────────────────────
# 4. 数据解析
# ─────────────────────────────────────────────────────────

class TestDataResolver:
    @pytest.mark.asyncio
    async def test_local_hit_never_calls_remote(self):
        repo = FakeRepository([coin_doc("bitcoin", "Bitcoin", "btc", "45000.50")])
        remote = _remote(CoinSnapshot(coin_id="bitcoin", symbol="btc", name="Bitcoin", current_price=99999))
        res = await _resolver(repo, remote).resolve(Intent(type=IntentType.PRICE, coin="bitcoin"))
        assert res.ok and res.origin == "local"
        assert res.value.current_price == 45000.5
        remote.search_coin.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_local_miss_falls_back_to_remote(self):
        snap = CoinSnapshot(coin_id="pepe", symbol="pepe", name="Pepe", current_price=0.00001, origin="remote")
        remote = _remote(snap)
        res = await _resolver(FakeRepository(), remote).resolve(Intent(type=IntentType.PRICE, coin="pepe"))
        assert res.ok and res.origin == "remote" and res.value == snap
        remote.search_coin.assert_awaited_once_with("pepe")

    @pytest.mark.asyncio
    async def test_not_found(self):
        res = await _resolver(FakeRepository()).resolve(Intent(type=IntentType.VOLUME, coin="nothing"))
        assert res.failure == LookupFailure.COIN_NOT_FOUND and res.coin_name == "nothing"

    @pytest.mark.asyncio
    async def test_trend_window(self):
        docs = history_docs("bitcoin", [100, 110, 105])
        docs.append({"coingecko_id": "bitcoin", "timestamp": NOW - timedelta(days=40), "price": "1"})
        repo = FakeRepository([coin_doc("bitcoin", "Bitcoin", "btc", "105")], {"bitcoin": docs})
        res = await _resolver(repo).resolve(Intent(type=IntentType.TREND, coin="bitcoin", days=30))
        assert res.ok
        assert [p.price for p in res.value.points] == [105.0, 110.0, 100.0]

    @pytest.mark.asyncio
    async def test_trend_capped_at_100_points(self):
        docs = history_docs("bitcoin", list(range(1, 151)))
        repo = FakeRepository([coin_doc("bitcoin", "Bitcoin", "btc", "1")], {"bitcoin": docs})
        res = await _resolver(repo).resolve(Intent(type=IntentType.TREND, coin="bitcoin", days=365))
        assert len(res.value.points) == 100
        assert res.value.points[0].price == 150.0

    @pytest.mark.asyncio
    async def test_trend_remote_only_history_unavailable(self):
        snap = CoinSnapshot(coin_id="pepe", symbol="pepe", name="Pepe", origin="remote")
        res = await _resolver(FakeRepository(), _remote(snap)).resolve(
            Intent(type=IntentType.TREND, coin="pepe", days=7)
        )
        assert res.failure == LookupFailure.HISTORY_UNAVAILABLE
        assert res.coin_name == "Pepe" and res.origin == "remote"

    @pytest.mark.asyncio
    async def test_trend_local_without_rows(self):
        repo = FakeRepository([coin_doc("bitcoin", "Bitcoin", "btc", "1")])
        res = await _resolver(repo).resolve(Intent(type=IntentType.TREND, coin="bitcoin", days=7))
        assert res.failure == LookupFailure.HISTORY_UNAVAILABLE and res.origin == "local"

    @pytest.mark.asyncio
    async def test_history_cache_aside(self, cache):
        repo = FakeRepository(
            [coin_doc("bitcoin", "Bitcoin", "btc", "1")],
            {"bitcoin": history_docs("bitcoin", [1, 2])},
        )
        resolver = _resolver(repo, cache=cache)
        first = await resolver.load_history("bitcoin", 7)
        repo.history.clear()
        second = await resolver.load_history("bitcoin", 7)
        assert first == second and len(second) == 2

    @pytest.mark.asyncio
    async def test_top_list_empty_store(self):
        res = await _resolver(FakeRepository()).resolve(Intent(type=IntentType.TOP_LIST, limit=5))
        assert res.ok and res.value == []

    @pytest.mark.asyncio
    async def test_store_failure_is_named(self):
        repo = FakeRepository()
        repo.find_coin = AsyncMock(side_effect=StoreUnavailable("down"))
        res = await _resolver(repo).resolve(Intent(type=IntentType.PRICE, coin="btc"))
        assert res.failure == LookupFailure.STORE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_remote_rate_limit_is_named(self):
        remote = _remote()
        remote.search_coin = AsyncMock(side_effect=RemoteRateLimited("429"))
        res = await _resolver(FakeRepository(), remote).resolve(Intent(type=IntentType.PRICE, coin="btc"))
        assert res.failure == LookupFailure.RATE_LIMITED


# ─────────────────────────────────────────────────────────
# 5. 问答服务场景
# ─────────────────────────────────────────────────────────

class TestChatService:
    @pytest.mark.asyncio
    async def test_price_scenario(self):
        repo = FakeRepository([coin_doc("bitcoin", "Bitcoin", "btc", "45000.50")])
        out = await _chat(repo).answer_query("What is the price of Bitcoin?")
        assert out.answer == "The current price of Bitcoin (BTC) is $45,000.50"

    @pytest.mark.asyncio
    async def test_top_three_scenario(self):
        repo = FakeRepository([
            coin_doc("tether", "Tether", "usdt", "1", market_cap=100),
            coin_doc("bitcoin", "Bitcoin", "btc", "45000", market_cap=900),
            coin_doc("solana", "Solana", "sol", "150", market_cap=50),
            coin_doc("ethereum", "Ethereum", "eth", "3000", market_cap=400),
            coin_doc("bnb", "BNB", "bnb", "600", market_cap=90),
        ])
        out = await _chat(repo).answer_query("Show me top 3 coins")
        lines = out.answer.split("\n")
        assert lines[0] == "Here are the top 3 coins by market cap:"
        assert lines[1:] == [
            "1. Bitcoin (BTC) - $45,000.00",
            "2. Ethereum (ETH) - $3,000.00",
            "3. Tether (USDT) - $1.00",
        ]
        assert len(out.data) == 3

    @pytest.mark.asyncio
    async def test_top_list_empty_store(self):
        out = await _chat(FakeRepository()).answer_query("show me top 5 coins")
        assert out.answer == EMPTY_STORE_TEXT

    @pytest.mark.asyncio
    async def test_trend_scenario(self):
        repo = FakeRepository(
            [coin_doc("bitcoin", "Bitcoin", "btc", "105")],
            {"bitcoin": history_docs("bitcoin", [100, 110, 105])},
        )
        out = await _chat(repo).answer_query("Show me the 7-day trend of Bitcoin")
        assert out.answer == (
            "Here's the 7-day trend for Bitcoin: The price changed from $100.00 "
            "to $105.00, a +5.00% change."
        )
        assert out.data["changePercent"] == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_unknown_scenario(self):
        out = await _chat(FakeRepository()).answer_query("banana")
        assert out.answer == HELP_TEXT and out.data is None

    @pytest.mark.asyncio
    async def test_not_found_scenario(self):
        out = await _chat(FakeRepository()).answer_query("What is the price of dogecoinx?")
        assert out.answer.startswith("Sorry, I couldn't find information about dogecoinx")

    @pytest.mark.asyncio
    async def test_never_raises(self):
        resolver = MagicMock(resolve=AsyncMock(side_effect=RuntimeError("boom")))
        chat = ChatService(QueryClassifier(), resolver, ResponseFormatter())
        out = await chat.answer_query("price of bitcoin")
        assert out.answer == "Sorry, I encountered an error while fetching the price. Please try again later."
