"""
回答生成
每个意图对应一个固定句式；金额保留两位小数并带千分位，百分比非负时带 "+" 号。
"""

from typing import Any, List, Optional

from pydantic import BaseModel

from crypto_service.layers.processing import ProcessingLayer
from crypto_service.models.intent import Intent, IntentType
from crypto_service.models.market import CoinSnapshot
from crypto_service.models.resolution import LookupFailure, Resolution, TrendWindow

HELP_TEXT = (
    "Sorry, I can't answer that. Try asking:\n"
    "- 'What is the price of Bitcoin?'\n"
    "- 'Show me the 7-day trend of Ethereum'\n"
    "- 'What is the volume of Bitcoin?'\n"
    "- 'What is the 24h change of Solana?'\n"
    "- 'What is the market cap of Cardano?'\n"
    "- 'Show me top 5 coins'"
)

EMPTY_STORE_TEXT = "I don't have any coin data yet. Please run the database seeding script first."

_TOPICS = {
    IntentType.PRICE: "price",
    IntentType.TREND: "trend",
    IntentType.VOLUME: "volume",
    IntentType.CHANGE: "change",
    IntentType.MARKET_CAP: "market cap",
    IntentType.TOP_LIST: "top coins",
}


class ChatAnswer(BaseModel):
    answer: str
    data: Optional[Any] = None


def format_currency(value: float) -> str:
    return f"${value:,.2f}"


def format_percent(value: float) -> str:
    value = value or 0.0
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.2f}%"


def _label(coin: CoinSnapshot) -> str:
    return f"{coin.name} ({coin.symbol.upper()})"


class ResponseFormatter:
    """解析结果 → 自然语言回答 + 可选结构化数据"""

    def __init__(self, processing: Optional[ProcessingLayer] = None):
        self._proc = processing or ProcessingLayer()

    def format(self, intent: Intent, resolution: Resolution) -> ChatAnswer:
        if intent.type == IntentType.UNKNOWN:
            return ChatAnswer(answer=HELP_TEXT)
        if not resolution.ok:
            return ChatAnswer(answer=self.failure_message(intent, resolution))

        value = resolution.value
        if intent.type == IntentType.TOP_LIST:
            return self._top_list(value or [])
        if intent.type == IntentType.TREND:
            return self._trend(value)

        coin: CoinSnapshot = value
        if intent.type == IntentType.PRICE:
            answer = f"The current price of {_label(coin)} is {format_currency(coin.current_price)}"
        elif intent.type == IntentType.VOLUME:
            answer = f"The 24-hour trading volume of {_label(coin)} is {format_currency(coin.volume_24h)}"
        elif intent.type == IntentType.CHANGE:
            answer = f"The 24-hour price change of {_label(coin)} is {format_percent(coin.price_change_24h)}"
        else:
            answer = f"The market capitalization of {_label(coin)} is {format_currency(coin.market_cap)}"
        return ChatAnswer(answer=answer)

    def _trend(self, window: TrendWindow) -> ChatAnswer:
        stats = self._proc.trend_change(window.points)
        answer = (
            f"Here's the {window.days}-day trend for {window.coin.name}: "
            f"The price changed from {format_currency(stats.start_price)} "
            f"to {format_currency(stats.end_price)}, "
            f"a {format_percent(stats.change_pct)} change."
        )
        data = {
            "coinId": window.coin.coin_id,
            "coinName": window.coin.name,
            "days": window.days,
            "changePercent": round(stats.change_pct, 4),
            "history": [p.model_dump(mode="json") for p in window.points],
        }
        return ChatAnswer(answer=answer, data=data)

    @staticmethod
    def _top_list(coins: List[CoinSnapshot]) -> ChatAnswer:
        if not coins:
            return ChatAnswer(answer=EMPTY_STORE_TEXT, data=[])
        lines = [
            f"{rank}. {_label(coin)} - {format_currency(coin.current_price)}"
            for rank, coin in enumerate(coins, start=1)
        ]
        answer = f"Here are the top {len(coins)} coins by market cap:\n" + "\n".join(lines)
        return ChatAnswer(answer=answer, data=[c.model_dump(mode="json") for c in coins])

    @staticmethod
    def failure_message(intent: Intent, resolution: Resolution) -> str:
        name = resolution.coin_name or intent.coin or "that coin"
        failure = resolution.failure
        if failure == LookupFailure.COIN_NOT_FOUND:
            return (
                f"Sorry, I couldn't find information about {name}. "
                "Please check the spelling and try again."
            )
        if failure == LookupFailure.HISTORY_UNAVAILABLE:
            days = intent.days or 30
            if resolution.origin == "remote":
                return (
                    f"I found {name}, but I don't have {days}-day historical data for it. "
                    "Please select it from the dashboard to view the chart."
                )
            return (
                f"I found {name}, but I don't have {days}-day historical data for it yet. "
                "The data may still be loading."
            )
        if failure == LookupFailure.RATE_LIMITED:
            return (
                "Sorry, the market data provider is rate limiting requests right now. "
                "Please try again in a few minutes."
            )
        return generic_apology(intent)


def generic_apology(intent: Intent) -> str:
    topic = _TOPICS.get(intent.type, "data")
    return f"Sorry, I encountered an error while fetching the {topic}. Please try again later."
