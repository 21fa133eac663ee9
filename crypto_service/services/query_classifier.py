"""
问题分类器
按固定顺序逐条尝试意图规则，第一条匹配的规则胜出；规则顺序本身即优先级
（价格先于趋势、成交量、涨跌幅……因为问法之间存在重叠）。
纯函数：不做任何 I/O，也不校验币种是否存在（由 DataResolver 负责）。
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence

from crypto_service.models.intent import Intent, IntentType

_MAX_TREND_DAYS = 365


class ClassifierDefaults(NamedTuple):
    trend_days: int = 30
    top_limit: int = 10
    max_top_limit: int = 100


Extractor = Callable[["re.Match[str]", ClassifierDefaults], Optional[Dict[str, Any]]]


@dataclass(frozen=True)
class IntentRule:
    """一条分类规则：名称 + 正则 + 参数提取函数 + 意图标签"""

    name: str
    pattern: "re.Pattern[str]"
    extract: Extractor
    intent_type: IntentType


def _clean_coin(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    coin = raw.strip().strip("?.!,").strip().lower()
    return coin or None


def _coin_only(match: "re.Match[str]", defaults: ClassifierDefaults) -> Optional[Dict[str, Any]]:
    coin = _clean_coin(match.group("coin"))
    return {"coin": coin} if coin else None


def _coin_and_days(match: "re.Match[str]", defaults: ClassifierDefaults) -> Optional[Dict[str, Any]]:
    coin = _clean_coin(match.group("coin"))
    if not coin:
        return None
    days = int(match.group("days")) if match.group("days") else defaults.trend_days
    return {"coin": coin, "days": max(1, min(days, _MAX_TREND_DAYS))}


def _limit(match: "re.Match[str]", defaults: ClassifierDefaults) -> Optional[Dict[str, Any]]:
    limit = int(match.group("limit")) if match.group("limit") else defaults.top_limit
    return {"limit": max(1, min(limit, defaults.max_top_limit))}


def _rule(name: str, pattern: str, extract: Extractor, intent_type: IntentType) -> IntentRule:
    return IntentRule(name, re.compile(pattern, re.IGNORECASE), extract, intent_type)


_COIN = r"(?P<coin>.+?)\s*(?:\?|$)"

DEFAULT_RULES: List[IntentRule] = [
    # "What is the price of Bitcoin?" / "price of eth"
    _rule("price", r"(?:what is the )?price of " + _COIN, _coin_only, IntentType.PRICE),
    # "Show me the 7-day trend of Ethereum" / "trend of bitcoin"
    _rule(
        "trend",
        r"(?:show me the )?(?:(?P<days>\d+)[- ]?days? )?(?:price )?(?:trend|history) of " + _COIN,
        _coin_and_days,
        IntentType.TREND,
    ),
    # "What is the volume of Bitcoin?" / "24h trading volume of sol"
    _rule(
        "volume",
        r"(?:what is the )?(?:24h |24-hour |24 hour )?(?:trading )?volume of " + _COIN,
        _coin_only,
        IntentType.VOLUME,
    ),
    # "What is the 24h change of Bitcoin?"
    _rule(
        "change",
        r"(?:what is the )?(?:24h |24-hour |24 hour )?(?:price )?change of " + _COIN,
        _coin_only,
        IntentType.CHANGE,
    ),
    # "What is the market cap of Bitcoin?"
    _rule(
        "market_cap",
        r"(?:what is the )?market cap(?:italization)? of " + _COIN,
        _coin_only,
        IntentType.MARKET_CAP,
    ),
    # "Show me top 5 coins" / "top coins"
    _rule(
        "top_list",
        r"(?:show me )?(?:the )?\btop (?:(?P<limit>\d+) )?coins?\b",
        _limit,
        IntentType.TOP_LIST,
    ),
]


class QueryClassifier:
    """规则表驱动的问题分类器"""

    def __init__(
        self,
        rules: Optional[Sequence[IntentRule]] = None,
        defaults: Optional[ClassifierDefaults] = None,
    ):
        self._rules = list(rules if rules is not None else DEFAULT_RULES)
        self._defaults = defaults or ClassifierDefaults()

    @property
    def rules(self) -> List[IntentRule]:
        return list(self._rules)

    def classify(self, text: str) -> Intent:
        """将原始问题分类为 Intent；无规则匹配时返回 UNKNOWN"""
        normalized = " ".join((text or "").split()).lower()
        if not normalized:
            return Intent.unknown()
        for rule in self._rules:
            match = rule.pattern.search(normalized)
            if match is None:
                continue
            params = rule.extract(match, self._defaults)
            if params is None:
                continue
            return Intent(type=rule.intent_type, rule=rule.name, **params)
        return Intent.unknown()
