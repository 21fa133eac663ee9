"""问题意图模型"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class IntentType(str, Enum):
    PRICE = "price"
    TREND = "trend"
    VOLUME = "volume"
    CHANGE = "change"
    MARKET_CAP = "market_cap"
    TOP_LIST = "top_list"
    UNKNOWN = "unknown"


SINGLE_COIN_INTENTS = frozenset({
    IntentType.PRICE,
    IntentType.VOLUME,
    IntentType.CHANGE,
    IntentType.MARKET_CAP,
})


class Intent(BaseModel):
    """分类结果：意图标签 + 规则捕获的参数"""

    model_config = ConfigDict(frozen=True)

    type: IntentType
    coin: Optional[str] = None
    days: Optional[int] = None
    limit: Optional[int] = None
    rule: Optional[str] = None

    @classmethod
    def unknown(cls) -> "Intent":
        return cls(type=IntentType.UNKNOWN)
