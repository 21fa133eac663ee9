"""行情数据模型"""

import math
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator


def to_finite_float(value: Any) -> float:
    """将任意上游数值（字符串 / None / NaN）强制转换为有限浮点数，失败返回 0"""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


class CoinSnapshot(BaseModel):
    """标准化的单币种行情快照，本地库与数据源两种来源统一为此结构"""

    model_config = ConfigDict(frozen=True)

    coin_id: str
    symbol: str
    name: str
    current_price: float = 0.0
    volume_24h: float = 0.0
    price_change_24h: float = 0.0
    market_cap: float = 0.0
    last_updated: Optional[datetime] = None
    origin: Literal["local", "remote"] = "local"

    @field_validator(
        "current_price", "volume_24h", "price_change_24h", "market_cap", mode="before"
    )
    @classmethod
    def _coerce_number(cls, value: Any) -> float:
        return to_finite_float(value)


class HistoryPoint(BaseModel):
    """历史价格点"""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    price: float

    @field_validator("price", mode="before")
    @classmethod
    def _coerce_price(cls, value: Any) -> float:
        return to_finite_float(value)
