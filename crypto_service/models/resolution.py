"""数据解析结果模型（成功值 / 具名失败二选一）"""

from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict

from crypto_service.models.market import CoinSnapshot, HistoryPoint


class LookupFailure(str, Enum):
    COIN_NOT_FOUND = "coin_not_found"
    HISTORY_UNAVAILABLE = "history_unavailable"
    RATE_LIMITED = "rate_limited"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    STORE_UNAVAILABLE = "store_unavailable"


class TrendWindow(BaseModel):
    """趋势查询结果：币种 + 时间窗口内的历史价格（最新在前）"""

    model_config = ConfigDict(frozen=True)

    coin: CoinSnapshot
    days: int
    points: List[HistoryPoint]


ResolvedValue = Union[CoinSnapshot, TrendWindow, List[CoinSnapshot]]


class Resolution(BaseModel):
    """
    DataResolver 的返回值

    value 与 failure 恰有一个非空；coin_name 在失败时保留用户输入或已识别的币名，
    origin 标记数据来自本地库还是远程数据源，供回答措辞使用。
    """

    value: Optional[ResolvedValue] = None
    failure: Optional[LookupFailure] = None
    coin_name: Optional[str] = None
    origin: Optional[Literal["local", "remote"]] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: ResolvedValue, origin: Optional[str] = None) -> "Resolution":
        return cls(value=value, origin=origin)

    @classmethod
    def fail(
        cls,
        failure: LookupFailure,
        coin_name: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> "Resolution":
        return cls(failure=failure, coin_name=coin_name, origin=origin)
