"""
Layer 3 – 数据处理层
将本地库文档与 CoinGecko 响应两种原始结构统一清洗为 CoinSnapshot / HistoryPoint，
下游组件只接触标准化后的数据。
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence

import pandas as pd

from crypto_service.models.market import CoinSnapshot, HistoryPoint

logger = logging.getLogger(__name__)

# 两种来源的字段映射：标准字段 → (本地库字段, 数据源字段)
_COIN_FIELDS = {
    "coin_id": ("coingecko_id", "id"),
    "symbol": ("symbol", "symbol"),
    "name": ("name", "name"),
    "current_price": ("current_price", "current_price"),
    "volume_24h": ("volume_24h", "total_volume"),
    "price_change_24h": ("price_change_24h", "price_change_percentage_24h"),
    "market_cap": ("market_cap", "market_cap"),
    "last_updated": ("last_updated", "last_updated"),
}


class TrendStats(NamedTuple):
    start_price: float
    end_price: float
    change_pct: float


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    ts = pd.to_datetime(value, errors="coerce", utc=True)
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()


class ProcessingLayer:
    """数据处理层：清洗 + 标准化 + 趋势计算"""

    # ── 行情快照 ──────────────────────────────────────────

    def normalize_coin(self, raw: Dict[str, Any], origin: str = "local") -> CoinSnapshot:
        """
        将单条原始记录标准化为 CoinSnapshot

        Args:
            raw: 本地库文档或 /coins/markets 返回的单行
            origin: "local"（本地库字段名）或 "remote"（数据源字段名）

        缺失或格式错误的数值字段一律置 0。
        """
        column = 0 if origin == "local" else 1
        values = {name: raw.get(fields[column]) for name, fields in _COIN_FIELDS.items()}
        coin_id = str(values["coin_id"] or "").strip().lower()
        return CoinSnapshot(
            coin_id=coin_id,
            symbol=str(values["symbol"] or "").strip(),
            name=str(values["name"] or coin_id),
            current_price=values["current_price"],
            volume_24h=values["volume_24h"],
            price_change_24h=values["price_change_24h"],
            market_cap=values["market_cap"],
            last_updated=_parse_timestamp(values["last_updated"]),
            origin=origin,
        )

    def normalize_coins(
        self, rows: Iterable[Dict[str, Any]], origin: str = "local"
    ) -> List[CoinSnapshot]:
        return [self.normalize_coin(row, origin) for row in rows if row]

    # ── 历史价格 ──────────────────────────────────────────

    def history_from_provider(self, pairs: Sequence[Sequence[Any]]) -> List[HistoryPoint]:
        """CoinGecko market_chart 的 [毫秒时间戳, 价格] 序列 → HistoryPoint（最新在前）"""
        rows = [
            {"timestamp": pair[0], "price": pair[1]}
            for pair in pairs or []
            if isinstance(pair, (list, tuple)) and len(pair) >= 2
        ]
        if not rows:
            return []
        df = pd.DataFrame(rows)
        df["timestamp"] = pd.to_datetime(
            pd.to_numeric(df["timestamp"], errors="coerce"), unit="ms", errors="coerce", utc=True
        )
        return self._frame_to_points(df)

    def history_from_store(self, docs: Iterable[Dict[str, Any]]) -> List[HistoryPoint]:
        """本地库 historical_prices 文档 → HistoryPoint（最新在前）"""
        rows = [{"timestamp": d.get("timestamp"), "price": d.get("price")} for d in docs or []]
        if not rows:
            return []
        df = pd.DataFrame(rows)
        df["timestamp"] = pd.to_datetime(df["timestamp"], errors="coerce", utc=True)
        return self._frame_to_points(df)

    def _frame_to_points(self, df: pd.DataFrame) -> List[HistoryPoint]:
        total = len(df)
        df = df.dropna(subset=["timestamp"]).copy()
        if len(df) < total:
            logger.debug(f"丢弃 {total - len(df)} 条时间戳无效的历史价格记录")
        df["price"] = pd.to_numeric(df["price"], errors="coerce").fillna(0.0)
        df = df.drop_duplicates(subset=["timestamp"], keep="last")
        df = df.sort_values("timestamp", ascending=False).reset_index(drop=True)
        return [
            HistoryPoint(timestamp=row.timestamp.to_pydatetime(), price=row.price)
            for row in df.itertuples(index=False)
        ]

    @staticmethod
    def chronological(points: Sequence[HistoryPoint]) -> List[HistoryPoint]:
        """按时间正序排列（图表使用）"""
        return sorted(points, key=lambda p: p.timestamp)

    # ── 趋势 ──────────────────────────────────────────────

    @staticmethod
    def trend_change(points: Sequence[HistoryPoint]) -> TrendStats:
        """
        计算窗口内涨跌幅：(最新 - 最早) / 最早 * 100

        points 为最新在前的序列。空序列或最早价格为 0 时涨跌幅为 0；
        只有一个点时最早即最新，同样为 0。
        """
        if not points:
            return TrendStats(0.0, 0.0, 0.0)
        newest = points[0].price
        oldest = points[-1].price
        if oldest == 0:
            return TrendStats(oldest, newest, 0.0)
        return TrendStats(oldest, newest, (newest - oldest) / oldest * 100)
