"""
处理层 – 报价标准化
适配器解析结果（ParseOk / ParseFailed）在此转换为统一的 Indicator 模型。
涨跌额、涨跌幅一律由 price 与 previousClose 重新计算，不采用数据提供商自带的字段。
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from indicator_service.errors import ReasonCode
from indicator_service.models.indicator import DataSource, Indicator, Session
from indicator_service.utils.time import close_timestamp_et, et_timestamp, market_session, now_et

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParseOk:
    value: float
    prev_value: float
    trade_date: Optional[str] = None


@dataclass(frozen=True)
class ParseFailed:
    reason: str
    code: ReasonCode = ReasonCode.PARSE_ERROR


ParseResult = Union[ParseOk, ParseFailed]


def parse_number(raw) -> Optional[float]:
    """解析数值，空值 / 占位符 / 非有限数返回 None"""
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if raw in ("", ".", "N/D", "N/A", "-"):
            return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def compute_change(price: float, previous: float, abs_base: bool = False) -> Tuple[float, float]:
    """
    涨跌额 = price - previous；涨跌幅 = 涨跌额 / previous * 100，previous 为 0 时为 0

    abs_base=True 时以 |previous| 为分母，避免利差在 0 附近时符号翻转
    """
    change = price - previous
    if previous == 0:
        return change, 0.0
    base = abs(previous) if abs_base else previous
    return change, change / base * 100


class ProcessingLayer:
    """数据处理层：解析结果 → Indicator"""

    def is_today(self, trade_date: Optional[str]) -> bool:
        return bool(trade_date) and trade_date.replace("-", "") == now_et().strftime("%Y%m%d")

    def session_for(self, trade_date: Optional[str]) -> Session:
        """当日数据按当前交易时段标记，历史日期的数据一律为 CLOSE"""
        if self.is_today(trade_date):
            return market_session()
        return Session.CLOSE

    def as_of_for(self, trade_date: Optional[str]) -> str:
        if self.is_today(trade_date):
            return et_timestamp()
        return close_timestamp_et(trade_date) or et_timestamp()

    def to_indicator(
        self,
        ticker: str,
        display_name: str,
        parsed: ParseOk,
        source: DataSource,
        is_proxy: bool = False,
        is_stale: bool = False,
        abs_base: bool = False,
    ) -> Indicator:
        change, change_pct = compute_change(parsed.value, parsed.prev_value, abs_base=abs_base)
        return Indicator(
            ticker=ticker,
            display_name=display_name,
            price=parsed.value,
            previous_close=parsed.prev_value,
            change=change,
            change_pct=change_pct,
            session=self.session_for(parsed.trade_date),
            as_of_et=self.as_of_for(parsed.trade_date),
            source=source,
            is_proxy=is_proxy or None,
            is_stale=is_stale or None,
        )


# ── 模块级别单例 ──────────────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
