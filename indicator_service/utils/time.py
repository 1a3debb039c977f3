"""
美东时间（ET）工具

所有对外时间戳统一为 "YYYY-MM-DD HH:MM:SS ET" 字符串，字典序即时间序，
聚合层据此直接取最大值作为 dataAsOfET。
"""

from datetime import datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from indicator_service.models.indicator import Session

ET = ZoneInfo("America/New_York")
ET_FORMAT = "%Y-%m-%d %H:%M:%S ET"

_PRE_OPEN = time(4, 0)
_OPEN = time(9, 30)
_CLOSE = time(16, 0)
_AFTER_HOURS_END = time(20, 0)


def now_et() -> datetime:
    return datetime.now(ET)


def format_et(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ET)
    return dt.astimezone(ET).strftime(ET_FORMAT)


def et_timestamp() -> str:
    """当前 ET 时间戳"""
    return format_et(now_et())


def close_timestamp_et(trade_date: Optional[str]) -> Optional[str]:
    """
    将数据提供商返回的交易日（YYYY-MM-DD / YYYYMMDD）转换为当日收盘时间戳

    无法解析时返回 None，由调用方决定是否回退到当前时间
    """
    if not trade_date:
        return None
    raw = trade_date.strip()
    for fmt in ("%Y-%m-%d", "%Y%m%d"):
        try:
            day = datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
        return format_et(datetime.combine(day, _CLOSE, tzinfo=ET))
    return None


def market_session(at: Optional[datetime] = None) -> Session:
    """按美股交易时段判断当前 session（不含节假日）"""
    current = (at or now_et()).astimezone(ET)
    if current.weekday() >= 5:
        return Session.CLOSE
    t = current.time()
    if _PRE_OPEN <= t < _OPEN:
        return Session.PRE
    if _OPEN <= t < _CLOSE:
        return Session.REGULAR
    if _CLOSE <= t < _AFTER_HOURS_END:
        return Session.POST
    return Session.CLOSE
