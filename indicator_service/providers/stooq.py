"""
Stooq 适配器 – 美股 ETF / 板块 ETF（CSV，无需 API Key）

代码格式为 {ticker}.us，例如 spy.us、xlf.us。
报价接口不提供昨收价，previousClose 取当日开盘价（开盘价无效时取收盘价）。
"""

import io
import logging
from typing import Dict, List

import pandas as pd

from indicator_service.errors import ReasonCode
from indicator_service.layers.processing import ParseFailed, ParseOk, ParseResult, parse_number
from indicator_service.models.indicator import DataSource
from indicator_service.providers.base import SourceAdapter

logger = logging.getLogger(__name__)

# 200 响应中出现这些内容视为被限流
_RATE_LIMIT_MARKERS = ("<html", "<!doctype", "<head", "exceeded the daily hits limit")
_NO_DATA_MARKERS = ("N/D", "N/A")


def clean_csv(raw: str) -> str:
    """去除 BOM、统一换行符、去掉首尾空白"""
    text = raw.lstrip("\ufeff").strip()
    return text.replace("\r\n", "\n").replace("\r", "\n")


def parse_stooq_csv(raw: str, symbol: str) -> ParseResult:
    """
    解析 Stooq 报价 CSV：Symbol,Date,Time,Open,High,Low,Close,Volume

    只读取第一行数据；任何结构问题都返回 ParseFailed，不抛异常
    """
    text = clean_csv(raw)
    lower = text.lower()
    if any(marker in lower for marker in _RATE_LIMIT_MARKERS):
        return ParseFailed(f"{symbol} 返回非 CSV 内容（疑似限流）", ReasonCode.RATE_LIMITED)
    if not text:
        return ParseFailed(f"{symbol} 返回空内容", ReasonCode.NO_DATA)

    try:
        df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        return ParseFailed(f"{symbol} CSV 解析失败: {exc}")

    df.columns = [str(c).strip().lower() for c in df.columns]
    if "close" not in df.columns or df.empty:
        return ParseFailed(f"{symbol} CSV 缺少 Close 列或没有数据行")

    row = df.iloc[0]
    if any(str(v).strip() in _NO_DATA_MARKERS for v in row.values):
        return ParseFailed(f"{symbol} 无数据（N/D）", ReasonCode.NO_DATA)

    close = parse_number(row.get("close"))
    if close is None or close <= 0:
        return ParseFailed(f"{symbol} 收盘价无效: {row.get('close')!r}")

    open_ = parse_number(row.get("open"))
    prev = open_ if open_ is not None and open_ > 0 else close
    trade_date = str(row.get("date", "")).strip() or None
    return ParseOk(value=close, prev_value=prev, trade_date=trade_date)


class StooqAdapter(SourceAdapter):
    source = DataSource.STOOQ
    name = "stooq"

    def default_candidates(self, ticker: str) -> List[str]:
        return [f"{ticker.lower()}.us"]

    async def fetch_raw(self, symbol: str) -> ParseResult:
        params: Dict[str, str] = {"s": symbol, "f": "sd2t2ohlcv", "h": "", "e": "csv", "i": "d"}
        response = await self._get(self._config.STOOQ_BASE_URL, params)
        result = parse_stooq_csv(response.text, symbol)
        if isinstance(result, ParseFailed):
            logger.warning(f"Stooq {symbol}: {result.reason}")
        return result
