"""
Alpha Vantage 适配器 – GLOBAL_QUOTE（JSON，需要 ALPHAVANTAGE_API_KEY）

免费额度很低（约 25 次/天），超限时仍返回 200，正文带 Note / Information 字段。
"""

import logging
from typing import Any, Dict

from indicator_service.errors import ProviderUnavailable, ReasonCode
from indicator_service.layers.processing import ParseFailed, ParseOk, ParseResult, parse_number
from indicator_service.models.indicator import DataSource
from indicator_service.providers.base import SourceAdapter

logger = logging.getLogger(__name__)


def parse_global_quote(payload: Any, symbol: str) -> ParseResult:
    """解析 GLOBAL_QUOTE；接口自带的 "09. change" 不使用，涨跌统一重新计算"""
    if not isinstance(payload, dict):
        return ParseFailed(f"{symbol} 响应不是 JSON 对象")

    notice = payload.get("Note") or payload.get("Information")
    if notice:
        return ParseFailed(f"{symbol}: {notice}", ReasonCode.RATE_LIMITED)
    if payload.get("Error Message"):
        return ParseFailed(f"{symbol}: {payload['Error Message']}")

    quote = payload.get("Global Quote")
    if not quote:
        return ParseFailed(f"{symbol} 无报价数据", ReasonCode.NO_DATA)

    price = parse_number(quote.get("05. price"))
    previous = parse_number(quote.get("08. previous close"))
    if price is None or previous is None:
        return ParseFailed(f"{symbol} 价格字段无效")
    return ParseOk(value=price, prev_value=previous, trade_date=quote.get("07. latest trading day"))


class AlphaVantageAdapter(SourceAdapter):
    source = DataSource.AV
    name = "alphavantage"

    @property
    def available(self) -> bool:
        return self._config.alphavantage_available

    async def fetch_raw(self, symbol: str) -> ParseResult:
        if not self.available:
            raise ProviderUnavailable(self.name, "ALPHAVANTAGE_API_KEY 未配置")
        params: Dict[str, str] = {
            "function": "GLOBAL_QUOTE",
            "symbol": symbol,
            "apikey": self._config.ALPHAVANTAGE_API_KEY,
        }
        response = await self._get(self._config.ALPHAVANTAGE_BASE_URL, params)
        try:
            payload = response.json()
        except ValueError:
            return ParseFailed(f"{symbol} 响应不是合法 JSON")
        return parse_global_quote(payload, symbol)
