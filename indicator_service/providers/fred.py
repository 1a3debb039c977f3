"""
FRED 适配器 – VIX 与美债收益率（JSON，需要 FRED_API_KEY）

取最近两个有效观测值作为 price / previousClose，值为 "." 的观测（休市日）跳过。
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from indicator_service.errors import ProviderError, ProviderUnavailable, ReasonCode
from indicator_service.layers.processing import ParseFailed, ParseOk, ParseResult, parse_number
from indicator_service.models.indicator import AdapterResult, Capability, DataSource
from indicator_service.providers.base import SourceAdapter

logger = logging.getLogger(__name__)

YIELD_SPREAD_TICKER = "YIELD_10Y_2Y"
YIELD_SPREAD_KEY = "fred:yield-spread"
YIELD_SPREAD_SYMBOL = "DGS10-DGS2"

# 月度序列（例如 TB3MS）在 30 天窗口内可能只有一个观测值
LOOKBACK_DAYS = 90


def parse_fred_observations(payload: Any, series_id: str) -> ParseResult:
    if not isinstance(payload, dict):
        return ParseFailed(f"{series_id} 响应不是 JSON 对象")
    if "error_message" in payload:
        message = str(payload["error_message"])
        if "too many" in message.lower() or "rate" in message.lower():
            return ParseFailed(f"{series_id}: {message}", ReasonCode.RATE_LIMITED)
        return ParseFailed(f"{series_id}: {message}")

    observations = payload.get("observations")
    if not isinstance(observations, list):
        return ParseFailed(f"{series_id} 响应缺少 observations")

    valid = []
    for obs in observations:
        value = parse_number(obs.get("value")) if isinstance(obs, dict) else None
        if value is not None:
            valid.append((value, obs.get("date")))
        if len(valid) == 2:
            break

    if len(valid) < 2:
        return ParseFailed(f"{series_id} 有效观测值不足 2 个", ReasonCode.NO_DATA)
    (latest, latest_date), (previous, _) = valid
    return ParseOk(value=latest, prev_value=previous, trade_date=latest_date)


class FredAdapter(SourceAdapter):
    source = DataSource.FRED
    name = "fred"

    @property
    def available(self) -> bool:
        return self._config.fred_available

    async def fetch_raw(self, symbol: str) -> ParseResult:
        if not self.available:
            raise ProviderUnavailable(self.name, "FRED_API_KEY 未配置")
        start = date.today() - timedelta(days=LOOKBACK_DAYS)
        params: Dict[str, str] = {
            "series_id": symbol,
            "api_key": self._config.FRED_API_KEY,
            "file_type": "json",
            "observation_start": start.isoformat(),
            "sort_order": "desc",
            "limit": "10",
        }
        response = await self._get(self._config.FRED_BASE_URL, params)
        try:
            payload = response.json()
        except ValueError:
            return ParseFailed(f"{symbol} 响应不是合法 JSON")
        return parse_fred_observations(payload, symbol)

    # ── 10Y-2Y 利差 ──────────────────────────────────────

    async def _leg(self, series_id: str) -> Optional[ParseOk]:
        # 与 TNX / DGS2 共用同一缓存键，批次内不会重复请求；
        # 分量为旧数据时放弃本次计算，由利差自身的最后可用值兜底
        try:
            result = await self._cache.single_flight(
                self.cache_key(series_id),
                lambda: self.load(series_id),
                self._config.QUOTE_CACHE_TTL,
            )
        except ProviderError as exc:
            logger.warning(f"FRED 利差分量 {series_id} 获取失败: {exc.message}")
            return None
        if result.is_stale:
            logger.info(f"FRED 利差分量 {series_id} 仅有旧数据（{result.age_seconds}s）")
            return None
        return result.data

    async def _load_spread(self) -> Optional[ParseOk]:
        ten_year, two_year = await asyncio.gather(self._leg("DGS10"), self._leg("DGS2"))
        if ten_year is None or two_year is None:
            return None
        return ParseOk(
            value=ten_year.value - two_year.value,
            prev_value=ten_year.prev_value - two_year.prev_value,
            trade_date=ten_year.trade_date,
        )

    async def fetch_yield_spread(self) -> AdapterResult:
        """直接由 DGS10 - DGS2 计算 10Y-2Y 利差，无新数据时回退到最后可用值"""
        display = self._router.display_name(YIELD_SPREAD_TICKER)
        if not self.available:
            return self.unavailable(
                YIELD_SPREAD_TICKER, display, "FRED_API_KEY 未配置", ReasonCode.PROVIDER_UNAVAILABLE
            )

        result = await self._cache.single_flight_with_lkg(
            YIELD_SPREAD_KEY, self._load_spread, self._config.QUOTE_CACHE_TTL
        )
        tried: List[str] = ["DGS10", "DGS2"]
        if result.data is None:
            return self.unavailable(
                YIELD_SPREAD_TICKER, display, "无法获取 DGS10 / DGS2 数据", ReasonCode.NO_DATA,
                tried_symbols=tried,
            )

        indicator = self._proc.to_indicator(
            YIELD_SPREAD_TICKER, display, result.data, self.source,
            is_stale=result.is_stale, abs_base=True,
        )
        capability = Capability(
            ok=True,
            resolved_symbol=YIELD_SPREAD_SYMBOL,
            tried_symbols=tried,
            source_used=self.source,
            is_stale=result.is_stale or None,
        )
        return AdapterResult(indicator=indicator, capability=capability)
