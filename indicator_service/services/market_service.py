"""
市场指标服务
整合路由、获取、衍生计算与缓存，一次调用返回全部指标的完整快照
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from indicator_service.config import IndicatorServiceSettings, settings
from indicator_service.errors import BatchTimeoutError, ReasonCode
from indicator_service.layers.acquisition import AcquisitionLayer, get_acquisition_layer
from indicator_service.layers.cache import CacheStore, get_cache_store, make_batch_key
from indicator_service.layers.derived import DerivedEngine, get_derived_engine
from indicator_service.layers.routing import TickerRouter, get_ticker_router
from indicator_service.models.indicator import (
    AdapterResult,
    CacheState,
    Capability,
    DataSource,
    DataWarning,
    FetchSettings,
    Indicator,
    MarketSnapshot,
)
from indicator_service.providers.fred import YIELD_SPREAD_TICKER, FredAdapter
from indicator_service.utils.time import et_timestamp

logger = logging.getLogger(__name__)

# 数据提供商未配置时的告警
_UNAVAILABLE_WARNINGS = {
    DataSource.FRED: ("FRED_UNAVAILABLE", "FRED_API_KEY 未配置，VIX 与美债收益率数据不可用"),
    DataSource.AV: ("AV_UNAVAILABLE", "ALPHAVANTAGE_API_KEY 未配置，Alpha Vantage 路由的代码不可用"),
}


class MarketService:
    """市场指标聚合服务"""

    def __init__(
        self,
        cache: CacheStore,
        acquisition: AcquisitionLayer,
        router: TickerRouter,
        derived: DerivedEngine,
        config: IndicatorServiceSettings = settings,
    ):
        self._cache = cache
        self._acq = acquisition
        self._router = router
        self._derived = derived
        self._config = config
        self._last_key: Optional[str] = None

    # ── 对外接口 ──────────────────────────────────────────

    async def fetch_all(self, fetch_settings: Optional[FetchSettings] = None) -> MarketSnapshot:
        """
        获取全部指标

        整批结果按请求参数缓存；TTL 内直接返回缓存，只刷新 pulledAtET。
        单个代码失败不影响整批；整批超时时返回旧批次，没有旧批次则抛出 BatchTimeoutError。
        """
        fetch_settings = fetch_settings or FetchSettings()
        key = make_batch_key(fetch_settings)
        self._last_key = key
        pulled_at = et_timestamp()

        cached = self._cache.get(key)
        if cached.data is not None and cached.state == CacheState.CACHED:
            logger.debug(f"整批缓存命中 {key}（{cached.age_seconds}s）")
            return cached.data.model_copy(
                update={
                    "pulled_at_et": pulled_at,
                    "cache_state": CacheState.CACHED,
                    "cache_age_seconds": cached.age_seconds,
                }
            )

        try:
            snapshot = await asyncio.wait_for(self._build(pulled_at), timeout=self._config.BATCH_TIMEOUT)
        except asyncio.TimeoutError:
            return self._serve_stale_batch(key, pulled_at)

        self._cache.set(key, snapshot, self._config.BATCH_CACHE_TTL)
        unresolved = snapshot.unresolved()
        logger.info(
            f"整批拉取完成：{len(snapshot.indicators)} 个指标，"
            f"{len(unresolved)} 个不可用，{len(snapshot.warnings)} 条告警"
        )
        return snapshot

    def batch_status(self) -> Dict[str, Any]:
        """最近一次请求参数对应的整批缓存状态（健康检查使用）"""
        if self._last_key is None:
            return {"cached": False}
        cached = self._cache.get(self._last_key)
        if cached.data is None:
            return {"cached": False, "key": self._last_key}
        snapshot: MarketSnapshot = cached.data
        return {
            "cached": True,
            "key": self._last_key,
            "age_seconds": cached.age_seconds,
            "is_stale": cached.is_stale,
            "data_as_of_et": snapshot.data_as_of_et,
            "unresolved": snapshot.unresolved(),
        }

    # ── 拉取流程 ──────────────────────────────────────────

    def _serve_stale_batch(self, key: str, pulled_at: str) -> MarketSnapshot:
        timeout = self._config.BATCH_TIMEOUT
        previous = self._cache.fallback(key)
        if previous is None:
            logger.error(f"整批拉取超时（{timeout}s）且没有可用的旧批次")
            raise BatchTimeoutError(f"整批拉取超时（{timeout}s）且没有可用的旧数据")

        data: MarketSnapshot = previous.data
        age = previous.age_seconds
        logger.warning(f"整批拉取超时（{timeout}s），返回 {age}s 前的旧批次")
        warning = DataWarning(code="BATCH_TIMEOUT", message=f"数据拉取超时（{timeout:.0f}s），显示的是旧数据")
        return data.model_copy(
            update={
                "pulled_at_et": pulled_at,
                "cache_state": CacheState.STALE,
                "cache_age_seconds": age,
                "warnings": [*data.warnings, warning],
            }
        )

    async def _build(self, pulled_at: str) -> MarketSnapshot:
        warnings: List[DataWarning] = []
        grouped = self._router.tickers_by_provider()

        for source, (code, message) in _UNAVAILABLE_WARNINGS.items():
            adapter = self._acq.adapter(source)
            if grouped.get(source) and (adapter is None or not adapter.available):
                warnings.append(DataWarning(code=code, message=message))

        # 按数据提供商分组后并发拉取，各代码之间互不阻塞
        tickers = [t for source in grouped for t in grouped[source]]
        # 没有映射到数据提供商的代码也要返回（NOT_MAPPED），不能缺席
        tickers += [t for t in self._router.base_tickers() if t not in tickers]
        results = await asyncio.gather(*(self._fetch_one(t) for t in tickers))

        indicators: Dict[str, Indicator] = {}
        capabilities: Dict[str, Capability] = {}
        for ticker, result in zip(tickers, results):
            indicators[ticker] = result.indicator
            capabilities[ticker] = result.capability
            if not result.capability.ok and not self._router.is_optional(ticker):
                logger.warning(f"{ticker} 不可用: {result.capability.reason}")

        derived = self._derived.compute(indicators, capabilities)
        await self._override_yield_spread(derived.indicators, derived.capabilities, warnings)

        indicators.update(derived.indicators)
        capabilities.update(derived.capabilities)
        warnings.extend(derived.warnings)

        last_updated = et_timestamp()
        as_of = [ind.as_of_et for ind in indicators.values() if ind.as_of_et]
        return MarketSnapshot(
            indicators=indicators,
            capabilities=capabilities,
            warnings=warnings,
            cache_state=CacheState.LIVE,
            cache_age_seconds=0,
            pulled_at_et=pulled_at,
            last_updated_et=last_updated,
            data_as_of_et=max(as_of) if as_of else last_updated,
        )

    async def _fetch_one(self, ticker: str) -> AdapterResult:
        try:
            return await self._acq.fetch(ticker)
        except Exception as exc:
            logger.error(f"获取 {ticker} 出现未预期的异常: {exc}", exc_info=True)
            source = self._router.provider_for(ticker) or DataSource.PROXY
            return AdapterResult(
                indicator=Indicator.unavailable(ticker, self._router.display_name(ticker), source),
                capability=Capability(
                    ok=False,
                    reason=f"未预期的错误: {exc}",
                    reason_code=ReasonCode.UNEXPECTED_ERROR,
                    source_used=source,
                ),
            )

    async def _override_yield_spread(
        self,
        indicators: Dict[str, Indicator],
        capabilities: Dict[str, Capability],
        warnings: List[DataWarning],
    ) -> None:
        """FRED 可用时用 DGS10 - DGS2 直接计算的利差覆盖衍生结果"""
        if not self._config.USE_FRED_YIELD_SPREAD or YIELD_SPREAD_TICKER not in indicators:
            return
        fred = self._acq.adapter(DataSource.FRED)
        if not isinstance(fred, FredAdapter) or not fred.available:
            return

        try:
            result = await fred.fetch_yield_spread()
        except Exception as exc:
            logger.error(f"FRED 10Y-2Y 利差获取异常: {exc}", exc_info=True)
            result = None

        if result is None or not result.capability.ok:
            warnings.append(DataWarning(code="YIELD_SPREAD_FAILED", message="FRED 10Y-2Y 利差获取失败"))
            return
        indicators[YIELD_SPREAD_TICKER] = result.indicator
        capabilities[YIELD_SPREAD_TICKER] = result.capability


# ── 模块级别单例 ──────────────────────────────────────────
_service: Optional[MarketService] = None


def get_market_service() -> MarketService:
    global _service
    if _service is None:
        _service = MarketService(
            cache=get_cache_store(),
            acquisition=get_acquisition_layer(),
            router=get_ticker_router(),
            derived=get_derived_engine(),
        )
    return _service


def reset_market_service() -> None:
    global _service
    _service = None
