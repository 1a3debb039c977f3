"""
获取层 – 按路由表把逻辑代码分派给对应的数据提供商适配器

运行时不做跨提供商回退：逻辑代码只走主映射；没有主映射时才使用代理映射。
衍生代码不会进入获取层，由衍生指标引擎根据基础指标计算。
"""

import logging
from typing import Dict, Optional

import httpx

from indicator_service.config import IndicatorServiceSettings, settings
from indicator_service.errors import ReasonCode
from indicator_service.layers.cache import CacheStore, get_cache_store
from indicator_service.layers.http import get_http_client
from indicator_service.layers.routing import TickerRouter, get_ticker_router
from indicator_service.models.indicator import AdapterResult, Capability, DataSource, Indicator
from indicator_service.providers.alphavantage import AlphaVantageAdapter
from indicator_service.providers.base import SourceAdapter
from indicator_service.providers.fred import FredAdapter
from indicator_service.providers.stooq import StooqAdapter

logger = logging.getLogger(__name__)


def create_adapters(
    client: httpx.AsyncClient,
    cache: CacheStore,
    router: TickerRouter,
    config: IndicatorServiceSettings = settings,
) -> Dict[DataSource, SourceAdapter]:
    """创建全部数据提供商适配器，共享同一个 HTTP 客户端与缓存"""
    return {
        DataSource.STOOQ: StooqAdapter(client, cache, router, config),
        DataSource.FRED: FredAdapter(client, cache, router, config),
        DataSource.AV: AlphaVantageAdapter(client, cache, router, config),
    }


class AcquisitionLayer:
    """数据获取层：逻辑代码 → 路由 → 适配器"""

    def __init__(self, adapters: Dict[DataSource, SourceAdapter], router: TickerRouter):
        self._adapters = adapters
        self._router = router

    def adapter(self, source: DataSource) -> Optional[SourceAdapter]:
        return self._adapters.get(source)

    @property
    def adapters(self) -> Dict[DataSource, SourceAdapter]:
        return dict(self._adapters)

    async def fetch(self, ticker: str) -> AdapterResult:
        """获取单个基础代码，失败以 capability.ok=False 表示"""
        if self._router.is_derived(ticker):
            return self._unmapped(ticker, "衍生代码由衍生指标引擎计算，不直接获取")

        route = self._router.route(ticker)
        if route is None:
            return self._unmapped(ticker, f"{ticker} 不在路由表中")

        if route.provider is not None:
            adapter = self._adapters.get(route.provider)
            if adapter is None:
                return self._missing_adapter(ticker, route.provider)
            return await adapter.fetch(ticker)

        if route.proxy is not None:
            proxy = route.proxy
            adapter = self._adapters.get(proxy.provider)
            if adapter is None:
                return self._missing_adapter(ticker, proxy.provider)
            logger.debug(f"{ticker} 使用代理代码 {proxy.ticker}（{proxy.provider.value}）")
            return await adapter.fetch(
                ticker,
                candidates=adapter.candidates(proxy.ticker),
                display_name=proxy.label or self._router.display_name(ticker),
                is_proxy=True,
            )

        return self._unmapped(ticker, f"{ticker} 没有可用的数据提供商映射")

    def _unmapped(self, ticker: str, reason: str) -> AdapterResult:
        source = self._router.provider_for(ticker) or DataSource.PROXY
        return AdapterResult(
            indicator=Indicator.unavailable(ticker, self._router.display_name(ticker), source),
            capability=Capability(
                ok=False, reason=reason, reason_code=ReasonCode.NOT_MAPPED, source_used=source
            ),
        )

    def _missing_adapter(self, ticker: str, source: DataSource) -> AdapterResult:
        logger.warning(f"{ticker} 路由到 {source.value}，但该数据提供商未注册适配器")
        return AdapterResult(
            indicator=Indicator.unavailable(ticker, self._router.display_name(ticker), source),
            capability=Capability(
                ok=False,
                reason=f"{source.value} 适配器未注册",
                reason_code=ReasonCode.PROVIDER_UNAVAILABLE,
                source_used=source,
            ),
        )


# ── 模块级别单例 ──────────────────────────────────────────
_acquisition: Optional[AcquisitionLayer] = None


def get_acquisition_layer() -> AcquisitionLayer:
    """依赖共享 HTTP 客户端，须在应用生命周期启动之后调用"""
    global _acquisition
    if _acquisition is None:
        router = get_ticker_router()
        adapters = create_adapters(get_http_client(), get_cache_store(), router)
        _acquisition = AcquisitionLayer(adapters, router)
    return _acquisition


def reset_acquisition_layer() -> None:
    """HTTP 客户端关闭后调用，下次访问时重新绑定"""
    global _acquisition
    _acquisition = None
