"""
数据提供商适配器基类

fetch(ticker) 的约定：
  · 按候选代码顺序尝试，第一个解析成功的结果生效
  · 每个候选代码的网络请求都经过缓存层 single_flight，TTL 内同一代码最多一次外部请求
  · 任何失败（未配置 / 限流 / 解析 / 网络 / 未知异常）都转换为 capability.ok=False，
    不向调用方抛出异常
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import httpx

from indicator_service.config import IndicatorServiceSettings, settings
from indicator_service.errors import (
    ProviderError,
    ProviderParseError,
    ProviderRateLimited,
    ReasonCode,
)
from indicator_service.layers.cache import CacheStore
from indicator_service.layers.http import Sleep, get_with_retry
from indicator_service.layers.processing import (
    ParseFailed,
    ParseOk,
    ParseResult,
    ProcessingLayer,
    get_processing_layer,
)
from indicator_service.layers.routing import TickerRouter
from indicator_service.models.indicator import AdapterResult, Capability, DataSource, Indicator

logger = logging.getLogger(__name__)


class SourceAdapter(ABC):
    """单个数据提供商的适配器"""

    source: DataSource
    name: str

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: CacheStore,
        router: TickerRouter,
        config: IndicatorServiceSettings = settings,
        processing: Optional[ProcessingLayer] = None,
        clock: Callable[[], float] = time.time,
        sleep: Sleep = asyncio.sleep,
    ):
        self._client = client
        self._cache = cache
        self._router = router
        self._config = config
        self._proc = processing or get_processing_layer()
        self._clock = clock
        self._sleep = sleep
        self._cooldown_until = 0.0

    # ── 子类实现 ──────────────────────────────────────────

    @property
    def available(self) -> bool:
        """是否已配置可用（例如 API Key）"""
        return True

    def default_candidates(self, ticker: str) -> List[str]:
        return [ticker]

    @abstractmethod
    async def fetch_raw(self, symbol: str) -> ParseResult:
        """请求并解析单个提供商代码，网络层错误以 ProviderError 抛出"""

    # ── 公共流程 ──────────────────────────────────────────

    def candidates(self, ticker: str) -> List[str]:
        route = self._router.route(ticker)
        if route is not None and route.candidates:
            return list(route.candidates)
        return self.default_candidates(ticker)

    def cache_key(self, symbol: str) -> str:
        return f"{self.name}:{symbol}"

    def in_cooldown(self) -> bool:
        return self._clock() < self._cooldown_until

    def status(self) -> Dict[str, object]:
        remaining = max(0.0, self._cooldown_until - self._clock())
        return {
            "available": self.available,
            "cooldown_seconds": round(remaining, 1),
        }

    async def _get(self, url: str, params: Dict[str, str]) -> httpx.Response:
        return await get_with_retry(
            self._client,
            self.name,
            url,
            params=params,
            timeout=self._config.HTTP_TIMEOUT,
            max_retries=self._config.HTTP_MAX_RETRIES,
            backoff_base=self._config.HTTP_BACKOFF_BASE,
            sleep=self._sleep,
        )

    def _start_cooldown(self) -> None:
        self._cooldown_until = self._clock() + self._config.RATE_LIMIT_COOLDOWN
        logger.warning(f"{self.name} 触发限流，冷却 {self._config.RATE_LIMIT_COOLDOWN:.0f}s")

    async def load(self, symbol: str) -> ParseOk:
        """single_flight 使用的拉取函数：成功返回 ParseOk，否则抛出 ProviderError"""
        if self.in_cooldown():
            raise ProviderRateLimited(self.name, "限流冷却中，跳过请求")
        try:
            result = await self.fetch_raw(symbol)
        except ProviderRateLimited:
            self._start_cooldown()
            raise
        if isinstance(result, ParseFailed):
            if result.code == ReasonCode.RATE_LIMITED:
                self._start_cooldown()
                raise ProviderRateLimited(self.name, result.reason)
            raise ProviderParseError(self.name, result.reason, code=result.code)
        return result

    async def fetch(
        self,
        ticker: str,
        candidates: Optional[List[str]] = None,
        display_name: Optional[str] = None,
        is_proxy: bool = False,
    ) -> AdapterResult:
        display = display_name or self._router.display_name(ticker)
        try:
            return await self._fetch(ticker, candidates, display, is_proxy)
        except Exception as exc:
            logger.error(f"{self.name} 获取 {ticker} 出现未预期的异常: {exc}", exc_info=True)
            return self.unavailable(
                ticker, display, f"未预期的错误: {exc}", ReasonCode.UNEXPECTED_ERROR, is_proxy=is_proxy
            )

    async def _fetch(
        self,
        ticker: str,
        candidates: Optional[List[str]],
        display: str,
        is_proxy: bool,
    ) -> AdapterResult:
        if not self.available:
            return self.unavailable(
                ticker, display, f"{self.name} API Key 未配置", ReasonCode.PROVIDER_UNAVAILABLE,
                is_proxy=is_proxy,
            )

        symbols = candidates or self.candidates(ticker)
        if not symbols:
            return self.unavailable(
                ticker, display, f"{ticker} 没有 {self.name} 代码映射", ReasonCode.NOT_MAPPED,
                is_proxy=is_proxy,
            )

        tried: List[str] = []
        last_error: Optional[ProviderError] = None
        for symbol in symbols:
            tried.append(symbol)
            try:
                result = await self._cache.single_flight(
                    self.cache_key(symbol),
                    lambda s=symbol: self.load(s),
                    self._config.QUOTE_CACHE_TTL,
                )
            except ProviderError as exc:
                last_error = exc
                logger.warning(f"{self.name} 代码 {symbol} 获取失败: {exc.message}")
                continue

            if result.is_stale:
                logger.info(f"{self.name} {ticker} 使用旧数据（{result.age_seconds}s）")
            indicator = self._proc.to_indicator(
                ticker, display, result.data, self.source, is_proxy=is_proxy, is_stale=result.is_stale
            )
            capability = Capability(
                ok=True,
                resolved_symbol=symbol,
                tried_symbols=tried,
                source_used=self.source,
                is_proxy=is_proxy or None,
                is_stale=result.is_stale or None,
            )
            return AdapterResult(indicator=indicator, capability=capability)

        return self.unavailable(
            ticker,
            display,
            f"{last_error.message}（已尝试: {', '.join(tried)}）",
            last_error.code,
            tried_symbols=tried,
            is_proxy=is_proxy,
        )

    def unavailable(
        self,
        ticker: str,
        display_name: str,
        reason: str,
        code: ReasonCode,
        tried_symbols: Optional[List[str]] = None,
        is_proxy: bool = False,
    ) -> AdapterResult:
        return AdapterResult(
            indicator=Indicator.unavailable(ticker, display_name, self.source),
            capability=Capability(
                ok=False,
                tried_symbols=tried_symbols,
                reason=reason,
                reason_code=code,
                source_used=self.source,
                is_proxy=is_proxy or None,
            ),
        )
