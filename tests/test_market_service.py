"""
市场指标服务测试

覆盖范围：
  - 部分失败不影响整批
  - 整批缓存命中 / 不同参数不共享缓存
  - 数据提供商未配置告警、衍生缺失告警、FRED 利差覆盖
  - 整批超时：返回旧批次或抛出 BatchTimeoutError
"""

import asyncio

import pytest

from conftest import make_settings
from indicator_service.errors import BatchTimeoutError, ReasonCode
from indicator_service.layers.acquisition import AcquisitionLayer, create_adapters
from indicator_service.layers.cache import CacheStore
from indicator_service.layers.derived import DerivedEngine
from indicator_service.layers.routing import DerivedOp, DerivedSpec, TickerRoute, TickerRouter
from indicator_service.models.indicator import (
    AdapterResult,
    CacheState,
    Capability,
    DataSource,
    FetchSettings,
    Indicator,
    Session,
)
from indicator_service.services.market_service import MarketService


class FakeAdapter:
    def __init__(self, available=True):
        self.available = available


class FakeAcquisition:
    """按脚本返回结果的获取层：failing 中的代码返回不可用，raising 中的代码直接抛异常"""

    def __init__(self, failing=(), raising=(), delay=0.0, unavailable=()):
        self.failing = set(failing)
        self.raising = set(raising)
        self.delay = delay
        self.calls = []
        self._adapters = {
            source: FakeAdapter(available=source not in unavailable)
            for source in (DataSource.STOOQ, DataSource.FRED, DataSource.AV)
        }

    def adapter(self, source):
        return self._adapters.get(source)

    async def fetch(self, ticker):
        self.calls.append(ticker)
        if self.delay:
            await asyncio.sleep(self.delay)
        if ticker in self.raising:
            raise RuntimeError(f"{ticker} exploded")
        if ticker in self.failing:
            return AdapterResult(
                indicator=Indicator.unavailable(ticker, ticker, DataSource.STOOQ),
                capability=Capability(
                    ok=False, reason="HTTP 500", reason_code=ReasonCode.HTTP_ERROR, source_used=DataSource.STOOQ
                ),
            )
        day = 5 if ticker != "T03" else 8
        return AdapterResult(
            indicator=Indicator(
                ticker=ticker,
                display_name=ticker,
                price=10.0,
                previous_close=8.0,
                change=2.0,
                change_pct=25.0,
                session=Session.CLOSE,
                as_of_et=f"2024-01-0{day} 16:00:00 ET",
                source=DataSource.STOOQ,
            ),
            capability=Capability(ok=True, resolved_symbol=ticker.lower(), source_used=DataSource.STOOQ),
        )


TICKERS = [f"T{i:02d}" for i in range(10)]


def _router(extra_routes=None, derived=None):
    routes = {t: TickerRoute(provider=DataSource.STOOQ) for t in TICKERS}
    routes.update(extra_routes or {})
    return TickerRouter(routes=routes, derived=derived or {})


def _service(acquisition, router, clock, **overrides):
    cache = CacheStore(clock=clock)
    config = make_settings(**overrides)
    return MarketService(cache, acquisition, router, DerivedEngine(router), config), cache


# ─────────────────────────────────────────────────────────
# 1. 整批拉取
# ─────────────────────────────────────────────────────────

class TestFetchAll:
    def test_partial_failures_do_not_abort_batch(self, clock):
        acq = FakeAcquisition(failing={"T01"}, raising={"T02"})
        service, _ = _service(acq, _router(), clock)

        snapshot = asyncio.run(service.fetch_all())
        assert len(snapshot.indicators) == 10
        assert len(snapshot.capabilities) == 10
        assert snapshot.unresolved() == ["T01", "T02"]
        assert snapshot.capabilities["T02"].reason_code == ReasonCode.UNEXPECTED_ERROR
        assert snapshot.indicators["T02"].price is None
        assert snapshot.cache_state == CacheState.LIVE
        assert snapshot.cache_age_seconds == 0

    def test_data_as_of_is_latest_indicator_timestamp(self, clock):
        service, _ = _service(FakeAcquisition(), _router(), clock)
        snapshot = asyncio.run(service.fetch_all())
        assert snapshot.data_as_of_et == "2024-01-08 16:00:00 ET"
        assert snapshot.last_updated_et >= snapshot.pulled_at_et

    def test_cached_batch_served_without_fetching(self, clock):
        acq = FakeAcquisition()
        service, _ = _service(acq, _router(), clock)

        asyncio.run(service.fetch_all())
        clock.advance(100)
        second = asyncio.run(service.fetch_all())
        assert len(acq.calls) == 10
        assert second.cache_state == CacheState.CACHED
        assert second.cache_age_seconds == 100

    def test_different_settings_do_not_share_batch(self, clock):
        acq = FakeAcquisition()
        service, _ = _service(acq, _router(), clock)

        asyncio.run(service.fetch_all(FetchSettings()))
        asyncio.run(service.fetch_all(FetchSettings(weight_preset="momentum")))
        assert len(acq.calls) == 20

    def test_expired_batch_refetched(self, clock):
        acq = FakeAcquisition()
        service, _ = _service(acq, _router(), clock)

        asyncio.run(service.fetch_all())
        clock.advance(301)
        snapshot = asyncio.run(service.fetch_all())
        assert len(acq.calls) == 20
        assert snapshot.cache_state == CacheState.LIVE

    def test_batch_status(self, clock):
        service, _ = _service(FakeAcquisition(failing={"T05"}), _router(), clock)
        assert service.batch_status() == {"cached": False}

        asyncio.run(service.fetch_all())
        status = service.batch_status()
        assert status["cached"] is True
        assert status["is_stale"] is False
        assert status["unresolved"] == ["T05"]


# ─────────────────────────────────────────────────────────
# 2. 告警
# ─────────────────────────────────────────────────────────

class TestWarnings:
    def test_unconfigured_provider_warning(self, clock):
        router = _router(extra_routes={"VIX": TickerRoute(provider=DataSource.FRED, candidates=["VIXCLS"])})
        acq = FakeAcquisition(unavailable={DataSource.FRED})
        service, _ = _service(acq, router, clock)

        snapshot = asyncio.run(service.fetch_all())
        codes = [w.code for w in snapshot.warnings]
        assert "FRED_UNAVAILABLE" in codes
        assert "AV_UNAVAILABLE" not in codes

    def test_derived_missing_warning(self, clock):
        derived = {"T00_T01": DerivedSpec(a="T00", b="T01", op=DerivedOp.RATIO)}
        service, _ = _service(FakeAcquisition(failing={"T01"}), _router(derived=derived), clock)

        snapshot = asyncio.run(service.fetch_all())
        assert snapshot.capabilities["T00_T01"].ok is False
        assert [w.code for w in snapshot.warnings] == ["DERIVED_MISSING"]

    def test_optional_component_missing_no_warning(self, clock):
        router = _router(
            extra_routes={"OPT": TickerRoute(provider=DataSource.STOOQ, optional=True)},
            derived={"T00_OPT": DerivedSpec(a="T00", b="OPT", op=DerivedOp.SPREAD)},
        )
        service, _ = _service(FakeAcquisition(failing={"OPT"}), router, clock)

        snapshot = asyncio.run(service.fetch_all())
        assert snapshot.capabilities["T00_OPT"].ok is False
        assert snapshot.warnings == []

    def test_derived_computed_from_base(self, clock):
        derived = {"T00_T01": DerivedSpec(a="T00", b="T01", op=DerivedOp.SPREAD)}
        service, _ = _service(FakeAcquisition(), _router(derived=derived), clock)

        snapshot = asyncio.run(service.fetch_all())
        assert snapshot.capabilities["T00_T01"].ok is True
        assert snapshot.indicators["T00_T01"].price == 0.0
        assert len(snapshot.indicators) == 11


# ─────────────────────────────────────────────────────────
# 3. 整批超时
# ─────────────────────────────────────────────────────────

class TestBatchTimeout:
    def test_timeout_without_previous_batch_raises(self, clock):
        service, _ = _service(FakeAcquisition(delay=1.0), _router(), clock, BATCH_TIMEOUT=0.05)
        with pytest.raises(BatchTimeoutError):
            asyncio.run(service.fetch_all())

    def test_timeout_serves_stale_batch(self, clock):
        acq = FakeAcquisition()
        service, _ = _service(acq, _router(), clock, BATCH_TIMEOUT=0.05)

        asyncio.run(service.fetch_all())
        clock.advance(400)
        acq.delay = 1.0
        snapshot = asyncio.run(service.fetch_all())

        assert snapshot.cache_state == CacheState.STALE
        assert snapshot.cache_age_seconds == 400
        assert len(snapshot.indicators) == 10
        assert snapshot.warnings[-1].code == "BATCH_TIMEOUT"


# ─────────────────────────────────────────────────────────
# 4. 完整链路（真实适配器 + MockTransport）
# ─────────────────────────────────────────────────────────

class TestEndToEnd:
    def _build(self, http_client, clock, **overrides):
        router = TickerRouter()
        cache = CacheStore(clock=clock)
        config = make_settings(**overrides)
        adapters = create_adapters(http_client, cache, router, config)
        for adapter in adapters.values():
            adapter._clock = clock
        acquisition = AcquisitionLayer(adapters, router)
        return MarketService(cache, acquisition, router, DerivedEngine(router), config), router

    def test_default_table_with_fred(self, http_client, handler, clock):
        handler.series["DGS10"] = (4.5, 4.4)
        handler.series["DGS2"] = (4.0, 4.2)
        service, router = self._build(http_client, clock)

        snapshot = asyncio.run(service.fetch_all())
        assert set(snapshot.indicators) == set(router.all_tickers())
        assert snapshot.unresolved() == []
        assert snapshot.warnings == []

        spread = snapshot.indicators["YIELD_10Y_2Y"]
        assert snapshot.capabilities["YIELD_10Y_2Y"].resolved_symbol == "DGS10-DGS2"
        assert spread.source == DataSource.FRED
        assert spread.price == pytest.approx(0.5)

        dxy = snapshot.indicators["DXY"]
        assert dxy.is_proxy is True
        assert snapshot.capabilities["DXY"].resolved_symbol == "uup.us"

        # DGS10 / DGS2 只请求一次，利差复用同一缓存
        assert handler.calls.count("DGS10") == 1
        assert handler.calls.count("uup.us") == 1

    def test_default_table_without_fred_key(self, http_client, handler, clock):
        service, _ = self._build(http_client, clock, FRED_API_KEY="")

        snapshot = asyncio.run(service.fetch_all())
        codes = [w.code for w in snapshot.warnings]
        assert "FRED_UNAVAILABLE" in codes
        assert "DERIVED_MISSING" in codes
        assert snapshot.capabilities["VIX"].reason_code == ReasonCode.PROVIDER_UNAVAILABLE
        assert snapshot.capabilities["YIELD_10Y_2Y"].reason_code == ReasonCode.DERIVED_INPUT_MISSING
        assert snapshot.capabilities["SPY"].ok is True
        assert not any(call.startswith("DGS") for call in handler.calls)

    def test_yield_spread_failure_keeps_engine_value(self, http_client, handler, clock):
        service, _ = self._build(http_client, clock, USE_FRED_YIELD_SPREAD=True)
        handler.failing.add("DGS2")

        snapshot = asyncio.run(service.fetch_all())
        codes = [w.code for w in snapshot.warnings]
        assert "YIELD_SPREAD_FAILED" in codes
        assert snapshot.capabilities["YIELD_10Y_2Y"].ok is False

    def test_unrouted_ticker_returned_as_not_mapped(self, http_client, handler, clock):
        router = TickerRouter(
            routes={"SPY": TickerRoute(provider=DataSource.STOOQ), "ORPHAN": TickerRoute()},
            derived={},
        )
        cache = CacheStore(clock=clock)
        config = make_settings()
        acquisition = AcquisitionLayer(create_adapters(http_client, cache, router, config), router)
        service = MarketService(cache, acquisition, router, DerivedEngine(router), config)

        snapshot = asyncio.run(service.fetch_all())
        assert set(snapshot.indicators) == {"SPY", "ORPHAN"}
        assert snapshot.indicators["ORPHAN"].price is None
        assert snapshot.capabilities["ORPHAN"].ok is False
        assert snapshot.capabilities["ORPHAN"].reason_code == ReasonCode.NOT_MAPPED
        assert snapshot.capabilities["SPY"].ok is True
