"""路由层测试：内置路由表、代理映射、外部路由文件"""

import json

import pytest

from indicator_service.layers.routing import (
    DerivedOp,
    DerivedSpec,
    ProxyRoute,
    TickerRoute,
    TickerRouter,
)
from indicator_service.models.indicator import DataSource


class TestDefaultTable:
    def setup_method(self):
        self.router = TickerRouter()

    def test_every_base_ticker_has_a_provider(self):
        for ticker in self.router.base_tickers():
            assert self.router.provider_for(ticker) is not None, ticker

    def test_etfs_route_to_stooq(self):
        assert self.router.provider_for("SPY") == DataSource.STOOQ
        assert self.router.provider_for("XLRE") == DataSource.STOOQ

    def test_rates_route_to_fred(self):
        assert self.router.provider_for("TNX") == DataSource.FRED
        assert self.router.route("TNX").candidates == ["DGS10"]

    def test_fred_fallback_series(self):
        assert self.router.route("IRX").candidates == ["DGS3MO", "TB3MS"]

    def test_proxy_only_ticker(self):
        route = self.router.route("DXY")
        assert route.provider is None
        assert route.proxy.ticker == "UUP"
        assert self.router.provider_for("DXY") == DataSource.STOOQ

    def test_derived_tickers(self):
        assert self.router.is_derived("HYG_LQD_RATIO")
        assert self.router.provider_for("YIELD_10Y_2Y") == DataSource.PROXY
        spec = self.router.derived_spec("YIELD_10Y_2Y")
        assert (spec.a, spec.b, spec.op) == ("TNX", "DGS2", DerivedOp.SPREAD)

    def test_derived_components_are_routed(self):
        for ticker in self.router.derived_tickers():
            spec = self.router.derived_spec(ticker)
            assert self.router.route(spec.a) is not None
            assert self.router.route(spec.b) is not None

    def test_optional_flags(self):
        assert self.router.is_optional("VIX")
        assert self.router.is_optional("DXY")
        assert not self.router.is_optional("SPY")
        assert not self.router.is_optional("UNKNOWN")

    def test_unknown_ticker(self):
        assert self.router.route("UNKNOWN") is None
        assert self.router.provider_for("UNKNOWN") is None
        assert self.router.display_name("UNKNOWN") == "UNKNOWN"

    def test_all_tickers_disjoint(self):
        base = set(self.router.base_tickers())
        derived = set(self.router.derived_tickers())
        assert not base & derived
        assert len(self.router.all_tickers()) == len(base) + len(derived)

    def test_tickers_by_provider(self):
        grouped = self.router.tickers_by_provider()
        assert "VIX" in grouped[DataSource.FRED]
        assert "DXY" in grouped[DataSource.STOOQ]
        assert DataSource.PROXY not in grouped

    def test_describe_uses_camel_case(self):
        data = self.router.describe()
        assert data["routes"]["DXY"]["proxy"]["ticker"] == "UUP"
        assert data["routes"]["VIX"]["displayName"] == "VIX"
        assert "VIX" in data["optional"]


class TestCustomTable:
    def test_overlap_rejected(self):
        with pytest.raises(ValueError):
            TickerRouter(
                routes={"A": TickerRoute(provider=DataSource.STOOQ)},
                derived={"A": DerivedSpec(a="A", b="A", op=DerivedOp.RATIO)},
            )

    def test_display_name_from_route(self):
        router = TickerRouter(
            routes={"X": TickerRoute(provider=DataSource.AV, display_name="Custom X")},
            derived={},
        )
        assert router.display_name("X") == "Custom X"

    def test_from_file(self, tmp_path):
        table = {
            "routes": {
                "SPY": {"provider": "AV", "candidates": ["SPY"]},
                "DXY": {"optional": True, "proxy": {"ticker": "UUP", "provider": "STOOQ"}},
                "UUP": {"provider": "STOOQ"},
            },
            "derived": {
                "SPY_UUP_RATIO": {"a": "SPY", "b": "UUP", "op": "ratio", "optionalComponents": ["UUP"]},
            },
        }
        path = tmp_path / "routes.json"
        path.write_text(json.dumps(table), encoding="utf-8")

        router = TickerRouter.from_file(str(path))
        assert router.provider_for("SPY") == DataSource.AV
        assert router.route("DXY").proxy == ProxyRoute(ticker="UUP", provider=DataSource.STOOQ)
        assert router.derived_spec("SPY_UUP_RATIO").optional_components == ["UUP"]
        assert router.base_tickers() == ["SPY", "DXY", "UUP"]
