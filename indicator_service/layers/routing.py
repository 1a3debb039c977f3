"""
路由层 – 逻辑代码 → 数据提供商

每个逻辑代码只映射到一个主数据提供商；没有主映射的代码可以配置代理代码
（例如 DXY 由 UUP 代替）。运行时不做跨提供商回退，同一提供商内的多种代码
写法由适配器按 candidates 顺序尝试。

路由表属于外部配置：设置 ROUTING_FILE 指向 JSON 文件即可整体替换内置表。
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from indicator_service.config import settings
from indicator_service.models.indicator import DataSource

logger = logging.getLogger(__name__)


class DerivedOp(str, Enum):
    RATIO = "ratio"
    SPREAD = "spread"


class _RouteModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ProxyRoute(_RouteModel):
    ticker: str
    provider: DataSource
    label: Optional[str] = None


class TickerRoute(_RouteModel):
    provider: Optional[DataSource] = None
    candidates: List[str] = Field(default_factory=list)
    display_name: Optional[str] = None
    optional: bool = False
    proxy: Optional[ProxyRoute] = None


class DerivedSpec(_RouteModel):
    a: str
    b: str
    op: DerivedOp
    display_name: Optional[str] = None
    # 这些组成部分缺失时不产生告警
    optional_components: List[str] = Field(default_factory=list)


class RoutingTable(_RouteModel):
    routes: Dict[str, TickerRoute]
    derived: Dict[str, DerivedSpec] = Field(default_factory=dict)


# ── 内置路由表（Stooq 负责 ETF，FRED 负责 VIX 与利率） ──────────

def _stooq(*tickers: str) -> Dict[str, TickerRoute]:
    return {t: TickerRoute(provider=DataSource.STOOQ) for t in tickers}


def _fred(series: str, name: str, fallbacks: tuple = (), optional: bool = False) -> TickerRoute:
    return TickerRoute(
        provider=DataSource.FRED,
        candidates=[series, *fallbacks],
        display_name=name,
        optional=optional,
    )


DEFAULT_ROUTES: Dict[str, TickerRoute] = {
    # VIX 需要 FRED_API_KEY，缺失时不影响其余指标
    "VIX": _fred("VIXCLS", "VIX", optional=True),
    "TNX": _fred("DGS10", "10-Year Yield"),
    "IRX": _fred("DGS3MO", "13-Week T-Bill", fallbacks=("TB3MS",)),
    "FVX": _fred("DGS5", "5-Year Yield"),
    "TYX": _fred("DGS30", "30-Year Yield"),
    "DGS2": _fred("DGS2", "2-Year Yield"),
    "DGS1": _fred("DGS1", "1-Year Yield"),
    **_stooq(
        "SPY", "QQQ", "IWM", "RSP",
        "HYG", "LQD", "TLT", "SHY",
        "UUP", "FXY",
        "GLD", "SLV", "USO", "DBA",
        "XLK", "XLF", "XLI", "XLE", "XLV", "XLP", "XLU", "XLRE", "XLY", "XLC",
    ),
    # 美元指数没有免费数据源，用 UUP 代替
    "DXY": TickerRoute(
        optional=True,
        proxy=ProxyRoute(ticker="UUP", provider=DataSource.STOOQ, label="US Dollar (UUP proxy)"),
    ),
}

DEFAULT_DERIVED: Dict[str, DerivedSpec] = {
    "HYG_LQD_RATIO": DerivedSpec(a="HYG", b="LQD", op=DerivedOp.RATIO),
    "YIELD_10Y_2Y": DerivedSpec(a="TNX", b="DGS2", op=DerivedOp.SPREAD),
    "RSP_SPY_RATIO": DerivedSpec(a="RSP", b="SPY", op=DerivedOp.RATIO),
    "IWM_SPY_RATIO": DerivedSpec(a="IWM", b="SPY", op=DerivedOp.RATIO),
}

DISPLAY_NAMES: Dict[str, str] = {
    "SPY": "S&P 500",
    "QQQ": "Nasdaq 100",
    "IWM": "Russell 2000",
    "RSP": "Equal Weight S&P",
    "HYG": "High Yield Corp",
    "LQD": "Inv Grade Corp",
    "TLT": "20+ Year Treasury",
    "SHY": "1-3 Year Treasury",
    "UUP": "USD Bull ETF",
    "FXY": "Japanese Yen",
    "GLD": "Gold",
    "SLV": "Silver",
    "USO": "Oil",
    "DBA": "Agriculture",
    "XLK": "Technology",
    "XLF": "Financials",
    "XLI": "Industrials",
    "XLE": "Energy",
    "XLV": "Healthcare",
    "XLP": "Consumer Staples",
    "XLU": "Utilities",
    "XLRE": "Real Estate",
    "XLY": "Consumer Disc.",
    "XLC": "Communication",
    "DXY": "US Dollar Index",
    "HYG_LQD_RATIO": "HYG/LQD",
    "YIELD_10Y_2Y": "10Y-2Y Spread",
    "RSP_SPY_RATIO": "Breadth (RSP/SPY)",
    "IWM_SPY_RATIO": "Small Caps (IWM/SPY)",
}


class TickerRouter:
    """静态路由表查询"""

    def __init__(
        self,
        routes: Optional[Dict[str, TickerRoute]] = None,
        derived: Optional[Dict[str, DerivedSpec]] = None,
    ):
        self._routes = dict(DEFAULT_ROUTES if routes is None else routes)
        self._derived = dict(DEFAULT_DERIVED if derived is None else derived)
        overlap = set(self._routes) & set(self._derived)
        if overlap:
            raise ValueError(f"代码同时出现在基础与衍生路由中: {sorted(overlap)}")

    @classmethod
    def from_file(cls, path: str) -> "TickerRouter":
        """从 JSON 文件加载路由表：{"routes": {...}, "derived": {...}}"""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        table = RoutingTable.model_validate(raw)
        logger.info(f"已加载外部路由表 {path}：{len(table.routes)} 个基础代码，{len(table.derived)} 个衍生代码")
        return cls(routes=table.routes, derived=table.derived)

    # ── 查询 ──────────────────────────────────────────────

    def route(self, ticker: str) -> Optional[TickerRoute]:
        return self._routes.get(ticker)

    def derived_spec(self, ticker: str) -> Optional[DerivedSpec]:
        return self._derived.get(ticker)

    def is_derived(self, ticker: str) -> bool:
        return ticker in self._derived

    def is_optional(self, ticker: str) -> bool:
        route = self._routes.get(ticker)
        return bool(route and route.optional)

    def provider_for(self, ticker: str) -> Optional[DataSource]:
        """衍生代码归属 PROXY；仅有代理映射的代码归属代理的提供商"""
        if self.is_derived(ticker):
            return DataSource.PROXY
        route = self._routes.get(ticker)
        if route is None:
            return None
        if route.provider is not None:
            return route.provider
        return route.proxy.provider if route.proxy else None

    def display_name(self, ticker: str) -> str:
        route = self._routes.get(ticker)
        if route and route.display_name:
            return route.display_name
        spec = self._derived.get(ticker)
        if spec and spec.display_name:
            return spec.display_name
        return DISPLAY_NAMES.get(ticker, ticker)

    def base_tickers(self) -> List[str]:
        return list(self._routes.keys())

    def derived_tickers(self) -> List[str]:
        return list(self._derived.keys())

    def all_tickers(self) -> List[str]:
        return self.base_tickers() + self.derived_tickers()

    def tickers_by_provider(self) -> Dict[DataSource, List[str]]:
        grouped: Dict[DataSource, List[str]] = {}
        for ticker in self._routes:
            provider = self.provider_for(ticker)
            if provider is None:
                continue
            grouped.setdefault(provider, []).append(ticker)
        return grouped

    def describe(self) -> dict:
        """调试接口使用的路由表快照"""
        return {
            "routes": {
                t: r.model_dump(by_alias=True, exclude_none=True, mode="json")
                for t, r in self._routes.items()
            },
            "derived": {
                t: d.model_dump(by_alias=True, exclude_none=True, mode="json")
                for t, d in self._derived.items()
            },
            "optional": sorted(t for t in self._routes if self.is_optional(t)),
        }


# ── 模块级别单例 ──────────────────────────────────────────
_router: Optional[TickerRouter] = None


def get_ticker_router() -> TickerRouter:
    global _router
    if _router is None:
        _router = TickerRouter.from_file(settings.ROUTING_FILE) if settings.ROUTING_FILE else TickerRouter()
    return _router
