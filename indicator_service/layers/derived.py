"""
衍生指标层 – 由两个基础指标计算比值 / 利差

  ratio  : A / B（price 与 previousClose 分别相除）
  spread : A - B，涨跌幅以 |previousClose| 为分母

任一组成部分不可用时衍生指标同样不可用；只有缺失的组成部分不是可选项时才产生告警。
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from indicator_service.errors import ReasonCode
from indicator_service.layers.processing import ParseOk, compute_change
from indicator_service.layers.routing import DerivedOp, DerivedSpec, TickerRouter, get_ticker_router
from indicator_service.models.indicator import Capability, DataSource, DataWarning, Indicator

logger = logging.getLogger(__name__)

DERIVED_MISSING = "DERIVED_MISSING"


@dataclass
class DerivedResult:
    indicators: Dict[str, Indicator] = field(default_factory=dict)
    capabilities: Dict[str, Capability] = field(default_factory=dict)
    warnings: List[DataWarning] = field(default_factory=list)


def combine(a: ParseOk, b: ParseOk, op: DerivedOp) -> Tuple[float, float, float, float]:
    """返回 (price, previous_close, change, change_pct)"""
    if op == DerivedOp.RATIO:
        price = a.value / b.value
        previous = a.prev_value / b.prev_value
        change, change_pct = compute_change(price, previous)
    else:
        price = a.value - b.value
        previous = a.prev_value - b.prev_value
        change, change_pct = compute_change(price, previous, abs_base=True)
    return price, previous, change, change_pct


class DerivedEngine:
    """衍生指标引擎，纯计算，不访问网络"""

    def __init__(self, router: TickerRouter):
        self._router = router

    def _usable(
        self,
        ticker: str,
        op: DerivedOp,
        role: str,
        indicators: Dict[str, Indicator],
        capabilities: Dict[str, Capability],
    ) -> Optional[Indicator]:
        cap = capabilities.get(ticker)
        ind = indicators.get(ticker)
        if cap is None or not cap.ok or ind is None:
            return None
        if ind.price is None or ind.previous_close is None:
            return None
        # 比值的分母为 0 视同缺失
        if op == DerivedOp.RATIO and role == "b" and (ind.price == 0 or ind.previous_close == 0):
            return None
        return ind

    def _is_optional(self, spec: DerivedSpec, component: str) -> bool:
        return component in spec.optional_components or self._router.is_optional(component)

    def compute_one(
        self,
        ticker: str,
        spec: DerivedSpec,
        indicators: Dict[str, Indicator],
        capabilities: Dict[str, Capability],
    ) -> Tuple[Indicator, Capability, Optional[DataWarning]]:
        display = self._router.display_name(ticker)
        ind_a = self._usable(spec.a, spec.op, "a", indicators, capabilities)
        ind_b = self._usable(spec.b, spec.op, "b", indicators, capabilities)

        if ind_a is None or ind_b is None:
            missing = [c for c, ind in ((spec.a, ind_a), (spec.b, ind_b)) if ind is None]
            capability = Capability(
                ok=False,
                reason=f"缺少组成部分: {', '.join(missing)}",
                reason_code=ReasonCode.DERIVED_INPUT_MISSING,
                source_used=DataSource.PROXY,
            )
            required = [c for c in missing if not self._is_optional(spec, c)]
            warning = None
            if required:
                warning = DataWarning(
                    code=DERIVED_MISSING,
                    message=f"无法计算 {ticker}: 缺少 {', '.join(required)}",
                )
            else:
                logger.info(f"{ticker} 的可选组成部分 {', '.join(missing)} 不可用，跳过")
            return Indicator.unavailable(ticker, display, DataSource.PROXY), capability, warning

        a = ParseOk(value=ind_a.price, prev_value=ind_a.previous_close)
        b = ParseOk(value=ind_b.price, prev_value=ind_b.previous_close)
        price, previous, change, change_pct = combine(a, b, spec.op)

        if ind_a.source == ind_b.source:
            suffix = f"({ind_a.source.value})"
        else:
            suffix = f"({ind_a.source.value}/{ind_b.source.value})"
        is_stale = bool(ind_a.is_stale or ind_b.is_stale)

        indicator = Indicator(
            ticker=ticker,
            display_name=f"{display} {suffix}",
            price=price,
            previous_close=previous,
            change=change,
            change_pct=change_pct,
            session=ind_a.session,
            as_of_et=ind_a.as_of_et or ind_b.as_of_et,
            source=DataSource.PROXY,
            is_stale=is_stale or None,
        )
        capability = Capability(
            ok=True,
            resolved_symbol=f"{spec.a}/{spec.b}" if spec.op == DerivedOp.RATIO else f"{spec.a}-{spec.b}",
            source_used=DataSource.PROXY,
            is_stale=is_stale or None,
        )
        return indicator, capability, None

    def compute(
        self,
        indicators: Dict[str, Indicator],
        capabilities: Dict[str, Capability],
        tickers: Optional[Iterable[str]] = None,
    ) -> DerivedResult:
        result = DerivedResult()
        for ticker in tickers if tickers is not None else self._router.derived_tickers():
            spec = self._router.derived_spec(ticker)
            if spec is None:
                continue
            indicator, capability, warning = self.compute_one(ticker, spec, indicators, capabilities)
            result.indicators[ticker] = indicator
            result.capabilities[ticker] = capability
            if warning is not None:
                result.warnings.append(warning)
        return result


# ── 模块级别单例 ──────────────────────────────────────────
_engine: Optional[DerivedEngine] = None


def get_derived_engine() -> DerivedEngine:
    global _engine
    if _engine is None:
        _engine = DerivedEngine(get_ticker_router())
    return _engine
