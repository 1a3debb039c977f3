"""指标数据模型：对下游（展示 / 打分层）暴露的完整数据契约"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from indicator_service.errors import ReasonCode


class Session(str, Enum):
    REGULAR = "REGULAR"
    PRE = "PRE"
    POST = "POST"
    CLOSE = "CLOSE"
    NA = "NA"


class DataSource(str, Enum):
    STOOQ = "STOOQ"
    FRED = "FRED"
    AV = "AV"
    PROXY = "PROXY"


class CacheState(str, Enum):
    LIVE = "LIVE"
    CACHED = "CACHED"
    STALE = "STALE"


class _CamelModel(BaseModel):
    """JSON 字段使用 camelCase，Python 属性保持 snake_case"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Indicator(_CamelModel):
    ticker: str
    display_name: str
    price: Optional[float] = None
    previous_close: Optional[float] = None
    change: Optional[float] = None
    change_pct: Optional[float] = None
    session: Session = Session.NA
    as_of_et: Optional[str] = Field(default=None, alias="asOfET")
    source: DataSource
    is_proxy: Optional[bool] = None
    is_stale: Optional[bool] = None

    @classmethod
    def unavailable(cls, ticker: str, display_name: str, source: DataSource) -> "Indicator":
        """降级条目：无价格，session=NA，调用方展示为“不可用”而不是省略"""
        return cls(ticker=ticker, display_name=display_name, session=Session.NA, source=source)


class Capability(_CamelModel):
    ok: bool
    resolved_symbol: Optional[str] = None
    tried_symbols: Optional[List[str]] = None
    reason: Optional[str] = None
    reason_code: Optional[ReasonCode] = None
    source_used: DataSource
    is_proxy: Optional[bool] = None
    is_stale: Optional[bool] = None


class DataWarning(_CamelModel):
    code: str
    message: str


class AdapterResult(BaseModel):
    """单个代码的获取结果（适配器 / 衍生层的统一返回形态）"""

    indicator: Indicator
    capability: Capability


# ── 批次参数 ──────────────────────────────────────────────

class TimeframeRange(BaseModel):
    min: int
    max: int


class Timeframes(BaseModel):
    short: TimeframeRange = Field(default_factory=lambda: TimeframeRange(min=1, max=5))
    medium: TimeframeRange = Field(default_factory=lambda: TimeframeRange(min=10, max=30))
    long: TimeframeRange = Field(default_factory=lambda: TimeframeRange(min=60, max=252))


class FetchSettings(_CamelModel):
    """决定整批缓存键的请求参数，不同参数的请求不会互相命中"""

    refresh_interval: int = 15
    weight_preset: str = "balanced"
    timeframes: Timeframes = Field(default_factory=Timeframes)


# ── 整批结果 ──────────────────────────────────────────────

class MarketSnapshot(_CamelModel):
    indicators: Dict[str, Indicator] = Field(default_factory=dict)
    capabilities: Dict[str, Capability] = Field(default_factory=dict)
    warnings: List[DataWarning] = Field(default_factory=list)
    cache_state: CacheState = CacheState.LIVE
    cache_age_seconds: int = 0
    pulled_at_et: str = Field(alias="pulledAtET")
    last_updated_et: str = Field(alias="lastUpdatedET")
    data_as_of_et: str = Field(alias="dataAsOfET")

    def unresolved(self) -> List[str]:
        """能力信息为不可用的代码列表"""
        return sorted(t for t, cap in self.capabilities.items() if not cap.ok)
