"""
测试公共设施：假时钟、测试配置、httpx.MockTransport 模拟的数据提供商
"""

import os
import sys
from typing import Dict, List, Set, Tuple

import httpx
import pytest

# 确保项目根目录在 sys.path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from indicator_service.config import IndicatorServiceSettings  # noqa: E402


class FakeClock:
    """可手动推进的时钟，替代 time.time"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_settings(**overrides) -> IndicatorServiceSettings:
    values = {
        "FRED_API_KEY": "test-fred-key",
        "ALPHAVANTAGE_API_KEY": "",
        "HTTP_MAX_RETRIES": 0,
        "HTTP_BACKOFF_BASE": 0.0,
        "QUOTE_CACHE_TTL": 60,
        "BATCH_CACHE_TTL": 300,
        "RATE_LIMIT_COOLDOWN": 60,
        "ROUTING_FILE": None,
    }
    values.update(overrides)
    return IndicatorServiceSettings(_env_file=None, **values)


def stooq_csv(symbol: str, open_: float, close: float, day: str = "2024-01-05") -> str:
    return (
        "Symbol,Date,Time,Open,High,Low,Close,Volume\r\n"
        f"{symbol.upper()},{day},22:00:09,{open_},{max(open_, close)},{min(open_, close)},{close},1000000\r\n"
    )


def fred_payload(latest: float, previous: float, day: str = "2024-01-05") -> dict:
    """按 sort_order=desc 排列，中间夹一个休市日的 "." 观测值"""
    return {
        "observations": [
            {"date": day, "value": str(latest)},
            {"date": "2024-01-04", "value": "."},
            {"date": "2024-01-03", "value": str(previous)},
        ]
    }


class MarketHandler:
    """
    httpx.MockTransport 的处理函数，按域名模拟 Stooq / FRED / Alpha Vantage

    quotes  : Stooq 代码 → (open, close)，未登记的代码默认 (100, 102)
    series  : FRED 序列 → (latest, previous)，未登记的序列默认 (4.0, 3.9)
    failing : 返回 500 的代码 / 序列
    bodies  : 代码 / 序列 → 固定响应正文（用于限流、异常格式等场景）
    """

    def __init__(self):
        self.quotes: Dict[str, Tuple[float, float]] = {}
        self.series: Dict[str, Tuple[float, float]] = {}
        self.failing: Set[str] = set()
        self.bodies: Dict[str, str] = {}
        self.calls: List[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if "stooq" in request.url.host:
            symbol = params["s"]
        elif "stlouisfed" in request.url.host:
            symbol = params["series_id"]
        else:
            symbol = params.get("symbol", "")
        self.calls.append(symbol)

        if symbol in self.failing:
            return httpx.Response(500, text="server error")
        if symbol in self.bodies:
            return httpx.Response(200, text=self.bodies[symbol])

        if "stooq" in request.url.host:
            open_, close = self.quotes.get(symbol, (100.0, 102.0))
            return httpx.Response(200, text=stooq_csv(symbol, open_, close))
        if "stlouisfed" in request.url.host:
            latest, previous = self.series.get(symbol, (4.0, 3.9))
            return httpx.Response(200, json=fred_payload(latest, previous))
        return httpx.Response(
            200,
            json={
                "Global Quote": {
                    "01. symbol": symbol,
                    "05. price": "50.00",
                    "07. latest trading day": "2024-01-05",
                    "08. previous close": "49.00",
                    "09. change": "999",
                }
            },
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def handler() -> MarketHandler:
    return MarketHandler()


@pytest.fixture
def http_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
