"""
调试路由
GET /api/debug/routes     - 路由表（基础代码、衍生代码、可选代码、按数据提供商分组）
GET /api/debug/provider   - 数据提供商状态；带 symbol 参数时实时获取单个代码
"""

from typing import Optional

from fastapi import APIRouter, Query

from indicator_service.layers.acquisition import get_acquisition_layer
from indicator_service.layers.routing import get_ticker_router
from indicator_service.models.response import ApiResponse

router = APIRouter(prefix="/api/debug", tags=["调试"])


@router.get("/routes", response_model=ApiResponse)
async def list_routes():
    ticker_router = get_ticker_router()
    data = ticker_router.describe()
    data["byProvider"] = {
        source.value: tickers for source, tickers in ticker_router.tickers_by_provider().items()
    }
    return ApiResponse.ok(data=data)


@router.get("/provider", response_model=ApiResponse)
async def provider_status(
    symbol: Optional[str] = Query(default=None, description="逻辑代码，例如 SPY / VIX / DXY"),
):
    acquisition = get_acquisition_layer()
    if not symbol:
        data = {source.value: adapter.status() for source, adapter in acquisition.adapters.items()}
        return ApiResponse.ok(data=data)

    ticker = symbol.upper()
    result = await acquisition.fetch(ticker)
    return ApiResponse.ok(
        data={
            "ticker": ticker,
            "indicator": result.indicator.model_dump(by_alias=True, mode="json"),
            "capability": result.capability.model_dump(by_alias=True, mode="json"),
        }
    )
