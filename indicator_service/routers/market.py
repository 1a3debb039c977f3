"""
市场指标路由
GET /api/market  - 全部指标快照（指标、能力信息、告警、缓存状态、时间戳）
"""

from fastapi import APIRouter, HTTPException, Query, status

from indicator_service.errors import BatchTimeoutError
from indicator_service.models.indicator import FetchSettings, TimeframeRange, Timeframes
from indicator_service.models.response import ApiResponse
from indicator_service.services.market_service import get_market_service

router = APIRouter(prefix="/api", tags=["市场指标"])


@router.get("/market", response_model=ApiResponse)
async def get_market(
    refresh_interval: int = Query(default=15, alias="refreshInterval", ge=1),
    weight_preset: str = Query(default="balanced", alias="weightPreset"),
    short_min: int = Query(default=1, alias="shortMin", ge=1),
    short_max: int = Query(default=5, alias="shortMax", ge=1),
    medium_min: int = Query(default=10, alias="mediumMin", ge=1),
    medium_max: int = Query(default=30, alias="mediumMax", ge=1),
    long_min: int = Query(default=60, alias="longMin", ge=1),
    long_max: int = Query(default=252, alias="longMax", ge=1),
):
    """获取全部市场指标；部分指标不可用时仍返回 200，由 capabilities 说明原因"""
    fetch_settings = FetchSettings(
        refresh_interval=refresh_interval,
        weight_preset=weight_preset,
        timeframes=Timeframes(
            short=TimeframeRange(min=short_min, max=short_max),
            medium=TimeframeRange(min=medium_min, max=medium_max),
            long=TimeframeRange(min=long_min, max=long_max),
        ),
    )
    try:
        snapshot = await get_market_service().fetch_all(fetch_settings)
    except BatchTimeoutError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))

    return ApiResponse.ok(
        data=snapshot.model_dump(by_alias=True, mode="json"),
        message=f"获取 {len(snapshot.indicators)} 个指标成功",
        meta={
            "cacheState": snapshot.cache_state.value,
            "cacheAgeSeconds": snapshot.cache_age_seconds,
            "unresolved": snapshot.unresolved(),
        },
    )
