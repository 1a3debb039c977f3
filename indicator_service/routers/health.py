"""健康检查路由"""

import time

from fastapi import APIRouter

from indicator_service import __version__
from indicator_service.config import settings
from indicator_service.layers.acquisition import get_acquisition_layer
from indicator_service.services.market_service import get_market_service

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health():
    """服务健康检查：数据提供商配置、最近一批数据的缓存状态与不可用代码"""
    providers = {
        source.value: adapter.status()
        for source, adapter in get_acquisition_layer().adapters.items()
    }
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "Market Indicator Service",
            "providers": providers,
            "use_fred_yield_spread": settings.USE_FRED_YIELD_SPREAD,
            "batch": get_market_service().batch_status(),
        },
        "message": "服务运行正常",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """Kubernetes readiness probe"""
    return {"ready": True}
