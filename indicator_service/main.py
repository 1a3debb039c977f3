"""
市场指标数据服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn indicator_service.main:app --host 0.0.0.0 --port 8002
    python -m indicator_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from indicator_service import __version__
from indicator_service.config import settings
from indicator_service.layers.acquisition import reset_acquisition_layer
from indicator_service.layers.http import close_http_client, init_http_client
from indicator_service.layers.routing import get_ticker_router
from indicator_service.routers import cache, debug, health, market
from indicator_service.services.market_service import reset_market_service

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    router = get_ticker_router()
    logger.info("=" * 60)
    logger.info(f"🚀 Market Indicator Service v{__version__} 启动中")
    logger.info(f"   路由表    : {settings.ROUTING_FILE or '内置'}（{len(router.all_tickers())} 个代码）")
    logger.info(f"   FRED      : {'已配置' if settings.fred_available else '未配置'}")
    logger.info(f"   AlphaVant.: {'已配置' if settings.alphavantage_available else '未配置'}")
    logger.info(f"   缓存 TTL  : 报价 {settings.QUOTE_CACHE_TTL:.0f}s / 整批 {settings.BATCH_CACHE_TTL:.0f}s")
    logger.info("=" * 60)

    if not settings.fred_available:
        logger.warning("⚠️ FRED_API_KEY 未配置，VIX 与美债收益率将不可用")

    init_http_client(settings.HTTP_TIMEOUT)

    yield

    logger.info("🔄 指标数据服务正在关闭...")
    await close_http_client()
    reset_market_service()
    reset_acquisition_layer()
    logger.info("✅ 指标数据服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="Market Indicator Service",
    description=(
        "市场指标获取与缓存微服务，提供以下功能：\n"
        "- 📊 美股 ETF / 板块 / 利率 / 波动率指标（Stooq / FRED / Alpha Vantage）\n"
        "- 🗄️ 进程内 TTL 缓存，请求合并，最后可用值降级\n"
        "- 📈 衍生指标（信用利差比值、收益率曲线利差、市场宽度）\n\n"
        "**分层架构**\n"
        "```\n"
        "Routing Layer      ← 逻辑代码 → 数据提供商\n"
        "Acquisition Layer  ← 适配器拉取原始数据\n"
        "Cache Layer        ← TTL + single-flight + LKG\n"
        "Processing Layer   ← 解析结果标准化\n"
        "Derived Layer      ← 比值 / 利差计算\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "内部服务错误", "message": str(exc)},
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(market.router)
app.include_router(cache.router)
app.include_router(debug.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Market Indicator Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "indicator_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
