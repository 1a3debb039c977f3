"""
指标数据服务配置模块
支持从环境变量 / .env 读取配置，数据提供商的 API Key 均为可选项
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IndicatorServiceSettings(BaseSettings):
    """指标数据服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8002)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── 数据提供商配置 ─────────────────────────────────────
    FRED_API_KEY: str = Field(default="")
    ALPHAVANTAGE_API_KEY: str = Field(default="")
    STOOQ_BASE_URL: str = Field(default="https://stooq.com/q/l/")
    FRED_BASE_URL: str = Field(default="https://api.stlouisfed.org/fred/series/observations")
    ALPHAVANTAGE_BASE_URL: str = Field(default="https://www.alphavantage.co/query")

    # 路由表外部配置文件（JSON），为空时使用内置 Stooq + FRED 路由表
    ROUTING_FILE: Optional[str] = Field(default=None)
    # FRED 可用时使用 DGS10-DGS2 直接计算 10Y-2Y 利差
    USE_FRED_YIELD_SPREAD: bool = Field(default=True)

    # ── 缓存配置（秒） ────────────────────────────────────
    QUOTE_CACHE_TTL: float = Field(default=60)       # 单个报价 TTL
    BATCH_CACHE_TTL: float = Field(default=300)      # 整批结果 TTL

    # ── 网络请求配置 ──────────────────────────────────────
    HTTP_TIMEOUT: float = Field(default=15.0)        # 单次请求超时（秒）
    HTTP_MAX_RETRIES: int = Field(default=2)         # 可重试错误的最大重试次数
    HTTP_BACKOFF_BASE: float = Field(default=0.5)    # 指数退避基数（秒）
    RATE_LIMIT_COOLDOWN: float = Field(default=60.0) # 触发限流后的冷却时间（秒）
    BATCH_TIMEOUT: float = Field(default=45.0)       # 整批拉取超时（秒）

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")

    @property
    def fred_available(self) -> bool:
        return bool(self.FRED_API_KEY)

    @property
    def alphavantage_available(self) -> bool:
        return bool(self.ALPHAVANTAGE_API_KEY)


@lru_cache
def get_settings() -> IndicatorServiceSettings:
    """获取全局配置（单例）"""
    return IndicatorServiceSettings()


settings = get_settings()
