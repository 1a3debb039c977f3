"""
HTTP 请求封装
  · 每次请求有独立超时
  · 仅对 5xx / 网络错误做指数退避重试，4xx 不重试
  · 429 视为限流，401/403 视为凭证不可用
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from indicator_service.errors import (
    NetworkError,
    ProviderError,
    ProviderRateLimited,
    ProviderUnavailable,
    ReasonCode,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/csv,application/json,text/plain,*/*;q=0.9",
    "Accept-Language": "en-US,en;q=0.9",
}


def create_http_client(timeout: float) -> httpx.AsyncClient:
    """创建进程共享的异步 HTTP 客户端（由应用生命周期负责关闭）"""
    return httpx.AsyncClient(timeout=timeout, headers=DEFAULT_HEADERS, follow_redirects=True)


async def get_with_retry(
    client: httpx.AsyncClient,
    provider: str,
    url: str,
    params: Optional[Dict[str, str]] = None,
    timeout: float = 15.0,
    max_retries: int = 2,
    backoff_base: float = 0.5,
    sleep: Sleep = asyncio.sleep,
) -> httpx.Response:
    """
    GET 请求，返回 2xx 响应；其余情况抛出 ProviderError 子类

    Args:
        provider: 数据提供商名称（用于日志与错误信息）
        max_retries: 可重试错误的额外尝试次数
        backoff_base: 第 n 次重试前等待 backoff_base * 2**n 秒
    """
    attempt = 0
    while True:
        try:
            response = await client.get(url, params=params, timeout=timeout)
        except httpx.TimeoutException:
            error: ProviderError = NetworkError(provider, f"请求超时（{timeout}s）")
        except httpx.TransportError as exc:
            error = NetworkError(provider, f"网络错误: {exc.__class__.__name__}")
        else:
            status = response.status_code
            if 200 <= status < 300:
                return response
            if status == 429:
                raise ProviderRateLimited(provider, "HTTP 429 请求过于频繁")
            if status in (401, 403):
                raise ProviderUnavailable(provider, f"HTTP {status} 认证失败")
            if status < 500:
                raise ProviderError(provider, f"HTTP {status}", code=ReasonCode.HTTP_ERROR)
            error = NetworkError(provider, f"HTTP {status}", code=ReasonCode.HTTP_ERROR)

        if attempt >= max_retries:
            raise error
        delay = backoff_base * (2 ** attempt)
        attempt += 1
        logger.warning(f"{error}，{delay:.1f}s 后重试（第 {attempt}/{max_retries} 次）")
        await sleep(delay)


# ── 全局客户端实例 ─────────────────────────────────────────
_client: Optional[httpx.AsyncClient] = None


def init_http_client(timeout: float) -> httpx.AsyncClient:
    """应用启动时创建共享客户端"""
    global _client
    if _client is None:
        _client = create_http_client(timeout)
        logger.info(f"HTTP 客户端已创建（超时 {timeout}s）")
    return _client


def get_http_client() -> httpx.AsyncClient:
    if _client is None:
        raise RuntimeError("HTTP 客户端尚未初始化，请先调用 init_http_client()")
    return _client


async def close_http_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("HTTP 客户端已关闭")
