"""
数据提供商错误分类

适配器内部用异常表达失败原因，但任何异常都不会越过适配器边界：
适配器统一转换为 capability.ok=False + reason + reason_code。
"""

from enum import Enum


class ReasonCode(str, Enum):
    """能力信息中的机器可读失败原因"""

    NOT_MAPPED = "NOT_MAPPED"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    PARSE_ERROR = "PARSE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    NO_DATA = "NO_DATA"
    DERIVED_INPUT_MISSING = "DERIVED_INPUT_MISSING"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class ProviderError(Exception):
    """数据提供商错误基类"""

    code: ReasonCode = ReasonCode.UNEXPECTED_ERROR
    retryable: bool = False

    def __init__(self, provider: str, message: str, code: ReasonCode = None):
        self.provider = provider
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(f"[{provider}] {message}")


class ProviderUnavailable(ProviderError):
    """未配置凭证 / 认证失败，配置变更前不可恢复"""

    code = ReasonCode.PROVIDER_UNAVAILABLE


class ProviderRateLimited(ProviderError):
    """触发配额限制（包括 200 响应中携带的限流标记），冷却后再试"""

    code = ReasonCode.RATE_LIMITED


class ProviderParseError(ProviderError):
    """响应结构不符合预期"""

    code = ReasonCode.PARSE_ERROR


class NetworkError(ProviderError):
    """超时 / 连接失败 / 5xx，可退避重试"""

    code = ReasonCode.NETWORK_ERROR
    retryable = True


class BatchTimeoutError(Exception):
    """整批拉取超时且无任何可回退的旧数据"""
