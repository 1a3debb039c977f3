"""统一 API 响应模型"""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class ApiResponse(BaseModel):
    """标准 API 响应封装，meta 用于携带缓存状态等附加信息"""
    success: bool = True
    data: Optional[Any] = None
    message: str = ""
    error: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(
        cls, data: Any = None, message: str = "success", meta: Optional[Dict[str, Any]] = None
    ) -> "ApiResponse":
        return cls(success=True, data=data, message=message, meta=meta)

    @classmethod
    def fail(cls, error: str, message: str = "failed") -> "ApiResponse":
        return cls(success=False, error=error, message=message)
