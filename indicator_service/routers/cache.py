"""
缓存管理路由
GET  /api/cache/stats     - 缓存统计
POST /api/cache/clear     - 清理缓存
"""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from indicator_service.layers.cache import get_cache_store
from indicator_service.models.response import ApiResponse

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


class ClearRequest(BaseModel):
    key: Optional[str] = None
    include_lkg: bool = False


@router.get("/stats", response_model=ApiResponse)
async def cache_stats():
    """获取缓存统计信息（条目数、键列表、各键的状态与年龄）"""
    return ApiResponse.ok(data=get_cache_store().stats())


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(body: Optional[ClearRequest] = None):
    """清理单个键或全部主缓存；最后可用值默认保留"""
    body = body or ClearRequest()
    store = get_cache_store()
    if body.key:
        removed = store.delete(body.key)
        return ApiResponse.ok(data={"removed": int(removed)}, message=f"缓存已清理: {body.key}")
    removed = store.clear(include_lkg=body.include_lkg)
    return ApiResponse.ok(data={"removed": removed}, message="缓存已全部清理")
