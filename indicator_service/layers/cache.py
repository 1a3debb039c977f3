"""
缓存层 – 进程内 TTL 缓存
  · 主缓存：TTL 内为 CACHED，过期后保留为 STALE，直到下一次成功拉取覆盖
  · 请求合并：同一个键同时只有一个拉取任务，并发调用方等待同一结果
  · 最后可用值（LKG）：只在成功拉取时更新，永不过期，仅作为回退数据源

缓存不是数据源，进程重启即丢失。
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from indicator_service.models.indicator import CacheState, FetchSettings

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


def _make_key(namespace: str, *parts: str) -> str:
    """生成规范化缓存键"""
    raw = ":".join([namespace] + [str(p) for p in parts])
    if len(raw) > 200:
        raw = namespace + ":" + hashlib.md5(raw.encode()).hexdigest()
    return raw


def make_batch_key(fetch_settings: FetchSettings, namespace: str = "market:all") -> str:
    """整批结果的缓存键：刷新间隔、权重预设、各周期上下限全部参与"""
    tf = fetch_settings.timeframes
    return _make_key(
        namespace,
        f"ri={fetch_settings.refresh_interval}",
        f"wp={fetch_settings.weight_preset}",
        f"tf={tf.short.min}-{tf.short.max},{tf.medium.min}-{tf.medium.max},{tf.long.min}-{tf.long.max}",
    )


@dataclass
class CacheEntry:
    data: Any
    created_at: float
    expires_at: float


@dataclass
class LKGEntry:
    data: Any
    created_at: float


@dataclass
class CacheResult:
    data: Any
    state: CacheState
    age_seconds: int
    is_stale: bool = False


class CacheStore:
    """TTL 缓存 + single-flight + LKG，实例由调用方注入，测试可各自独立创建"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lkg: Dict[str, LKGEntry] = {}
        self._in_flight: Dict[str, asyncio.Task] = {}

    def _age(self, created_at: float) -> int:
        return max(0, int(self._clock() - created_at))

    def _stale_age(self, created_at: float) -> int:
        # 过期数据的年龄至少为 1 秒，TTL 不足 1 秒时也不会报告 0
        return max(1, self._age(created_at))

    # ── 基本读写 ──────────────────────────────────────────

    def get(self, key: str) -> CacheResult:
        entry = self._entries.get(key)
        if entry is None:
            return CacheResult(data=None, state=CacheState.LIVE, age_seconds=0)

        age = self._age(entry.created_at)
        if self._clock() < entry.expires_at:
            return CacheResult(data=entry.data, state=CacheState.CACHED, age_seconds=age)
        return CacheResult(
            data=entry.data, state=CacheState.STALE, age_seconds=self._stale_age(entry.created_at), is_stale=True
        )

    def set(self, key: str, data: Any, ttl: float) -> None:
        now = self._clock()
        self._entries[key] = CacheEntry(data=data, created_at=now, expires_at=now + ttl)
        if data is not None:
            self._lkg[key] = LKGEntry(data=data, created_at=now)

    def get_lkg(self, key: str) -> Optional[LKGEntry]:
        return self._lkg.get(key)

    def delete(self, key: str) -> bool:
        """删除主缓存条目（LKG 保留，继续作为降级数据）"""
        return self._entries.pop(key, None) is not None

    def clear(self, include_lkg: bool = False) -> int:
        count = len(self._entries)
        self._entries.clear()
        if include_lkg:
            self._lkg.clear()
        return count

    # ── 请求合并 ──────────────────────────────────────────

    async def single_flight(self, key: str, fetcher: Fetcher, ttl: float) -> CacheResult:
        """
        带请求合并的拉取

        拉取失败时依次回退：LKG → 过期缓存 → 重新抛出原异常
        """
        return await self._single_flight(key, fetcher, ttl, none_is_failure=False)

    async def single_flight_with_lkg(self, key: str, fetcher: Fetcher, ttl: float) -> CacheResult:
        """
        适用于以 None 表示“无数据”的拉取函数

        None 与异常同样触发回退；没有任何旧数据时返回 data=None，不抛异常
        """
        return await self._single_flight(key, fetcher, ttl, none_is_failure=True)

    async def _single_flight(
        self, key: str, fetcher: Fetcher, ttl: float, none_is_failure: bool
    ) -> CacheResult:
        cached = self.get(key)
        if cached.data is not None and cached.state == CacheState.CACHED:
            return cached

        task = self._in_flight.get(key)
        owner = task is None
        if owner:
            # 先登记再启动，任务结束时（无论成败）在 _run 的 finally 中移除
            task = asyncio.ensure_future(self._run(key, fetcher, ttl))
            self._in_flight[key] = task
        else:
            logger.debug(f"合并请求: {key}")

        try:
            # shield：单个调用方被取消不会取消共享的拉取任务
            data = await asyncio.shield(task)
        except Exception as exc:
            fallback = self.fallback(key)
            if fallback is not None:
                logger.warning(f"拉取失败，使用旧数据 {key}（{fallback.age_seconds}s）: {exc}")
                return fallback
            if none_is_failure:
                logger.warning(f"拉取失败且无旧数据: {key}: {exc}")
                return CacheResult(data=None, state=CacheState.LIVE, age_seconds=0)
            raise

        if data is None and none_is_failure:
            fallback = self.fallback(key)
            if fallback is not None:
                logger.info(f"无新数据，使用旧数据 {key}（{fallback.age_seconds}s）")
                return fallback
            return CacheResult(data=None, state=CacheState.LIVE, age_seconds=0)

        if owner:
            return CacheResult(data=data, state=CacheState.LIVE, age_seconds=0)
        return CacheResult(data=data, state=CacheState.CACHED, age_seconds=self.get(key).age_seconds)

    async def _run(self, key: str, fetcher: Fetcher, ttl: float) -> Any:
        try:
            data = await fetcher()
            if data is not None:
                self.set(key, data, ttl)
            return data
        finally:
            self._in_flight.pop(key, None)

    def fallback(self, key: str) -> Optional[CacheResult]:
        """回退数据：LKG 优先，其次是过期的主缓存条目，均为 STALE"""
        lkg = self._lkg.get(key)
        if lkg is not None:
            return CacheResult(
                data=lkg.data,
                state=CacheState.STALE,
                age_seconds=self._stale_age(lkg.created_at),
                is_stale=True,
            )
        entry = self._entries.get(key)
        if entry is not None and entry.data is not None:
            return CacheResult(
                data=entry.data,
                state=CacheState.STALE,
                age_seconds=self._stale_age(entry.created_at),
                is_stale=True,
            )
        return None

    # ── 诊断 ──────────────────────────────────────────────

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def stats(self) -> dict:
        """条目数、键列表及每个键的状态 / 年龄"""
        now = self._clock()
        entries = {}
        for key, entry in self._entries.items():
            fresh = now < entry.expires_at
            entries[key] = {
                "state": (CacheState.CACHED if fresh else CacheState.STALE).value,
                "age_seconds": self._age(entry.created_at) if fresh else self._stale_age(entry.created_at),
                "expires_in_seconds": max(0, int(entry.expires_at - now)),
            }
        return {
            "size": len(self._entries),
            "keys": list(self._entries.keys()),
            "lkg_size": len(self._lkg),
            "in_flight": list(self._in_flight.keys()),
            "entries": entries,
        }


# ── 模块级别单例 ──────────────────────────────────────────
_cache: Optional[CacheStore] = None


def get_cache_store() -> CacheStore:
    global _cache
    if _cache is None:
        _cache = CacheStore()
    return _cache
