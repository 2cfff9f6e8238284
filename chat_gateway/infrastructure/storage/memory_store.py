"""进程内会话历史存储。

这是易失缓存而不是数据库：进程退出即丢失。每个 session 有滑动过期时间，
任何读写都会刷新；过期条目在下一次访问时惰性清理，全量扫描最多每
purge_interval 秒进行一次。

每个 session_id 有独立的 asyncio.Lock，保证同一会话上的读写是原子的，
并且 TTL 的刷新与修改在同一个临界区内完成。锁只在内存操作期间持有，
不会跨越任何 HTTP 调用；没有协程使用时锁即被回收。
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, Iterable, List

from chat_gateway.config.settings import settings
from chat_gateway.domain.models import ChatMessage
from chat_gateway.domain.session import SessionStore
from chat_gateway.infrastructure.logging.logger import logger

DEFAULT_PURGE_INTERVAL = 60.0


@dataclass
class _Entry:
    messages: List[ChatMessage] = field(default_factory=list)
    touched_at: float = 0.0


@dataclass
class _SessionLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # 持有或等待该锁的协程数
    users: int = 0


class InMemorySessionStore(SessionStore):
    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        purge_interval: float | None = None,
    ):
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds
        self._clock = clock
        self._purge_interval = (
            purge_interval if purge_interval is not None else min(self._ttl, DEFAULT_PURGE_INTERVAL)
        )
        self._last_purge = clock()
        self._entries: Dict[str, _Entry] = {}
        self._locks: Dict[str, _SessionLock] = {}

    async def get(self, session_id: str) -> List[ChatMessage]:
        async with self._locked(session_id):
            entry = self._touch(session_id)
            return list(entry.messages)

    async def append(self, session_id: str, messages: Iterable[ChatMessage]) -> None:
        new = list(messages)
        async with self._locked(session_id):
            entry = self._touch(session_id)
            entry.messages.extend(new)
        logger.debug(
            "session appended",
            extra={"extra": {"session_id": session_id, "added": len(new)}},
        )

    async def reset(self, session_id: str) -> None:
        async with self._locked(session_id):
            self._entries.pop(session_id, None)
        logger.info("session reset", extra={"extra": {"session_id": session_id}})

    @asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[None]:
        slot = self._locks.get(session_id)
        if slot is None:
            slot = self._locks[session_id] = _SessionLock()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                del self._locks[session_id]

    def _touch(self, session_id: str) -> _Entry:
        """取出（必要时新建）条目并刷新 TTL，调用方须持有该会话的锁。"""

        now = self._clock()
        if now - self._last_purge >= self._purge_interval:
            self._evict_expired(now, keep=session_id)
            self._last_purge = now
        entry = self._entries.get(session_id)
        if entry is None or now - entry.touched_at > self._ttl:
            entry = self._entries[session_id] = _Entry()
        entry.touched_at = now
        return entry

    def _evict_expired(self, now: float, keep: str) -> None:
        expired = [
            sid
            for sid, entry in self._entries.items()
            if sid != keep and now - entry.touched_at > self._ttl
        ]
        for sid in expired:
            del self._entries[sid]
        if expired:
            logger.debug("sessions expired", extra={"extra": {"count": len(expired)}})
