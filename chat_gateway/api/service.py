"""对话服务。

把一次请求串起来：合并会话历史 → 选择 Provider → 调用厂商 → 追加助手回复。
HTTP 层（api.app）只负责会话 id 解析与序列化。
"""

import asyncio
import time
from contextlib import aclosing
from typing import AsyncIterator, Iterable, List, Optional
from uuid import uuid4

from chat_gateway.domain.exceptions import ValidationError
from chat_gateway.domain.models import ChatMessage, trim_history
from chat_gateway.domain.session import SessionStore
from chat_gateway.infrastructure.logging.logger import logger
from chat_gateway.providers import ProviderFactory


def new_session_id() -> str:
    return uuid4().hex


class ChatService:
    def __init__(self, factory: ProviderFactory, store: SessionStore, history_max_messages: int = 30):
        self._factory = factory
        self._store = store
        self._max_messages = history_max_messages

    async def complete(
        self,
        session_id: str,
        messages: Iterable[ChatMessage],
        provider: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        """执行一轮非流式对话并返回助手回复。

        用户消息与助手回复在调用成功后一次性追加到会话，
        调用失败或被取消时会话保持不变。
        """

        turn = self._validate(messages)
        context = await self._context(session_id, turn)
        client = self._factory.resolve(provider)
        self._log_request(client.name, session_id, len(context))

        t0 = time.monotonic()
        async with client:
            text = await client.complete(context, cancel)
        await self._store.append(session_id, turn + [ChatMessage(role="assistant", content=text)])
        logger.info(
            "Chat completed",
            extra={"extra": {
                "provider": client.name,
                "session_id": session_id,
                "latency_ms": int((time.monotonic() - t0) * 1000),
            }},
        )
        return text

    async def stream(
        self,
        session_id: str,
        messages: Iterable[ChatMessage],
        provider: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """流式对话，逐个产出 token；流正常结束后才写入会话。"""

        turn = self._validate(messages)
        context = await self._context(session_id, turn)
        client = self._factory.resolve(provider)
        self._log_request(client.name, session_id, len(context))

        pieces: List[str] = []
        async with client, aclosing(client.stream(context, cancel)) as tokens:
            async for token in tokens:
                pieces.append(token)
                yield token
        if cancel is not None and cancel.is_set():
            logger.info("Chat stream cancelled", extra={"extra": {"session_id": session_id}})
            return
        await self._store.append(session_id, turn + [ChatMessage(role="assistant", content="".join(pieces))])

    def check_request(self, messages: Iterable[ChatMessage], provider: Optional[str]) -> None:
        """流式响应开始前先做校验，让错误能以正常的 HTTP 状态码返回。"""

        self._validate(messages)
        self._factory.adapter_for(provider)

    async def history(self, session_id: str) -> List[ChatMessage]:
        return await self._store.get(session_id)

    async def reset(self, session_id: str) -> None:
        await self._store.reset(session_id)

    async def _context(self, session_id: str, turn: List[ChatMessage]) -> List[ChatMessage]:
        history = await self._store.get(session_id)
        return trim_history(history + turn, self._max_messages)

    @staticmethod
    def _validate(messages: Iterable[ChatMessage]) -> List[ChatMessage]:
        turn = [ChatMessage.create(m.role, m.content) for m in messages]
        if not turn:
            raise ValidationError(code="VALIDATION_ERROR", message="Provide at least one message in 'messages'.")
        return turn

    @staticmethod
    def _log_request(provider: str, session_id: str, count: int) -> None:
        logger.info(
            "Chat request",
            extra={"extra": {"provider": provider, "session_id": session_id, "messages": count}},
        )
