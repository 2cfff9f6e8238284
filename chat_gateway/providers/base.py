"""Provider 抽象接口与通用 HTTP 实现。

上层 ChatService 不直接依赖具体厂商的 HTTP 协议，而是依赖 ChatProvider 协议：

- complete(history): 一次非流式调用，返回完整文本。
- stream(history): 流式调用，逐个产出 token。

各厂商之间只在以下几处不同：请求路径、认证头、非流式响应的 JSON 路径、
SSE 增量的 JSON 路径。HttpChatProvider 把这些差异做成类属性，
新增厂商只需要新增一个子类并填好这几项，不需要在共享逻辑里按名称分支。
"""

import asyncio
from contextlib import AsyncExitStack, aclosing
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Protocol

import httpx

from chat_gateway import __version__
from chat_gateway.config.settings import ProviderConfig
from chat_gateway.domain.exceptions import MalformedResponseError, NetworkError, UpstreamError
from chat_gateway.domain.models import ChatMessage, normalize_messages
from chat_gateway.infrastructure.logging.logger import logger
from chat_gateway.providers.cancellation import await_cancellable, wait_or_cancel
from chat_gateway.providers.sse import JsonPath, extract_path, iter_sse_tokens

USER_AGENT = f"chat-gateway/{__version__}"


class ChatProvider(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志与错误信息。
    - complete(history, cancel): 非流式调用，返回助手回复文本。
    - stream(history, cancel): 流式调用，返回惰性、一次性的 token 序列。
    """

    name: str

    async def complete(self, history: Iterable[ChatMessage], cancel: Optional[asyncio.Event] = None) -> str:
        ...

    def stream(
        self, history: Iterable[ChatMessage], cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[str]:
        ...

    async def aclose(self) -> None:
        ...


class HttpChatProvider:
    """基于 httpx.AsyncClient 的通用实现，子类只声明厂商差异。"""

    name: str = ""
    path: str = ""
    completion_path: JsonPath = ()
    delta_path: JsonPath = ()

    def __init__(
        self,
        cfg: ProviderConfig,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._cfg = cfg
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        headers.update(self.auth_headers(cfg))
        # 每个 handle 持有自己的 client，不在并发请求之间共享
        self._client = httpx.AsyncClient(
            base_url=cfg.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
            trust_env=False,
        )

    def auth_headers(self, cfg: ProviderConfig) -> Dict[str, str]:
        raise NotImplementedError

    # ---- 非流式 ----

    async def complete(self, history: Iterable[ChatMessage], cancel: Optional[asyncio.Event] = None) -> str:
        payload = self._build_payload(history, stream=False)
        try:
            resp = await await_cancellable(self._client.post(self.path, json=payload), cancel)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), http_status=504, provider=self.name) from e
        if not resp.is_success:
            logger.warning(
                "upstream error",
                extra={"extra": {"provider": self.name, "status": resp.status_code}},
            )
            raise UpstreamError(self.name, resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError(self.name, "body is not JSON") from e
        text = extract_path(data, self.completion_path)
        if not isinstance(text, str):
            raise MalformedResponseError(self.name, f"missing {self._path_str(self.completion_path)}")
        return text

    # ---- 流式 ----

    async def stream(
        self, history: Iterable[ChatMessage], cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[str]:
        payload = self._build_payload(history, stream=True)
        try:
            # 退出 stack 时关闭响应，释放底层连接
            async with AsyncExitStack() as stack:
                opened, resp = await wait_or_cancel(
                    stack.enter_async_context(self._client.stream("POST", self.path, json=payload)),
                    cancel,
                )
                if not opened:
                    return
                if not resp.is_success:
                    body = await resp.aread()
                    raise UpstreamError(self.name, resp.status_code, body.decode("utf-8", errors="replace"))
                tokens = await stack.enter_async_context(
                    aclosing(iter_sse_tokens(resp.aiter_lines(), self.delta_path, cancel))
                )
                async for token in tokens:
                    yield token
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), http_status=504, provider=self.name) from e

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpChatProvider":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _build_payload(self, history: Iterable[ChatMessage], stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._cfg.model,
            "max_tokens": self._cfg.max_tokens,
            "messages": normalize_messages(history),
        }
        if stream:
            payload["stream"] = True
        return payload

    @staticmethod
    def _path_str(path: JsonPath) -> str:
        out = ""
        for key in path:
            out += f"[{key}]" if isinstance(key, int) else (f".{key}" if out else key)
        return out
