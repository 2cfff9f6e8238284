"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口与通用 HTTP 实现 (base)。
- 共享的 SSE 流式解析 (sse) 与取消信号处理 (cancellation)。
- 维护 Provider 名称与适配器的映射 (registry)。
- 提供各厂商的具体实现 (claude_client、openai_client)。
"""

from typing import Mapping, Optional, Tuple, Type

import httpx

from chat_gateway.config.settings import ProviderConfig
from chat_gateway.domain.exceptions import UnimplementedProviderError, UnknownProviderError
from chat_gateway.infrastructure.logging.logger import logger
from chat_gateway.providers.base import ChatProvider, HttpChatProvider
from chat_gateway.providers.registry import ADAPTER_REGISTRY, get_adapter_class


class ProviderFactory:
    """根据请求的 Provider 名称（或默认配置）创建已配置好的适配器实例。

    配置在构造时传入且之后只读；每次 resolve 都返回一个持有独立 HTTP client 的新实例，
    调用方用完后负责 aclose（或 `async with`）。
    """

    def __init__(
        self,
        providers: Mapping[str, ProviderConfig],
        default_provider: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        registry: Mapping[str, Type[HttpChatProvider]] = ADAPTER_REGISTRY,
    ):
        self._providers = dict(providers)
        self._default = default_provider
        self._timeout = timeout
        self._transport = transport
        self._registry = registry

    @property
    def configured_names(self) -> list[str]:
        return list(self._providers)

    def lookup(self, requested_name: Optional[str]) -> Tuple[str, ProviderConfig]:
        """返回 (规范名称, 配置)，精确匹配优先，其次不区分大小写匹配。"""

        key = (requested_name or "").strip() or self._default
        cfg = self._providers.get(key)
        if cfg is None:
            for name, candidate in self._providers.items():
                if name.lower() == key.lower():
                    key, cfg = name, candidate
                    break
        if cfg is None:
            raise UnknownProviderError(key, self._providers.keys())
        return key, cfg

    def adapter_for(self, requested_name: Optional[str]) -> Tuple[str, ProviderConfig, Type[HttpChatProvider]]:
        """在不创建 HTTP client 的情况下完成全部校验。"""

        key, cfg = self.lookup(requested_name)
        adapter_cls = get_adapter_class(key, self._registry)
        if adapter_cls is None:
            raise UnimplementedProviderError(key)
        return key, cfg, adapter_cls

    def resolve(self, requested_name: Optional[str] = None) -> ChatProvider:
        key, cfg, adapter_cls = self.adapter_for(requested_name)
        logger.debug("provider resolved", extra={"extra": {"provider": key, "model": cfg.model}})
        return adapter_cls(cfg, timeout=self._timeout, transport=self._transport)


__all__ = ["ChatProvider", "ProviderFactory"]
