"""Provider 名称与适配器类的注册表。

配置里的 Provider 名称（如 "Claude"、"OpenAI"）通过这里映射到具体适配器，
名称不区分大小写。新增厂商时：实现一个 HttpChatProvider 子类并在此注册。"""

from typing import Mapping, Optional, Type

from chat_gateway.providers.base import HttpChatProvider
from chat_gateway.providers.claude_client import ClaudeClient
from chat_gateway.providers.openai_client import OpenAIClient


ADAPTER_REGISTRY: Mapping[str, Type[HttpChatProvider]] = {
    "claude": ClaudeClient,
    "openai": OpenAIClient,
}


def get_adapter_class(
    name: str,
    registry: Mapping[str, Type[HttpChatProvider]] = ADAPTER_REGISTRY,
) -> Optional[Type[HttpChatProvider]]:
    """根据名称获取适配器类，名称不区分大小写；未注册返回 None。"""

    key = name.lower()
    for k, cls in registry.items():
        if k.lower() == key:
            return cls
    return None

