"""OpenAI Chat Completions Provider 适配器。

- URL: {base_url}/v1/chat/completions
- 认证: Authorization: Bearer <api_key>
- 非流式响应: choices[0].message.content
- 流式增量: choices[0].delta.content
"""

from typing import Dict

from chat_gateway.config.settings import ProviderConfig
from chat_gateway.providers.base import HttpChatProvider


class OpenAIClient(HttpChatProvider):
    name = "OpenAI"
    path = "/v1/chat/completions"
    completion_path = ("choices", 0, "message", "content")
    delta_path = ("choices", 0, "delta", "content")

    def auth_headers(self, cfg: ProviderConfig) -> Dict[str, str]:
        return {"Authorization": f"Bearer {cfg.api_key}"}
