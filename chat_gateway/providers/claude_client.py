"""Anthropic Claude Provider 适配器。

- URL: {base_url}/v1/messages
- 认证: x-api-key: <api_key>，可选 anthropic-version
- 非流式响应: content[0].text
- 流式增量: {"type": "content_block_delta", "delta": {"text": "..."}}
"""

from typing import Dict

from chat_gateway.config.settings import ProviderConfig
from chat_gateway.providers.base import HttpChatProvider


class ClaudeClient(HttpChatProvider):
    name = "Claude"
    path = "/v1/messages"
    completion_path = ("content", 0, "text")
    delta_path = ("delta", "text")

    def auth_headers(self, cfg: ProviderConfig) -> Dict[str, str]:
        headers = {"x-api-key": cfg.api_key}
        if cfg.api_version.strip():
            headers["anthropic-version"] = cfg.api_version
        return headers
