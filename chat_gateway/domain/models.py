"""统一的对话数据模型。

本模块定义了网关在不同 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant）。
- normalize_role: 所有 Provider 共用的角色归一化规则。

所有 Provider 适配器都只依赖这些模型，并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Optional


# LLM 消息角色类型（与 Anthropic / OpenAI 的 role 字段对应）
Role = Literal["system", "user", "assistant"]


def normalize_role(role: Optional[str]) -> Role:
    """把任意 role 字符串归一化为 system/user/assistant。

    只有 assistant 与 system（不区分大小写）会被保留，其余一律视为 user，
    包括空串与 None。这是有损映射，不是错误。
    """

    value = (role or "").lower()
    if value == "assistant":
        return "assistant"
    if value == "system":
        return "system"
    return "user"


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于会话历史。"""

    role: Role
    content: str

    @classmethod
    def create(cls, role: Optional[str], content: Optional[str]) -> "ChatMessage":
        """按归一化规则构造消息，content 为 None 时视为空串。"""

        return cls(role=normalize_role(role), content=content or "")

    def to_payload(self) -> Dict[str, Any]:
        return {"role": normalize_role(self.role), "content": self.content or ""}


def normalize_messages(messages: Iterable[ChatMessage]) -> List[Dict[str, Any]]:
    """转换为厂商请求体中的 messages 数组。"""

    return [m.to_payload() for m in messages]


def trim_history(messages: List[ChatMessage], max_messages: int) -> List[ChatMessage]:
    """只保留最近的 max_messages 条消息。"""

    if len(messages) <= max_messages:
        return list(messages)
    return list(messages[-max_messages:])
