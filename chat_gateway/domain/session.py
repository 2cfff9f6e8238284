from typing import Iterable, List, Protocol

from .models import ChatMessage


class SessionStore(Protocol):
    async def get(self, session_id: str) -> List[ChatMessage]:
        ...

    async def append(self, session_id: str, messages: Iterable[ChatMessage]) -> None:
        ...

    async def reset(self, session_id: str) -> None:
        ...
