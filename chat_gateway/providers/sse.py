"""SSE（server-sent events）流式响应解析。

Claude 与 OpenAI 的流式接口都使用 `data: {...}` 行格式，区别只在增量文本
所在的 JSON 路径，因此解析器只实现一次，由各适配器传入 delta_path：

- Claude: ("delta", "text")
- OpenAI: ("choices", 0, "delta", "content")
"""

import asyncio
import json
from typing import Any, AsyncIterable, AsyncIterator, Optional, Sequence, Union

from chat_gateway.infrastructure.logging.logger import logger
from chat_gateway.providers.cancellation import wait_or_cancel

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

JsonPath = Sequence[Union[str, int]]


def extract_path(obj: Any, path: JsonPath) -> Any:
    """按 path 逐级取值，任何一级缺失或类型不符都返回 None。"""

    cur = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or not -len(cur) <= key < len(cur):
                return None
            cur = cur[key]
        else:
            if not isinstance(cur, dict) or key not in cur:
                return None
            cur = cur[key]
    return cur


def parse_sse_line(line: str, delta_path: JsonPath) -> Optional[str]:
    """解析单行，返回增量文本；不产生 token 的行返回 None。"""

    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    if not payload.strip() or payload == DONE_SENTINEL:
        return None
    try:
        event = json.loads(payload)
    except json.JSONDecodeError:
        # 单个坏帧不影响整条流
        logger.debug("skip malformed sse frame", extra={"extra": {"frame": payload[:120]}})
        return None
    token = extract_path(event, delta_path)
    if isinstance(token, str):
        return token
    return None


_EOF = object()


async def _next_line(it: AsyncIterator[str]) -> Any:
    try:
        return await it.__anext__()
    except StopAsyncIteration:
        return _EOF


async def iter_sse_tokens(
    lines: AsyncIterable[str],
    delta_path: JsonPath,
    cancel: Optional[asyncio.Event] = None,
) -> AsyncIterator[str]:
    """逐行读取并产出 token，流结束或 cancel 被置位时停止。

    每次读取都与 cancel 竞争，上游卡住不再发数据时也能及时退出。
    """

    it = lines.__aiter__()
    while True:
        finished, line = await wait_or_cancel(_next_line(it), cancel)
        if not finished or line is _EOF:
            break
        token = parse_sse_line(line, delta_path)
        if token is not None:
            yield token
