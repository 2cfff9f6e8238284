"""调用方取消信号（asyncio.Event）与可等待对象之间的竞争。

非流式调用在取消时抛出 CancelledError；流式读取则只需要知道是否被取消，
以便跳出循环、由 `async with` 关闭响应。
"""

import asyncio
from typing import Awaitable, Optional, Tuple, TypeVar

T = TypeVar("T")


async def wait_or_cancel(aw: Awaitable[T], cancel: Optional[asyncio.Event]) -> Tuple[bool, Optional[T]]:
    """等待 aw 与 cancel 中先完成的一个。

    返回 (True, 结果)；若 cancel 先被置位，则取消 aw 并返回 (False, None)。
    aw 抛出的异常原样向上传播。
    """

    if cancel is None:
        return True, await aw
    task = asyncio.ensure_future(aw)
    if cancel.is_set():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return False, None
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
    if task in done:
        return True, task.result()
    # 等被取消的任务真正结束，让它的清理逻辑在返回前跑完
    await asyncio.gather(task, return_exceptions=True)
    return False, None


async def await_cancellable(aw: Awaitable[T], cancel: Optional[asyncio.Event]) -> T:
    """等待 aw 完成；若 cancel 先被置位，则取消 aw 并抛出 CancelledError。"""

    finished, result = await wait_or_cancel(aw, cancel)
    if not finished:
        raise asyncio.CancelledError("cancelled by caller")
    return result
