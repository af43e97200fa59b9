import asyncio
from typing import Awaitable, TypeVar

from marketchat.errors import Unknown


T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], timeout: float) -> T:
    """Await a store call, turning a timeout into ``Unknown``."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise Unknown(f"store call timed out after {timeout:g}s") from exc
