"""Async utilities for running blocking file I/O off the event loop."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used by the sync bridge to wrap file reads, writes and registry calls so
    that change callbacks for several projects can interleave.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        content, _ = await run_sync(read_file_with_encoding, path)
    """
    return await asyncio.to_thread(func, *args, **kwargs)

