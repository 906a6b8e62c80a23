"""
Bidirectional byte copying between two stream endpoints.

Works with anything following the asyncio stream API, which covers both
plain TCP sockets (``asyncio.StreamReader``/``StreamWriter``) and asyncssh
channels (``SSHReader``/``SSHWriter``).
"""

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 65536

# Seconds the other direction may keep running after one side closed
DEFAULT_LINGER = 1.0


async def pump(reader: Any, writer: Any, buffer_size: int = DEFAULT_BUFFER_SIZE) -> int:
    """
    Copy from reader to writer until EOF, then half-close the writer.

    Returns:
        Number of bytes copied
    """
    total = 0
    while True:
        data = await reader.read(buffer_size)
        if not data:
            break
        writer.write(data)
        await writer.drain()
        total += len(data)

    try:
        if writer.can_write_eof():
            writer.write_eof()
    except (OSError, RuntimeError):
        # Peer already gone; the splice closes both ends next
        pass
    return total


def _failed(task: "asyncio.Future[int]") -> bool:
    return not task.cancelled() and task.exception() is not None


def _copied(task: "asyncio.Future[int]") -> str:
    if task.cancelled() or _failed(task):
        return "?"
    return str(task.result())


def close_writer(writer: Any) -> None:
    """Close a writer, ignoring errors from an already broken transport."""
    try:
        writer.close()
    except (OSError, RuntimeError) as e:
        logger.debug(f"Ignoring error while closing stream: {e}")


async def splice(a_reader: Any, a_writer: Any, b_reader: Any, b_writer: Any,
                 buffer_size: int = DEFAULT_BUFFER_SIZE, label: str = "",
                 linger: float = DEFAULT_LINGER) -> None:
    """
    Splice two endpoints together until either side closes or fails.

    When one direction reaches EOF it is passed on as a half-close, and
    the other direction gets ``linger`` seconds to deliver what is still
    in flight before the pair is torn down. Both writers are closed on
    return, including on cancellation, so the owning connection task can
    tear the pair down just by being cancelled.
    """
    upstream = asyncio.ensure_future(pump(a_reader, b_writer, buffer_size))
    downstream = asyncio.ensure_future(pump(b_reader, a_writer, buffer_size))
    tasks = (upstream, downstream)

    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        if pending and not any(_failed(task) for task in done):
            lingered, pending = await asyncio.wait(pending, timeout=linger)
            done |= lingered

        for task in done:
            if _failed(task):
                logger.debug(f"Splice {label} ended with error: {task.exception()!r}")

        if pending:
            logger.debug(f"Splice {label} closing after one side closed and the other "
                         f"stayed open for {linger}s")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        logger.debug(f"Splice {label} finished: {_copied(upstream)} bytes up, "
                     f"{_copied(downstream)} bytes down")
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        close_writer(a_writer)
        close_writer(b_writer)
