"""Bidirectional stream relay with half-close."""

import asyncio
from dataclasses import dataclass

import asyncssh

from devcontainer_portforward.config import config
from devcontainer_portforward.transport.base import StreamPair
from devcontainer_portforward.utils.logger import get_logger

logger = get_logger(__name__)

# Errors that end one copy direction without affecting the other
RELAY_ERRORS = (OSError, asyncssh.Error)


@dataclass
class RelayStats:
    """Bytes copied in each direction."""

    a_to_b: int = 0
    b_to_a: int = 0


async def _pipe(src: StreamPair, dst: StreamPair, chunk_size: int) -> int:
    """
    Copy data from src to dst until EOF or error, then half-close dst.

    Returns:
        Number of bytes copied.
    """
    copied = 0
    try:
        while True:
            data = await src.reader.read(chunk_size)
            if not data:
                break
            dst.writer.write(data)
            await dst.writer.drain()
            copied += len(data)
    except RELAY_ERRORS as e:
        logger.debug(f"Relay direction ended with error: {e}")
    finally:
        try:
            if dst.writer.can_write_eof():
                dst.writer.write_eof()
        except (*RELAY_ERRORS, RuntimeError):
            pass
    return copied


async def relay(
    a: StreamPair,
    b: StreamPair,
    chunk_size: int | None = None,
) -> RelayStats:
    """
    Relay bytes between two streams until both directions are finished.

    Each direction runs until its source reaches EOF or fails; the
    destination is then half-closed while the other direction keeps going.
    Both streams are closed when this returns. If cancelled, both streams
    are closed right away to unblock the copies, which are awaited before
    the cancellation propagates.

    Args:
        a: First stream (usually the inbound remote connection).
        b: Second stream (usually the dialed local service).
        chunk_size: Read size per copy step (default from config).

    Returns:
        Byte counts for each direction.
    """
    chunk_size = chunk_size or config.RELAY_CHUNK_SIZE

    a_to_b = asyncio.create_task(_pipe(a, b, chunk_size))
    b_to_a = asyncio.create_task(_pipe(b, a, chunk_size))
    pipes = [a_to_b, b_to_a]

    try:
        await asyncio.wait(pipes)
    except asyncio.CancelledError:
        a.close()
        b.close()
        for task in pipes:
            task.cancel()
        await asyncio.gather(*pipes, return_exceptions=True)
        raise
    finally:
        await a.wait_closed()
        await b.wait_closed()

    return RelayStats(a_to_b=a_to_b.result(), b_to_a=b_to_a.result())
