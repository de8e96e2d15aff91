"""Bidirectional stream splicing."""

import asyncio

SPLICE_CHUNK_SIZE = 64 * 1024


async def pipe(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
) -> None:
    """
    Copy data from reader to writer until EOF.

    Errors are left to the caller so it can tell which side failed.
    """
    while True:
        data = await reader.read(SPLICE_CHUNK_SIZE)
        if not data:
            break
        writer.write(data)
        await writer.drain()


def close_writer(writer: asyncio.StreamWriter) -> None:
    """Close a stream, ignoring a transport that is already gone."""
    try:
        writer.close()
    except (OSError, RuntimeError):
        pass
