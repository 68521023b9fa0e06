"""Server-Sent Events adapter for chat streams."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from mcpbridge.streaming import StreamChunk

logger = logging.getLogger(__name__)


def _frame(payload: dict | str) -> str:
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {data}\n\n"


async def sse_generator(chunks: AsyncIterator[StreamChunk]) -> AsyncIterator[str]:
    """Convert a StreamChunk async iterator into SSE ``data:`` frames.

    The stream ends with ``data: [DONE]``.  A failure mid-stream is sent
    as a single error frame instead, since headers are already out.
    """
    try:
        async for chunk in chunks:
            yield _frame(chunk.to_dict())
    except Exception as e:
        logger.error(f"Streaming error: {e}")
        yield _frame({"error": "Streaming failed", "message": str(e)})
        return
    yield _frame("[DONE]")
