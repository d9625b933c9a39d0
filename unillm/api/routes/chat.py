"""
unillm - Streaming Chat API

POST /v1/chat/stream relays a provider stream to the client as SSE, one
NormalizedEvent per "data:" line, followed by "data: [DONE]".

Errors before the provider body starts return a JSON error response with
the matching status code. Errors after that arrive as a final
{"type": "error", ...} event inside the stream.
"""

from typing import AsyncIterator, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ...adapters.base import BaseAdapter
from ...core.errors import ProviderNotConfiguredError
from ...core.models import Provider
from ...observability.logging import LogContext, get_logger
from ...streaming.task import StreamHandle
from ..dependencies import get_adapters, get_request_id
from ..models import StreamChatRequest


logger = get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["chat"])

SSE_DONE = "data: [DONE]\n\n"


async def relay_events(handle: StreamHandle) -> AsyncIterator[str]:
    """
    Serialize a stream as SSE.

    The handle is closed when the generator finishes or is cancelled by a
    client disconnect, which cancels the upstream stream task.
    """
    async with handle:
        async for event in handle:
            yield event.to_sse()
    yield SSE_DONE


@router.post("/chat/stream")
async def stream_chat(
    body: StreamChatRequest,
    request_id: str = Depends(get_request_id),
    adapters: Dict[Provider, BaseAdapter] = Depends(get_adapters)
):
    """
    Stream a chat completion from the requested provider.

    **Event types:** content_delta, tool_call_delta, finish_reason, usage,
    end, error.
    """
    provider = body.provider_id
    adapter = adapters.get(provider)
    if adapter is None:
        raise ProviderNotConfiguredError(provider.value, request_id)

    with LogContext.scope(request_id=request_id, provider=provider.value, model=body.model):
        handle = await adapter.chat_stream(body.to_internal(), request_id)
        logger.info("Streaming response started", stream_id=handle.stream_id)

    return StreamingResponse(
        relay_events(handle),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Request-Id": request_id,
            "X-Stream-Id": handle.stream_id,
        }
    )
