"""
Chat Routes
===========

FastAPI route streaming chat responses as Server-Sent Events.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from community_chat.api.sse.producer import ChatStreamProducer, SSE_HEADERS

router = APIRouter(
    prefix="/api/v1/chat",
    tags=["Chat"],
    responses={
        400: {"description": "Missing message"},
        429: {"description": "Duplicate message within the dedup window"},
    },
)


def get_chat_producer(request: Request) -> ChatStreamProducer:
    """Return the producer owned by the running application."""
    return request.app.state.chat_producer


@router.get("/stream")
async def stream_chat(
    request: Request,
    producer: ChatStreamProducer = Depends(get_chat_producer),
    message: Optional[str] = None,
) -> StreamingResponse:
    """
    Stream the assistant's response to one message.

    Args:
        request: FastAPI request
        producer: Chat stream producer
        message: User message, possibly percent-encoded

    Returns:
        Streaming response with SSE events, closed by the server after the
        terminal event
    """
    client_ip = request.client.host if request.client else "unknown"

    # Rejections raise before the response starts and become JSON errors
    frames = producer.handle_query(message, client_ip=client_ip)

    return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)
