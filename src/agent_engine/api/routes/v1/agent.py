"""
Agent chat endpoint (v1).

Streams the tool loop as Server-Sent Events.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from agent_engine.api.dependencies import Gate
from agent_engine.api.middleware.auth import CurrentUser

router = APIRouter()


@router.post(
    "/chat",
    summary="Chat with the agent",
    description=(
        "Runs the tool loop for the posted conversation and streams events "
        "(conversation_info, status, text_delta, tool_call_start, tool_call_end, error, done). "
        "Size, authentication, validation and budget failures are returned as JSON errors "
        "before the stream starts."
    ),
    response_class=StreamingResponse,
    responses={
        200: {"content": {"text/event-stream": {}}, "description": "Event stream"},
        400: {"description": "Malformed body or empty message list"},
        401: {"description": "No valid caller identity"},
        413: {"description": "Body exceeds the size ceiling"},
        429: {"description": "Monthly AI budget exhausted"},
    },
)
async def chat(request: Request, user: CurrentUser, gate: Gate) -> StreamingResponse:
    """Validate the request and open the event stream."""
    return await gate.open(request, user)
