"""
Multi-Agent Router

One user turn answered by the agent group chat, either as a single JSON
reply or streamed over Server-Sent Events, or by the single knowledge agent.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from starlette.requests import Request
from sse_starlette.sse import EventSourceResponse

from agents.agent_loop import CancellationToken
from exceptions import OrchestrationError
from schemas.chat import ErrorEvent, MultiAgentChatRequest, MultiAgentChatResponse
from services.multi_agent_service import (
    SERVER_ERROR_MESSAGE,
    MultiAgentService,
    get_multi_agent_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/multi-agent", tags=["multi-agent"])


@router.post(
    "/chat",
    response_model=MultiAgentChatResponse,
    summary="Answer a query with the agent group chat",
    responses={500: {"description": "Both the agents and the fallback chat failed"}},
)
async def multi_agent_chat(
    request: MultiAgentChatRequest,
    service: MultiAgentService = Depends(get_multi_agent_service),
):
    """
    - **query**: the user's question (at most 500 characters)
    - **session_id**: existing chat session, or omit to start a new one

    Returns the last agent reply. `fallback` is true when the basic chat
    answered because orchestration failed.
    """
    try:
        return await service.chat(request.query, request.session_id)
    except OrchestrationError as e:
        logger.error(f"multi_agent_chat failed - error_id={e.error_id}")
        return JSONResponse(status_code=500, content={"error": SERVER_ERROR_MESSAGE})


@router.post(
    "/single",
    response_model=MultiAgentChatResponse,
    summary="Answer a query with the single knowledge agent",
    responses={500: {"description": "Both the agent and the fallback chat failed"}},
)
async def single_agent_chat(
    request: MultiAgentChatRequest,
    service: MultiAgentService = Depends(get_multi_agent_service),
):
    """
    Same contract as /chat, answered by one agent over the last 15 session
    messages instead of the group chat.
    """
    try:
        return await service.single_chat(request.query, request.session_id)
    except OrchestrationError as e:
        logger.error(f"single_agent_chat failed - error_id={e.error_id}")
        return JSONResponse(status_code=500, content={"error": SERVER_ERROR_MESSAGE})


@router.post(
    "/stream",
    response_class=EventSourceResponse,
    summary="Stream the agent group chat",
    description="Streams agent selection, tool activity and replies using Server-Sent Events"
)
async def multi_agent_stream(
    request: MultiAgentChatRequest,
    raw_request: Request,
    service: MultiAgentService = Depends(get_multi_agent_service),
) -> EventSourceResponse:
    """
    Typed events:
    - status: orchestration started
    - agent_selected: an agent takes the turn
    - tool_start / tool_progress / tool_complete: tool activity of that agent
    - agent_message: an agent replied
    - complete: final payload, same shape as /chat
    - error: the turn failed
    """
    cancellation_token = CancellationToken()

    async def monitor_disconnect():
        """Poll for client disconnection and trigger cancellation."""
        while not cancellation_token.is_cancelled:
            if await raw_request.is_disconnected():
                logger.info("Client disconnected, cancelling multi-agent stream")
                cancellation_token.cancel()
                return
            await asyncio.sleep(0.5)

    monitor_task = asyncio.create_task(monitor_disconnect())

    async def event_generator():
        try:
            async for event_json in service.stream_chat(
                request.query, request.session_id, cancellation_token=cancellation_token
            ):
                yield {
                    "event": "message",
                    "data": event_json
                }
        except Exception as e:
            logger.error(f"Error in multi-agent stream: {str(e)}", exc_info=True)
            yield {
                "event": "message",
                "data": ErrorEvent(message=SERVER_ERROR_MESSAGE).model_dump_json()
            }
        finally:
            monitor_task.cancel()

    return EventSourceResponse(
        event_generator(),
        ping=1
    )
