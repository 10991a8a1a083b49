"""
Multi-Agent Chat Service

Runs one user turn through the agent group chat: the coordinator opens,
the selection prompt routes to a specialist, the termination prompt ends
the exchange. The last agent reply is the answer. When orchestration fails
the turn is answered by the basic chat fallback instead.

The single-agent mode answers with one knowledge agent over a longer
session window, with the same validation and fallback.

Every entry point persists the user message and the answer to the session,
with the tool calls, payloads and agent traces of the turn in `extras`.
"""

import logging
from typing import Any, AsyncGenerator, Dict, List, Optional, Union

import anthropic
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from agents.agent_factory import (
    COORDINATOR_AGENT,
    WORKER_AGENTS,
    build_default_agents,
    build_single_agent,
)
from agents.agent_loop import (
    AgentComplete,
    AgentError,
    AgentToolComplete,
    AgentToolProgress,
    AgentToolStart,
    CancellationToken,
)
from agents.group_chat import (
    AgentGroupChat,
    GroupChatComplete,
    GroupChatEvent,
    ParticipantMessage,
    ParticipantSelected,
    ParticipantToolEvent,
    SelectionStrategy,
    TerminationStrategy,
)
from config.logging_config import new_error_id
from config.settings import settings
from database import get_async_db
from exceptions import AppError, NotFoundError, OrchestrationError, ValidationError
from models import Conversation, User
from schemas.chat import (
    AgentMessageEvent,
    AgentSelectedEvent,
    AgentTrace,
    AgentTurn,
    CompleteEvent,
    ErrorEvent,
    GroupChatMessage,
    MultiAgentChatResponse,
    StatusEvent,
    ToolCompleteEvent,
    ToolProgressEvent,
    ToolStartEvent,
)
from schemas.llm import ChatMessage, MessageRole
from services.auth_service import validate_token
from services.chat_service import ChatService
from tools.builtin.chat import generate_chat_reply

logger = logging.getLogger(__name__)

EMPTY_QUERY_MESSAGE = "Question cannot be empty."
SERVER_ERROR_MESSAGE = "Something went wrong on our end. Please try again later."


class MultiAgentService:
    """Answers user turns with the agent group chat or the single knowledge agent."""

    def __init__(
        self,
        db: AsyncSession,
        user_id: int,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.db = db
        self.user_id = user_id
        self.client = client
        self.chat_service = ChatService(db)

    # =========================================================================
    # Public API
    # =========================================================================

    async def chat(self, query: str, session_id: Optional[int] = None) -> MultiAgentChatResponse:
        """
        Answer one user turn.

        Raises:
            ValidationError: the query is empty
            NotFoundError: session_id does not belong to the user
            OrchestrationError: both the group chat and the fallback failed
        """
        response: Optional[MultiAgentChatResponse] = None
        async for item in self._exchange(query, session_id, CancellationToken()):
            if isinstance(item, MultiAgentChatResponse):
                response = item
        return response

    async def stream_chat(
        self,
        query: str,
        session_id: Optional[int] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> AsyncGenerator[str, None]:
        """
        Same as chat(), reported as SSE JSON strings.

        Ends with a `complete` event carrying the chat() payload, or an
        `error` event. Nothing is persisted when the client cancels.
        """
        cancellation_token = cancellation_token or CancellationToken()
        yield StatusEvent(message="Thinking...").model_dump_json()

        try:
            async for item in self._exchange(query, session_id, cancellation_token):
                event = self._to_stream_event(item)
                if event is not None:
                    yield event.model_dump_json()
        except AppError as e:
            yield ErrorEvent(message=e.message, error_id=getattr(e, "error_id", None)).model_dump_json()

    async def single_chat(self, query: str, session_id: Optional[int] = None) -> MultiAgentChatResponse:
        """
        Answer one user turn with the single knowledge agent.

        Raises the same errors as chat().
        """
        query = self._validate_query(query)
        chat = await self._resolve_session(session_id)
        prior_history = await self._load_history(chat.id, settings.SINGLE_AGENT_HISTORY_LIMIT)
        history = prior_history + [GroupChatMessage(role="user", content=query)]

        try:
            agent = build_single_agent(self.client)
            complete: Optional[AgentComplete] = None
            async for event in agent.invoke(
                history, self.db, self.user_id, context={"conversation_id": chat.id}
            ):
                if isinstance(event, AgentComplete):
                    complete = event
                elif isinstance(event, AgentError):
                    raise OrchestrationError(f"{agent.name} failed: {event.error}")

            if complete is None or not complete.text.strip():
                raise OrchestrationError(f"{agent.name} produced no response")

            tool_calls = [{"agent_name": agent.name, **call} for call in complete.tool_calls]
            traces = [complete.trace] if complete.trace else []
            extras: Dict[str, Any] = {
                "agents": [agent.name],
                **self._tool_extras(tool_calls, complete.payloads, traces),
            }
            await self.chat_service.add_exchange(chat.id, self.user_id, query, complete.text, extras)
        except Exception as e:
            error_id = new_error_id()
            logger.error(f"{error_id} : {e}", exc_info=True)
            return await self._fallback(chat.id, query, prior_history, error_id)

        logger.info(f"Single-agent reply for session {chat.id}: tool_calls={len(tool_calls)}")
        return MultiAgentChatResponse(
            response=complete.text,
            session_id=chat.id,
            agents=[agent.name],
            payloads=complete.payloads,
            tool_history=tool_calls or None,
        )

    # =========================================================================
    # Orchestration
    # =========================================================================

    async def _exchange(
        self,
        query: str,
        session_id: Optional[int],
        cancellation_token: CancellationToken,
    ) -> AsyncGenerator[Union[GroupChatEvent, MultiAgentChatResponse], None]:
        """Yield group chat events, then the final response."""
        query = self._validate_query(query)
        chat = await self._resolve_session(session_id)
        prior_history = await self._load_history(chat.id, settings.SESSION_HISTORY_LIMIT)
        history = list(prior_history)
        history.append(GroupChatMessage(role="user", content=query))

        try:
            group_chat = self._build_group_chat()
            complete: Optional[GroupChatComplete] = None
            async for event in group_chat.invoke(
                history,
                self.db,
                self.user_id,
                context={"conversation_id": chat.id},
                cancellation_token=cancellation_token,
            ):
                if isinstance(event, GroupChatComplete):
                    complete = event
                else:
                    yield event

            if complete is not None and complete.reason == "cancelled":
                logger.info(f"Multi-agent chat cancelled for session {chat.id}")
                return
            if complete is None or not complete.responses:
                raise OrchestrationError("No agent produced a response")

            response = await self._save_result(chat.id, query, complete)
        except Exception as e:
            error_id = new_error_id()
            logger.error(f"{error_id} : {e}", exc_info=True)
            response = await self._fallback(chat.id, query, prior_history, error_id)

        yield response

    def _build_group_chat(self) -> AgentGroupChat:
        agents = build_default_agents(self.client)
        coordinator = next(agent for agent in agents if agent.name == COORDINATOR_AGENT)

        selection = SelectionStrategy(
            initial_agent=coordinator,
            history_window=settings.SELECTION_HISTORY_WINDOW,
        )
        termination = TerminationStrategy(
            agents=WORKER_AGENTS,
            history_window=settings.TERMINATION_HISTORY_WINDOW,
            maximum_iterations=settings.MULTI_AGENT_MAX_ITERATIONS,
        )
        return AgentGroupChat(agents, selection, termination)

    async def _save_result(
        self,
        chat_id: int,
        query: str,
        complete: GroupChatComplete,
    ) -> MultiAgentChatResponse:
        final = complete.responses[-1]
        transcript = [AgentTurn(agent_name=msg.name, content=msg.content) for msg in complete.responses]
        agents_used = [turn.agent_name for turn in transcript]

        extras: Dict[str, Any] = {
            "transcript": [turn.model_dump() for turn in transcript],
            "agents": agents_used,
            "termination_reason": complete.reason,
            **self._tool_extras(complete.tool_calls, complete.payloads, complete.traces),
        }
        await self.chat_service.add_exchange(chat_id, self.user_id, query, final.content, extras)

        logger.info(
            f"Multi-agent reply for session {chat_id}: agents={agents_used}, reason={complete.reason}, "
            f"payloads={[p.get('type') for p in complete.payloads]}"
        )
        return MultiAgentChatResponse(
            response=final.content,
            session_id=chat_id,
            agents=agents_used,
            termination_reason=complete.reason,
            payloads=complete.payloads,
            tool_history=complete.tool_calls or None,
        )

    @staticmethod
    def _tool_extras(
        tool_calls: List[Dict[str, Any]],
        payloads: List[Dict[str, Any]],
        traces: List[AgentTrace],
    ) -> Dict[str, Any]:
        extras = {
            "tool_history": tool_calls or None,
            "payloads": payloads or None,
            "traces": [trace.model_dump(mode="json") for trace in traces] or None,
        }
        # Keep extras clean
        return {k: v for k, v in extras.items() if v is not None}

    async def _fallback(
        self,
        chat_id: int,
        query: str,
        prior_history: List[GroupChatMessage],
        error_id: str,
    ) -> MultiAgentChatResponse:
        """Answer with the basic chat plugin after an orchestration failure."""
        history = [
            ChatMessage(
                role=MessageRole.USER if msg.role == "user" else MessageRole.ASSISTANT,
                content=msg.content,
            )
            for msg in prior_history
        ]
        try:
            await self.db.rollback()
            reply = await generate_chat_reply(history, query)
            await self.chat_service.add_exchange(
                chat_id, self.user_id, query, reply,
                {"fallback": True, "error_id": error_id},
            )
        except Exception as e:
            logger.error(f"{error_id} : fallback failed: {e}", exc_info=True)
            raise OrchestrationError(SERVER_ERROR_MESSAGE, error_id=error_id) from e

        return MultiAgentChatResponse(
            response=reply,
            session_id=chat_id,
            fallback=True,
            error_id=error_id,
        )

    # =========================================================================
    # Session helpers
    # =========================================================================

    @staticmethod
    def _validate_query(query: Optional[str]) -> str:
        query = (query or "").strip()
        if not query:
            raise ValidationError(EMPTY_QUERY_MESSAGE)
        return query

    async def _resolve_session(self, session_id: Optional[int]) -> Conversation:
        if session_id is None:
            return await self.chat_service.create_chat(self.user_id)

        chat = await self.chat_service.get_chat(session_id, self.user_id)
        if not chat:
            raise NotFoundError("Chat session not found")
        return chat

    async def _load_history(self, chat_id: int, limit: int) -> List[GroupChatMessage]:
        rows = await self.chat_service.get_recent_messages(chat_id, self.user_id, limit)
        return [
            GroupChatMessage(role="user" if row.role == "user" else "assistant", content=row.content)
            for row in rows
        ]

    @staticmethod
    def _to_stream_event(item: Union[GroupChatEvent, MultiAgentChatResponse]):
        if isinstance(item, MultiAgentChatResponse):
            return CompleteEvent(payload=item)
        if isinstance(item, ParticipantSelected):
            return AgentSelectedEvent(agent=item.agent_name, iteration=item.iteration)
        if isinstance(item, ParticipantMessage):
            return AgentMessageEvent(agent=item.agent_name, text=item.text, payloads=item.payloads)
        if isinstance(item, ParticipantToolEvent):
            event = item.event
            if isinstance(event, AgentToolStart):
                return ToolStartEvent(
                    agent=item.agent_name,
                    tool=event.tool_name,
                    input=event.tool_input,
                    tool_use_id=event.tool_use_id,
                )
            if isinstance(event, AgentToolProgress):
                return ToolProgressEvent(
                    agent=item.agent_name,
                    tool=event.tool_name,
                    stage=event.stage,
                    message=event.message,
                    progress=event.progress,
                )
            if isinstance(event, AgentToolComplete):
                return ToolCompleteEvent(agent=item.agent_name, tool=event.tool_name)
        return None


async def get_multi_agent_service(
    db: AsyncSession = Depends(get_async_db),
    current_user: User = Depends(validate_token),
) -> MultiAgentService:
    return MultiAgentService(db, current_user.user_id)
