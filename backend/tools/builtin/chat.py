"""
Basic Chat Tool

Plain LLM reply over the recent session history. The multi-agent service
uses generate_chat_reply() as its fallback when orchestration fails; the
tool form is registered under the "chat" plugin and is not given to agents.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from agents.prompts.llm import LLMOptions, call_llm
from config.settings import settings
from exceptions import OrchestrationError
from schemas.llm import ChatMessage, MessageRole
from services.chat_service import ChatService
from tools.registry import ToolConfig, register_tool

logger = logging.getLogger(__name__)

CHAT_ERROR_MESSAGE = "Sorry, an error occurred while processing your request."

BASIC_CHAT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Use the earlier conversation for context "
    "and answer the user's latest message."
)


async def generate_chat_reply(history: List[ChatMessage], query: str) -> str:
    """
    Answer `query` given the prior `history`.

    Raises:
        OrchestrationError: the LLM call failed
    """
    result = await call_llm(
        system_message=BASIC_CHAT_SYSTEM_PROMPT,
        user_message="{query}",
        values={"query": query},
        options=LLMOptions(history=history),
    )
    if not result.ok or not result.data:
        raise OrchestrationError(f"Basic chat failed: {result.error or 'empty response'}")
    return result.data


async def execute_chat(
    params: Dict[str, Any],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any],
) -> str:
    query = (params.get("query") or "").strip()
    if not query:
        return "Error: query is required."

    history: List[ChatMessage] = []
    conversation_id = context.get("conversation_id")
    if conversation_id:
        rows = await ChatService(db).get_recent_messages(
            conversation_id, user_id, settings.SESSION_HISTORY_LIMIT
        )
        history = [
            ChatMessage(
                role=MessageRole.USER if row.role == "user" else MessageRole.ASSISTANT,
                content=row.content,
            )
            for row in rows
        ]

    try:
        return await generate_chat_reply(history, query)
    except OrchestrationError as e:
        logger.warning(str(e))
        return CHAT_ERROR_MESSAGE


register_tool(ToolConfig(
    name="chat",
    description=(
        "Answers from the conversation history. Fallback when other plugins lack the required context "
        "or the query is about past interactions."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "User query"},
        },
        "required": ["query"]
    },
    executor=execute_chat,
    category="chat",
))
