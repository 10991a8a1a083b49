from typing import List, Dict, Any
from langchain_core.messages import HumanMessage, AIMessage, SystemMessage

from schemas.llm import ChatMessage, MessageRole

_LANGCHAIN_ROLES = {
    HumanMessage: "user",
    AIMessage: "assistant",
    SystemMessage: "system",
}

_LANGCHAIN_TYPES = {
    MessageRole.USER: HumanMessage,
    MessageRole.ASSISTANT: AIMessage,
    MessageRole.SYSTEM: SystemMessage,
}


def format_messages_for_openai(messages: List[Any]) -> List[Dict[str, str]]:
    """
    Convert LangChain messages or ChatMessage objects to OpenAI API format.

    Args:
        messages: LangChain messages (from a rendered prompt) or ChatMessage objects

    Returns:
        List of dictionaries in OpenAI message format
    """
    openai_messages = []
    for msg in messages:
        role = _LANGCHAIN_ROLES.get(type(msg))
        if role is None and isinstance(msg, ChatMessage):
            role = msg.role.value
        if role is None:
            continue
        openai_messages.append({"role": role, "content": msg.content})
    return openai_messages


def format_langchain_messages(messages: List[ChatMessage]) -> List[Any]:
    """Convert ChatMessage objects to LangChain message objects."""
    return [
        _LANGCHAIN_TYPES[msg.role](content=msg.content)
        for msg in messages
        if msg.role in _LANGCHAIN_TYPES
    ]
