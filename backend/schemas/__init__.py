"""
Schemas package for the AgentHub API.

Request schemas that only one router uses are defined in that router.
"""

from .user import User, Token

from .llm import (
    MessageRole as LLMMessageRole,
    ChatMessage,
    ModelConfig,
)

from .chat import (
    AgentTrace,
    ChatSummary,
    ChatMessageOut,
    ChatWithMessages,
    MultiAgentChatRequest,
    MultiAgentChatResponse,
    StreamEvent,
)

from .knowledge import (
    KnowledgeDocumentOut,
    FileUploadResponse,
    KnowledgeHit,
    TemplateList,
    TemplateParameters,
)


__all__ = [
    'User',
    'Token',

    'LLMMessageRole',
    'ChatMessage',
    'ModelConfig',

    'AgentTrace',
    'ChatSummary',
    'ChatMessageOut',
    'ChatWithMessages',
    'MultiAgentChatRequest',
    'MultiAgentChatResponse',
    'StreamEvent',

    'KnowledgeDocumentOut',
    'FileUploadResponse',
    'KnowledgeHit',
    'TemplateList',
    'TemplateParameters',
]
