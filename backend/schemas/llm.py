"""
LLM types for model interactions

Used by the prompt callers (selection, termination, plugin post-processing)
to structure messages and model settings.

NOT for user-facing chat - see schemas/chat.py for chat API types.
"""

from typing import Optional, Any, Dict
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


# =============================================================================
# Model Configuration
# =============================================================================

class ReasoningEffort(str, Enum):
    """Reasoning effort levels for reasoning models"""
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ModelConfig(BaseModel):
    """Model selection and parameters for a prompt call."""
    model_config = {
        "populate_by_name": True,
        "protected_namespaces": (),  # Allow 'model_' prefix (needed for model_id field)
    }

    model_id: str = Field(
        description="Model identifier (e.g., 'gpt-4.1', 'gpt-4o-mini')",
        validation_alias="model"
    )
    temperature: Optional[float] = Field(
        None,
        ge=0.0,
        le=2.0,
        description="Temperature (0.0-2.0) for chat models. Not supported by reasoning models."
    )
    reasoning_effort: Optional[ReasoningEffort] = Field(
        None,
        description="Reasoning effort level for reasoning models."
    )
    max_tokens: Optional[int] = Field(
        None,
        gt=0,
        description="Maximum tokens for the response. If not set, uses model default."
    )


DEFAULT_MODEL_CONFIG: ModelConfig = ModelConfig(
    model_id="gpt-4.1",
    temperature=0.0,
    max_tokens=2000
)


# =============================================================================
# Message Types
# =============================================================================

class MessageRole(str, Enum):
    """Role of a message in an LLM conversation"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class LLMMessage(BaseModel):
    """Individual message for LLM interactions."""
    role: MessageRole = Field(description="Role of the message sender")
    content: str = Field(description="Content of the message")
    id: Optional[str] = Field(default=None, description="Unique identifier for the message")
    chat_id: Optional[str] = Field(default=None, description="ID of the parent chat session")
    message_metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional message metadata")
    created_at: Optional[datetime] = Field(default=None, description="When the message was created")
    updated_at: Optional[datetime] = Field(default=None, description="When the message was last updated")


ChatMessage = LLMMessage
