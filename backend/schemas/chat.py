"""
Chat schemas

Three groups:
  1. Agent trace types recorded by the agent loop
  2. Chat session and multi-agent API types
  3. Stream events sent over SSE (discriminated by `type`)
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from config.settings import settings


# ============================================================================
# AGENT TRACE
# ============================================================================


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class ToolDefinition(BaseModel):
    name: str
    description: str
    input_schema: Dict[str, Any]


class ToolCall(BaseModel):
    """One executed tool call, as seen by the model and by the executor."""
    tool_use_id: str
    tool_name: str
    tool_input: Dict[str, Any]
    output_from_executor: Any = None
    output_type: str = "unknown"
    output_to_model: str = ""
    payload: Optional[Dict[str, Any]] = None
    execution_ms: int = 0


class AgentIteration(BaseModel):
    iteration: int
    messages_to_model: List[Dict[str, Any]]
    response_content: List[Dict[str, Any]]
    stop_reason: str
    usage: TokenUsage
    api_call_ms: int
    tool_calls: List[ToolCall] = Field(default_factory=list)


class AgentTrace(BaseModel):
    """Full execution trace of one agent invocation."""
    trace_id: str
    agent_name: Optional[str] = None
    model: str
    max_tokens: int
    max_iterations: int
    temperature: float
    system_prompt: str
    tools: List[ToolDefinition] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    initial_messages: List[Dict[str, Any]] = Field(default_factory=list)
    iterations: List[AgentIteration] = Field(default_factory=list)
    final_text: str = ""
    total_iterations: int = 0
    outcome: Literal["complete", "max_iterations", "cancelled", "error"]
    error_message: Optional[str] = None
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_duration_ms: int = 0
    peak_input_tokens: Optional[int] = None


# ============================================================================
# CHAT SESSIONS
# ============================================================================


class ChatSummary(BaseModel):
    id: int
    title: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ChatMessageOut(BaseModel):
    id: int
    role: Literal["user", "assistant"]
    content: str
    extras: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ChatWithMessages(ChatSummary):
    messages: List[ChatMessageOut] = Field(default_factory=list)


class ChatTitleUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=255)


# ============================================================================
# MULTI-AGENT CHAT
# ============================================================================


class GroupChatMessage(BaseModel):
    """Entry in the history every participant of a group chat shares.

    `name` is set on agent replies; user messages and replies loaded from the
    session store carry none.
    """
    role: Literal["user", "assistant"]
    content: str
    name: Optional[str] = None


class AgentTurn(BaseModel):
    """One reply in the group chat transcript."""
    agent_name: str
    content: str


class MultiAgentChatRequest(BaseModel):
    query: str = Field(max_length=settings.MAX_QUERY_LENGTH, description="The user's question")
    session_id: Optional[int] = Field(None, description="Existing chat session; a new one is created when omitted")


class MultiAgentChatResponse(BaseModel):
    response: str
    session_id: int
    agents: List[str] = Field(default_factory=list, description="Agents that replied, in order")
    termination_reason: Optional[str] = None
    payloads: List[Dict[str, Any]] = Field(default_factory=list, description="Tool payloads (download links, sources, reports)")
    tool_history: Optional[List[Dict[str, Any]]] = None
    fallback: bool = False
    error_id: Optional[str] = None


# ============================================================================
# STREAM EVENTS
# ============================================================================


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    message: str


class AgentSelectedEvent(BaseModel):
    type: Literal["agent_selected"] = "agent_selected"
    agent: str
    iteration: int


class ToolStartEvent(BaseModel):
    type: Literal["tool_start"] = "tool_start"
    agent: str
    tool: str
    input: Dict[str, Any] = Field(default_factory=dict)
    tool_use_id: str


class ToolProgressEvent(BaseModel):
    type: Literal["tool_progress"] = "tool_progress"
    agent: str
    tool: str
    stage: str
    message: str
    progress: float = 0.0


class ToolCompleteEvent(BaseModel):
    type: Literal["tool_complete"] = "tool_complete"
    agent: str
    tool: str


class AgentMessageEvent(BaseModel):
    type: Literal["agent_message"] = "agent_message"
    agent: str
    text: str
    payloads: List[Dict[str, Any]] = Field(default_factory=list)


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    payload: MultiAgentChatResponse


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str
    error_id: Optional[str] = None


StreamEvent = Union[
    StatusEvent,
    AgentSelectedEvent,
    ToolStartEvent,
    ToolProgressEvent,
    ToolCompleteEvent,
    AgentMessageEvent,
    CompleteEvent,
    ErrorEvent,
]
