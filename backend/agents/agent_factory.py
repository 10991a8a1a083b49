"""
Agent Factory

Builds the named agents of the multi-agent chat. An agent is a system prompt
plus the tools of its plugins; invoking it runs the agentic loop over the
shared group chat history rendered from that agent's point of view.
"""

import logging
from typing import Any, AsyncGenerator, Dict, List, Optional

import anthropic
from sqlalchemy.ext.asyncio import AsyncSession

from agents.agent_loop import AgentEvent, CancellationToken, run_agent_loop
from config.settings import settings
from exceptions import ValidationError
from schemas.chat import GroupChatMessage
from tools.registry import ToolConfig, get_tools_for_plugins

logger = logging.getLogger(__name__)

RAG_AGENT = "RAGAgent"
API_CALLER_AGENT = "APICallerAgent"
EMAIL_WRITER_AGENT = "EmailWriterAgent"
DOCUMENT_GENERATION_AGENT = "DocumentGenerationAgent"
COORDINATOR_AGENT = "CoordinatorAgent"
SINGLE_AGENT = "Agent"

WORKER_AGENTS = [RAG_AGENT, API_CALLER_AGENT, EMAIL_WRITER_AGENT, DOCUMENT_GENERATION_AGENT]

CONVERSATION_START = "(Earlier conversation follows.)"
CONTINUE_PROMPT = "Continue with the task."

_anthropic_client: Optional[anthropic.AsyncAnthropic] = None


def get_anthropic_client() -> anthropic.AsyncAnthropic:
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
    return _anthropic_client


def render_history(history: List[GroupChatMessage], agent_name: str) -> List[Dict[str, Any]]:
    """
    Render the shared history as Anthropic messages seen by `agent_name`.

    The agent's own replies and unnamed assistant replies become assistant
    turns. Replies from other agents become user turns prefixed with the
    speaker's name. Consecutive turns with the same role are merged so the
    result alternates, starts with a user turn and ends with one.
    """
    messages: List[Dict[str, Any]] = []
    for msg in history:
        if not msg.content:
            continue
        if msg.role == "assistant" and msg.name and msg.name != agent_name:
            role, content = "user", f"[{msg.name}]: {msg.content}"
        else:
            role, content = msg.role, msg.content

        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += "\n\n" + content
        else:
            messages.append({"role": role, "content": content})

    if not messages or messages[0]["role"] != "user":
        messages.insert(0, {"role": "user", "content": CONVERSATION_START})
    if messages[-1]["role"] != "user":
        messages.append({"role": "user", "content": CONTINUE_PROMPT})
    return messages


class ChatAgent:
    """A named LLM persona with a fixed tool set."""

    def __init__(
        self,
        name: str,
        instructions: str,
        tools: List[ToolConfig],
        plugins: List[str],
        client: anthropic.AsyncAnthropic,
        model: str,
        max_tokens: int,
        temperature: float,
        max_iterations: int,
    ):
        self.name = name
        self.instructions = instructions
        self.tools = {tool.name: tool for tool in tools}
        self.plugins = plugins
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_iterations = max_iterations

    def __repr__(self) -> str:
        return f"ChatAgent(name={self.name!r}, plugins={self.plugins!r})"

    async def invoke(
        self,
        history: List[GroupChatMessage],
        db: AsyncSession,
        user_id: int,
        context: Optional[Dict[str, Any]] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> AsyncGenerator[AgentEvent, None]:
        """Run one turn of this agent and yield the agent loop's events."""
        messages = render_history(history, self.name)
        logger.debug(f"{self.name} invoked with {len(messages)} messages")

        async for event in run_agent_loop(
            client=self.client,
            model=self.model,
            max_tokens=self.max_tokens,
            max_iterations=self.max_iterations,
            system_prompt=self.instructions,
            messages=messages,
            tools=self.tools,
            db=db,
            user_id=user_id,
            context=context,
            cancellation_token=cancellation_token,
            temperature=self.temperature,
            agent_name=self.name,
        ):
            yield event


def create_agent(
    name: str,
    instructions: str,
    plugins: Optional[List[str]] = None,
    client: Optional[anthropic.AsyncAnthropic] = None,
) -> ChatAgent:
    """
    Create an agent bound to the tools of `plugins`.

    Raises:
        ValidationError: a plugin name has no registered tools
    """
    plugins = list(plugins or [])
    try:
        tools = get_tools_for_plugins(plugins)
    except KeyError as e:
        raise ValidationError(f"Unknown plugin for agent {name}: {e.args[0]}") from e

    return ChatAgent(
        name=name,
        instructions=instructions,
        tools=tools,
        plugins=plugins,
        client=client or get_anthropic_client(),
        model=settings.AGENT_MODEL,
        max_tokens=settings.AGENT_MAX_TOKENS,
        temperature=settings.AGENT_TEMPERATURE,
        max_iterations=settings.AGENT_MAX_TOOL_ITERATIONS,
    )


RAG_INSTRUCTIONS = (
    "Use Retrieval-Augmented Generation (RAG) to fetch and return information from relevant "
    "documents only. If no relevant information is found, reply 'No relevant information found'."
)

API_CALLER_INSTRUCTIONS = (
    "Use the web search tools for web lookups and the weather tool for weather lookups based on "
    "the user's query. Return the result to the user."
)

EMAIL_WRITER_INSTRUCTIONS = (
    "Send an email based on the user's query. The user can specify an email's purpose, recipient "
    "and content. Always show a preview first and only send once the user confirms."
)

DOCUMENT_GENERATION_INSTRUCTIONS = (
    "Based on the user's query, create a document. List all available templates, outline all "
    "required parameters needed to generate the document, collect them from the user, and then "
    "create the document and return its download link."
)

COORDINATOR_INSTRUCTIONS = f"""You are the {COORDINATOR_AGENT}. You only decide which agent should handle the task.
Select which agent should handle the request:
- Choose {RAG_AGENT} if the query can be answered from the user's documents.
- Choose {API_CALLER_AGENT} if web or weather information is needed.
- Choose {EMAIL_WRITER_AGENT} if the user asks to send an email.
- Choose {DOCUMENT_GENERATION_AGENT} if the user asks to create a document.
If the request is unclear, ask the user for clarification."""


def build_default_agents(client: Optional[anthropic.AsyncAnthropic] = None) -> List[ChatAgent]:
    """The five participants of the multi-agent chat, coordinator last."""
    return [
        create_agent(RAG_AGENT, RAG_INSTRUCTIONS, ["rag"], client),
        create_agent(API_CALLER_AGENT, API_CALLER_INSTRUCTIONS, ["web", "weather"], client),
        create_agent(EMAIL_WRITER_AGENT, EMAIL_WRITER_INSTRUCTIONS, ["email"], client),
        create_agent(DOCUMENT_GENERATION_AGENT, DOCUMENT_GENERATION_INSTRUCTIONS, ["documents"], client),
        create_agent(COORDINATOR_AGENT, COORDINATOR_INSTRUCTIONS, [], client),
    ]


SINGLE_AGENT_INSTRUCTIONS = """You are an AI assistant that answers queries strictly using retrieved knowledge.
- Use the knowledge tools to fetch relevant information before responding.
- Look up the latest documents when the user asks about their files or knowledge.
- If the information is insufficient, say 'No relevant information found'. Do not speculate.
- Keep responses factual, concise and aware of the conversation so far."""


def build_single_agent(client: Optional[anthropic.AsyncAnthropic] = None) -> ChatAgent:
    """The lone knowledge agent behind the single-agent chat."""
    return create_agent(SINGLE_AGENT, SINGLE_AGENT_INSTRUCTIONS, ["rag"], client)
