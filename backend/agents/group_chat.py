"""
Agent Group Chat

Several agents share one history. Before every turn a selection strategy
picks the next participant; after every turn a termination strategy decides
whether the exchange is done. Both strategies are single LLM prompts whose
one-word answers are parsed here. The loop is capped at `maximum_iterations`
turns.
"""

import logging
import string
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from agents.agent_factory import COORDINATOR_AGENT, ChatAgent
from agents.agent_loop import (
    AgentCancelled,
    AgentComplete,
    AgentError,
    AgentEvent,
    AgentToolComplete,
    AgentToolProgress,
    AgentToolStart,
    CancellationToken,
)
from agents.prompts.llm import call_llm
from config.settings import settings
from exceptions import AgentSelectionError, OrchestrationError
from schemas.chat import AgentTrace, GroupChatMessage
from schemas.llm import ModelConfig

logger = logging.getLogger(__name__)

_STRIP_CHARS = string.whitespace + string.punctuation + "“”‘’"


SELECTION_PROMPT = """Examine RESPONSE and choose the next participant.
State only the name of the chosen participant without explanation.
Never choose the participant named in the RESPONSE unless necessary.

Choose only from these participants:
{participants}

Always follow these rules when choosing the next participant:
- Determine the nature of the user's request and route it to the appropriate agent.
- If the user is responding to an agent, select that same agent.
- If unclear, select {fallback_agent}."""

TERMINATION_PROMPT = """Examine the RESPONSE and determine if the conversation with agents should continue.

Respond with Yes (only the word Yes) if:
- The agent is clear that the whole task is completed and is not processing any further task.
- The agent says the task is complete (e.g., "document created", "email sent", "search completed", "response ready", "here is your download link").
- The agent provides a download link, or shares a final result.
- The agent says "you can now", "download here", "access it here", or similar.
- The agent asks the user for input ("please provide", "waiting for input", "upload needed", "more details required").

Respond with No (only the word No) if:
- The agent is actively performing an action like searching, retrieving, writing, or generating content.
- The agent is processing a request without needing any new information from the user.
- The agent is saying it will do some task.

Only respond with a single word: Yes or No."""

RESPONSE_TEMPLATE = "RESPONSE:\n{lastmessage}"


def _strategy_model_config() -> ModelConfig:
    return ModelConfig(model_id=settings.STRATEGY_MODEL, temperature=0.0, max_tokens=50)


def truncate_history(history: Sequence[GroupChatMessage], window: int) -> List[GroupChatMessage]:
    """Keep only the last `window` messages."""
    if window <= 0:
        return []
    return list(history[-window:])


def format_history(history: Sequence[GroupChatMessage]) -> str:
    """One line per message, labelled with the speaker."""
    lines = []
    for msg in history:
        speaker = msg.name or msg.role
        lines.append(f"{speaker}: {msg.content}")
    return "\n".join(lines)


def parse_agent_name(result: str, names: Sequence[str]) -> Optional[str]:
    """
    Map a selection reply to a participant name.

    Accepts the bare name in any case, wrapped in quotes or punctuation, or a
    reply that mentions exactly one participant.
    """
    if not result:
        return None
    by_lower = {name.lower(): name for name in names}

    cleaned = result.strip(_STRIP_CHARS).lower()
    if cleaned in by_lower:
        return by_lower[cleaned]

    lowered = result.lower()
    mentioned = [name for name in names if name.lower() in lowered]
    if len(mentioned) == 1:
        return mentioned[0]
    return None


def parse_termination(result: str) -> bool:
    if not result:
        return False
    return result.strip(_STRIP_CHARS).lower() == "yes"


class SelectionStrategy:
    """Picks the next participant through an LLM prompt."""

    def __init__(
        self,
        initial_agent: Optional[ChatAgent] = None,
        history_window: int = settings.SELECTION_HISTORY_WINDOW,
        prompt: str = SELECTION_PROMPT,
        model_config: Optional[ModelConfig] = None,
        use_initial_agent_as_fallback: bool = True,
    ):
        self.initial_agent = initial_agent
        self.history_window = history_window
        self.prompt = prompt
        self.model_config = model_config or _strategy_model_config()
        self.use_initial_agent_as_fallback = use_initial_agent_as_fallback
        self.has_selected = False

    def reset(self) -> None:
        self.has_selected = False

    async def next(self, agents: Sequence[ChatAgent], history: Sequence[GroupChatMessage]) -> ChatAgent:
        """
        Return the agent that takes the next turn.

        Raises:
            AgentSelectionError: the reply names no participant and there is no fallback
        """
        if not self.has_selected and self.initial_agent is not None:
            self.has_selected = True
            logger.info(f"Selected initial agent {self.initial_agent.name}")
            return self.initial_agent

        by_name: Dict[str, ChatAgent] = {agent.name: agent for agent in agents}
        fallback_name = self.initial_agent.name if self.initial_agent else COORDINATOR_AGENT

        result = await call_llm(
            system_message=self.prompt,
            user_message=RESPONSE_TEMPLATE,
            values={
                "participants": "\n".join(f"  - {name}" for name in by_name),
                "fallback_agent": fallback_name,
                "lastmessage": format_history(truncate_history(history, self.history_window)),
            },
            model_config=self.model_config,
        )
        raw = result.data if result.ok and isinstance(result.data, str) else ""
        if not result.ok:
            logger.warning(f"Selection prompt failed: {result.error}")

        name = parse_agent_name(raw, list(by_name))
        self.has_selected = True
        if name is not None:
            logger.info(f"Selected agent {name}")
            return by_name[name]

        if self.use_initial_agent_as_fallback and self.initial_agent is not None:
            logger.warning(f"Unparseable selection {raw!r}, falling back to {self.initial_agent.name}")
            return self.initial_agent
        raise AgentSelectionError(raw)


class TerminationStrategy:
    """Decides through an LLM prompt whether the exchange is finished."""

    def __init__(
        self,
        agents: Optional[Sequence[str]] = None,
        history_window: int = settings.TERMINATION_HISTORY_WINDOW,
        maximum_iterations: int = settings.MULTI_AGENT_MAX_ITERATIONS,
        prompt: str = TERMINATION_PROMPT,
        model_config: Optional[ModelConfig] = None,
        automatic_reset: bool = False,
    ):
        # None means every agent may end the chat
        self.agents = list(agents) if agents is not None else None
        self.history_window = history_window
        self.maximum_iterations = maximum_iterations
        self.prompt = prompt
        self.model_config = model_config or _strategy_model_config()
        self.automatic_reset = automatic_reset

    async def should_terminate(self, agent_name: str, history: Sequence[GroupChatMessage]) -> bool:
        if self.agents is not None and agent_name not in self.agents:
            return False

        result = await call_llm(
            system_message=self.prompt,
            user_message=RESPONSE_TEMPLATE,
            values={"lastmessage": format_history(truncate_history(history, self.history_window))},
            model_config=self.model_config,
        )
        if not result.ok:
            logger.warning(f"Termination prompt failed, continuing: {result.error}")
            return False

        terminate = parse_termination(result.data if isinstance(result.data, str) else "")
        logger.info(f"Termination check after {agent_name}: {terminate}")
        return terminate


# =============================================================================
# Group chat events
# =============================================================================

@dataclass
class GroupChatEvent:
    pass


@dataclass
class ParticipantSelected(GroupChatEvent):
    agent_name: str
    iteration: int


@dataclass
class ParticipantToolEvent(GroupChatEvent):
    """A tool start/progress/complete event from the acting agent."""
    agent_name: str
    event: AgentEvent


@dataclass
class ParticipantMessage(GroupChatEvent):
    agent_name: str
    text: str
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    payloads: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class GroupChatComplete(GroupChatEvent):
    responses: List[GroupChatMessage] = field(default_factory=list)
    reason: str = "terminated"  # terminated | max_iterations | cancelled
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    payloads: List[Dict[str, Any]] = field(default_factory=list)
    traces: List[AgentTrace] = field(default_factory=list)


class AgentGroupChat:
    """Runs agents in turn over a shared history."""

    def __init__(
        self,
        agents: Sequence[ChatAgent],
        selection_strategy: SelectionStrategy,
        termination_strategy: TerminationStrategy,
    ):
        if not agents:
            raise ValueError("A group chat needs at least one agent")
        self.agents = list(agents)
        self.selection_strategy = selection_strategy
        self.termination_strategy = termination_strategy
        self.is_complete = False

    def reset(self) -> None:
        self.is_complete = False
        self.selection_strategy.reset()

    async def invoke(
        self,
        history: List[GroupChatMessage],
        db: AsyncSession,
        user_id: int,
        context: Optional[Dict] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> AsyncGenerator[GroupChatEvent, None]:
        """
        Run the exchange. Agent replies are appended to `history` in place.

        Raises:
            OrchestrationError: an agent failed, or the chat already completed
        """
        if self.is_complete:
            if not self.termination_strategy.automatic_reset:
                raise OrchestrationError("Agent group chat has already completed.")
            self.is_complete = False

        cancellation_token = cancellation_token or CancellationToken()
        self.selection_strategy.reset()
        responses: List[GroupChatMessage] = []
        tool_calls: List[Dict[str, Any]] = []
        payloads: List[Dict[str, Any]] = []
        traces: List[AgentTrace] = []

        def complete(reason: str) -> GroupChatComplete:
            return GroupChatComplete(
                responses=responses,
                reason=reason,
                tool_calls=tool_calls,
                payloads=payloads,
                traces=traces,
            )

        for iteration in range(1, self.termination_strategy.maximum_iterations + 1):
            if cancellation_token.is_cancelled:
                yield complete("cancelled")
                return

            agent = await self.selection_strategy.next(self.agents, history)
            yield ParticipantSelected(agent_name=agent.name, iteration=iteration)

            reply = ""
            agent_tool_calls: List[Dict[str, Any]] = []
            agent_payloads: List[Dict[str, Any]] = []
            async for event in agent.invoke(history, db, user_id, context, cancellation_token):
                if isinstance(event, (AgentToolStart, AgentToolProgress, AgentToolComplete)):
                    yield ParticipantToolEvent(agent_name=agent.name, event=event)
                elif isinstance(event, AgentComplete):
                    reply = event.text
                    agent_tool_calls = [{"agent_name": agent.name, **call} for call in event.tool_calls]
                    agent_payloads = list(event.payloads)
                    if event.trace is not None:
                        traces.append(event.trace)
                elif isinstance(event, AgentCancelled):
                    yield complete("cancelled")
                    return
                elif isinstance(event, AgentError):
                    raise OrchestrationError(f"{agent.name} failed: {event.error}")

            # Tool work counts even when the agent's closing text is empty
            tool_calls.extend(agent_tool_calls)
            payloads.extend(agent_payloads)

            if reply.strip():
                message = GroupChatMessage(role="assistant", content=reply, name=agent.name)
                history.append(message)
                responses.append(message)
                yield ParticipantMessage(
                    agent_name=agent.name,
                    text=reply,
                    tool_calls=agent_tool_calls,
                    payloads=agent_payloads,
                )

            if await self.termination_strategy.should_terminate(agent.name, history):
                self.is_complete = True
                yield complete("terminated")
                return

        logger.info(f"Group chat reached {self.termination_strategy.maximum_iterations} iterations")
        yield complete("max_iterations")
