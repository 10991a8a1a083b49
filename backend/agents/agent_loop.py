"""
Agentic Loop

A reusable async generator that drives one agent through Anthropic Messages
with tool support. Emits typed events that callers map to their own output
(group chat events, SSE payloads).

Each iteration: call the model, run any tool_use blocks through the tool
executor, feed the results back. The loop ends when the model answers
without tools, or after max_iterations with a final tool-free call.
"""

import asyncio
import copy
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, List, Optional, Union

import anthropic
from sqlalchemy.ext.asyncio import AsyncSession

from tools.executor import execute_tool
from tools.registry import ToolConfig, ToolProgress, tools_to_anthropic_format
from schemas.chat import (
    AgentTrace,
    AgentIteration,
    ToolCall,
    ToolDefinition,
    TokenUsage,
)

logger = logging.getLogger(__name__)

MAX_ITERATIONS_PROMPT = (
    "You've reached the maximum number of tool calls. "
    "Give your final answer from what you have so far. Do not call any more tools."
)


# =============================================================================
# Event Types
# =============================================================================

@dataclass
class AgentEvent:
    """Base class for events emitted during agentic loop."""
    pass


@dataclass
class AgentThinking(AgentEvent):
    message: str


@dataclass
class AgentTextDelta(AgentEvent):
    """Emitted when streaming text (only when stream_text=True)."""
    text: str


@dataclass
class AgentMessage(AgentEvent):
    """Text produced by one model call (non-streaming mode)."""
    text: str
    iteration: int


@dataclass
class AgentToolStart(AgentEvent):
    tool_name: str
    tool_input: Dict[str, Any]
    tool_use_id: str


@dataclass
class AgentToolProgress(AgentEvent):
    tool_name: str
    stage: str
    message: str
    progress: float
    data: Optional[Any] = None


@dataclass
class AgentToolComplete(AgentEvent):
    tool_name: str
    result_text: str
    result_data: Any


@dataclass
class AgentComplete(AgentEvent):
    """The loop finished; `text` is the agent's final answer."""
    text: str
    tool_calls: List[Dict[str, Any]]
    payloads: List[Dict[str, Any]] = field(default_factory=list)
    trace: Optional[AgentTrace] = None


@dataclass
class AgentCancelled(AgentEvent):
    text: str
    tool_calls: List[Dict[str, Any]]
    payloads: List[Dict[str, Any]] = field(default_factory=list)
    trace: Optional[AgentTrace] = None


@dataclass
class AgentError(AgentEvent):
    error: str
    text: str = ""
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    payloads: List[Dict[str, Any]] = field(default_factory=list)
    trace: Optional[AgentTrace] = None


@dataclass
class _ModelResult:
    response: Any
    text: str
    usage: TokenUsage
    api_call_ms: int


@dataclass
class _ToolsResult:
    tool_results: List[Dict]   # tool_result blocks for the model
    tool_records: List[Dict]   # simplified view for callers
    tool_calls: List[ToolCall]
    payloads: List[Dict]


# =============================================================================
# Cancellation Token
# =============================================================================

class CancellationToken:
    """Token for cancelling long-running operations."""

    def __init__(self):
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True

    def check(self) -> None:
        """Raise CancelledError if cancelled."""
        if self._cancelled:
            raise asyncio.CancelledError("Operation was cancelled")


# =============================================================================
# Trace Builder
# =============================================================================

class TraceBuilder:
    """Accumulates an AgentTrace while the loop runs."""

    def __init__(
        self,
        agent_name: Optional[str],
        model: str,
        max_tokens: int,
        max_iterations: int,
        temperature: float,
        system_prompt: str,
        tools: Dict[str, ToolConfig],
        context: Dict[str, Any],
        initial_messages: List[Dict],
    ):
        self._start_time = time.time()
        self._fields = dict(
            trace_id=str(uuid.uuid4()),
            agent_name=agent_name,
            model=model,
            max_tokens=max_tokens,
            max_iterations=max_iterations,
            temperature=temperature,
            system_prompt=system_prompt,
            tools=[
                ToolDefinition(name=t.name, description=t.description, input_schema=t.input_schema)
                for t in tools.values()
            ],
            context=context,
            initial_messages=copy.deepcopy(initial_messages),
        )
        self._iterations: List[AgentIteration] = []
        self._input_tokens = 0
        self._output_tokens = 0

    def add_tokens(self, usage: TokenUsage) -> None:
        self._input_tokens += usage.input_tokens
        self._output_tokens += usage.output_tokens

    def add_iteration(
        self,
        iteration: int,
        messages_to_model: List[Dict],
        model_result: _ModelResult,
        default_stop_reason: str,
        tool_calls: Optional[List[ToolCall]] = None,
    ) -> None:
        self._iterations.append(AgentIteration(
            iteration=iteration,
            messages_to_model=messages_to_model,
            response_content=_content_to_dicts(model_result.response),
            stop_reason=model_result.response.stop_reason or default_stop_reason,
            usage=model_result.usage,
            api_call_ms=model_result.api_call_ms,
            tool_calls=tool_calls or [],
        ))

    def build(self, outcome: str, final_text: str, error_message: Optional[str] = None) -> AgentTrace:
        peak_input = max((it.usage.input_tokens for it in self._iterations), default=0)
        return AgentTrace(
            **self._fields,
            iterations=self._iterations,
            final_text=final_text,
            total_iterations=len(self._iterations),
            outcome=outcome,
            error_message=error_message,
            total_input_tokens=self._input_tokens,
            total_output_tokens=self._output_tokens,
            total_duration_ms=int((time.time() - self._start_time) * 1000),
            peak_input_tokens=peak_input or None,
        )


# =============================================================================
# Main Agent Loop
# =============================================================================

async def run_agent_loop(
    client: anthropic.AsyncAnthropic,
    model: str,
    max_tokens: int,
    max_iterations: int,
    system_prompt: str,
    messages: List[Dict],
    tools: Dict[str, ToolConfig],
    db: AsyncSession,
    user_id: int,
    context: Optional[Dict[str, Any]] = None,
    cancellation_token: Optional[CancellationToken] = None,
    stream_text: bool = False,
    temperature: float = 0.7,
    agent_name: Optional[str] = None,
) -> AsyncGenerator[AgentEvent, None]:
    """
    Run the agentic loop and yield events.

    Args:
        client: Anthropic async client
        model: Model to use (e.g., "claude-sonnet-4-20250514")
        max_tokens: Maximum tokens per response
        max_iterations: Maximum tool call iterations
        system_prompt: System prompt for the agent
        messages: Initial message history (Anthropic format); extended in place
        tools: Dict mapping tool name -> ToolConfig
        db: Database session passed to tool executors
        user_id: User ID for tool execution
        context: Additional context passed to tool executors
        cancellation_token: Optional token to check for cancellation
        stream_text: If True, yield AgentTextDelta events instead of AgentMessage
        temperature: Model temperature
        agent_name: Recorded on the trace

    Yields:
        AgentEvent subclasses; the last one is AgentComplete, AgentCancelled or AgentError
    """
    context = context or {}
    cancellation_token = cancellation_token or CancellationToken()

    trace_builder = TraceBuilder(
        agent_name=agent_name,
        model=model,
        max_tokens=max_tokens,
        max_iterations=max_iterations,
        temperature=temperature,
        system_prompt=system_prompt,
        tools=tools,
        context=context,
        initial_messages=messages,
    )
    api_kwargs = _build_api_kwargs(model, max_tokens, temperature, system_prompt, messages, tools)

    collected_text = ""
    tool_call_history: List[Dict[str, Any]] = []
    collected_payloads: List[Dict[str, Any]] = []

    def cancelled() -> AgentCancelled:
        return AgentCancelled(
            text=collected_text,
            tool_calls=tool_call_history,
            payloads=collected_payloads,
            trace=trace_builder.build("cancelled", collected_text),
        )

    yield AgentThinking(message="Starting...")

    try:
        for iteration in range(1, max_iterations + 1):
            if cancellation_token.is_cancelled:
                yield cancelled()
                return

            messages_to_model = copy.deepcopy(api_kwargs["messages"])

            model_result: Optional[_ModelResult] = None
            async for event in _call_model(client, api_kwargs, stream_text, cancellation_token, iteration):
                if isinstance(event, _ModelResult):
                    model_result = event
                else:
                    yield event
            trace_builder.add_tokens(model_result.usage)
            response = model_result.response

            if cancellation_token.is_cancelled:
                yield cancelled()
                return

            tool_use_blocks = [b for b in response.content if b.type == "tool_use"]

            if not tool_use_blocks:
                # Only the answer text counts; text emitted alongside tool calls was narration
                collected_text = model_result.text
                trace_builder.add_iteration(iteration, messages_to_model, model_result, "end_turn")
                logger.info(f"Agent {agent_name or ''} complete after {iteration} iterations")
                yield AgentComplete(
                    text=collected_text,
                    tool_calls=tool_call_history,
                    payloads=collected_payloads,
                    trace=trace_builder.build("complete", collected_text),
                )
                return

            tools_result: Optional[_ToolsResult] = None
            async for event in _process_tools(tool_use_blocks, tools, db, user_id, context, cancellation_token):
                if isinstance(event, _ToolsResult):
                    tools_result = event
                else:
                    yield event

            tool_call_history.extend(tools_result.tool_records)
            collected_payloads.extend(tools_result.payloads)
            trace_builder.add_iteration(
                iteration, messages_to_model, model_result, "tool_use", tools_result.tool_calls
            )

            _append_tool_exchange(messages, response, tools_result.tool_results)
            api_kwargs["messages"] = messages

            if stream_text:
                yield AgentTextDelta(text="\n\n")

        logger.warning(f"Agent {agent_name or ''} reached max iterations ({max_iterations}), requesting final answer")

        messages.append({"role": "user", "content": MAX_ITERATIONS_PROMPT})
        final_kwargs = {**api_kwargs, "messages": messages}
        final_kwargs.pop("tools", None)
        messages_to_model = copy.deepcopy(messages)

        model_result = None
        async for event in _call_model(client, final_kwargs, stream_text, cancellation_token, max_iterations + 1):
            if isinstance(event, _ModelResult):
                model_result = event
            else:
                yield event

        collected_text = model_result.text
        trace_builder.add_tokens(model_result.usage)
        trace_builder.add_iteration(max_iterations + 1, messages_to_model, model_result, "end_turn")

        yield AgentComplete(
            text=collected_text,
            tool_calls=tool_call_history,
            payloads=collected_payloads,
            trace=trace_builder.build("max_iterations", collected_text),
        )

    except asyncio.CancelledError:
        yield cancelled()
    except Exception as e:
        logger.error(f"Agent loop error ({agent_name}): {e}", exc_info=True)
        yield AgentError(
            error=_format_error_message(e),
            text=collected_text,
            tool_calls=tool_call_history,
            payloads=collected_payloads,
            trace=trace_builder.build("error", collected_text, error_message=str(e)),
        )


# =============================================================================
# Helpers
# =============================================================================

def _build_api_kwargs(
    model: str,
    max_tokens: int,
    temperature: float,
    system_prompt: str,
    messages: List[Dict],
    tools: Dict[str, ToolConfig]
) -> Dict:
    api_kwargs = {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "system": system_prompt,
        "messages": messages,
    }
    if tools:
        api_kwargs["tools"] = tools_to_anthropic_format(list(tools.values()))
        api_kwargs["tool_choice"] = {"type": "auto"}
        logger.debug(f"Agent loop with {len(tools)} tools: {list(tools.keys())}")
    return api_kwargs


def _content_to_dicts(response: Any) -> List[Dict]:
    """Content blocks as plain dicts, for traces and for replaying to the model."""
    result = []
    for block in response.content:
        if block.type == "text":
            result.append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            result.append({"type": "tool_use", "id": block.id, "name": block.name, "input": block.input})
    return result


async def _call_model(
    client: anthropic.AsyncAnthropic,
    api_kwargs: Dict,
    stream_text: bool,
    cancellation_token: CancellationToken,
    iteration: int,
) -> AsyncGenerator[Union[AgentEvent, _ModelResult], None]:
    """
    Call the model once.

    Yields AgentTextDelta (streaming) or AgentMessage (non-streaming), then a
    _ModelResult as the final item.
    """
    collected_text = ""
    start_time = time.time()

    if stream_text:
        async with client.messages.stream(**api_kwargs) as stream:
            async for event in stream:
                if cancellation_token.is_cancelled:
                    raise asyncio.CancelledError("Cancelled during streaming")
                if getattr(event, "type", None) == "content_block_delta" and hasattr(event.delta, "text"):
                    collected_text += event.delta.text
                    yield AgentTextDelta(text=event.delta.text)
            response = await stream.get_final_message()
    else:
        response = await client.messages.create(**api_kwargs)
        collected_text = "".join(b.text for b in response.content if b.type == "text")
        if collected_text:
            yield AgentMessage(text=collected_text, iteration=iteration)

    usage = TokenUsage(
        input_tokens=response.usage.input_tokens,
        output_tokens=response.usage.output_tokens,
    )
    yield _ModelResult(
        response=response,
        text=collected_text,
        usage=usage,
        api_call_ms=int((time.time() - start_time) * 1000),
    )


async def _process_tools(
    tool_use_blocks: List,
    tools: Dict[str, ToolConfig],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any],
    cancellation_token: CancellationToken
) -> AsyncGenerator[Union[AgentEvent, _ToolsResult], None]:
    """
    Execute each requested tool in order.

    Yields AgentToolStart / AgentToolProgress / AgentToolComplete, then a
    _ToolsResult. Executor exceptions become an error string for the model.
    """
    tool_results, tool_records, tool_calls, payloads = [], [], [], []

    for block in tool_use_blocks:
        logger.info(f"Agent tool call: {block.name}")
        yield AgentToolStart(tool_name=block.name, tool_input=block.input, tool_use_id=block.id)

        start = time.time()
        result_text = ""
        result_data = None
        output_type = "error"
        tool_config = tools.get(block.name)

        if tool_config is None:
            result_text = f"Unknown tool: {block.name}"
        else:
            try:
                if cancellation_token.is_cancelled:
                    raise asyncio.CancelledError(f"Tool {block.name} cancelled before execution")
                async for item in execute_tool(tool_config, block.input, db, user_id, context):
                    if cancellation_token.is_cancelled:
                        raise asyncio.CancelledError(f"Tool {block.name} cancelled during streaming")
                    if isinstance(item, ToolProgress):
                        yield AgentToolProgress(
                            tool_name=block.name,
                            stage=item.stage,
                            message=item.message,
                            progress=item.progress,
                            data=item.data,
                        )
                    else:
                        result_text = item.text
                        result_data = item.payload
                        output_type = "ToolResult"
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Tool execution error ({block.name}): {e}", exc_info=True)
                result_text = f"Error executing tool: {e}"

        if cancellation_token.is_cancelled:
            raise asyncio.CancelledError("Cancelled after tool execution")

        tool_calls.append(ToolCall(
            tool_use_id=block.id,
            tool_name=block.name,
            tool_input=block.input,
            output_from_executor=result_text,
            output_type=output_type,
            output_to_model=result_text,
            payload=_safe_serialize(result_data) if result_data else None,
            execution_ms=int((time.time() - start) * 1000),
        ))
        tool_records.append({"tool_name": block.name, "input": block.input, "output": result_text})
        if result_data:
            payloads.append(result_data)
        tool_results.append({"type": "tool_result", "tool_use_id": block.id, "content": result_text})

        yield AgentToolComplete(tool_name=block.name, result_text=result_text, result_data=result_data)

    yield _ToolsResult(tool_results=tool_results, tool_records=tool_records, tool_calls=tool_calls, payloads=payloads)


def _safe_serialize(obj: Any) -> Any:
    """Reduce an object to JSON-safe values for trace storage."""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, dict):
        return {str(k): _safe_serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_safe_serialize(item) for item in obj]
    return str(obj)


def _append_tool_exchange(messages: List[Dict], response: Any, tool_results: List[Dict]):
    """Append the assistant's tool_use turn and the user's tool_result turn."""
    messages.append({"role": "assistant", "content": _content_to_dicts(response)})
    messages.append({"role": "user", "content": tool_results})


def _format_error_message(e: Exception) -> str:
    """Convert exception to user-friendly error message."""
    error_str = str(e)
    lowered = error_str.lower()

    if "credit balance is too low" in lowered:
        return "API credit balance is too low. Please add credits to your Anthropic account."
    if "rate limit" in lowered or "429" in error_str:
        return "Rate limit exceeded. Please wait a moment and try again."
    if "invalid_api_key" in lowered or "authentication" in lowered:
        return "API authentication failed. Please check your API key configuration."
    if "timeout" in lowered:
        return "Request timed out. Please try again."
    if "connection" in lowered:
        return "Connection error. Please check your internet connection and try again."
    return error_str
