"""
Tool Executor

Runs any kind of tool executor and normalizes what it produces:
- Sync executor: run in a worker thread
- Async executor: awaited
- Async generator: ToolProgress items are passed through as they arrive

The last item yielded is always a ToolResult.
"""

import asyncio
import inspect
import logging
from typing import Any, AsyncGenerator, Dict, Union

from sqlalchemy.ext.asyncio import AsyncSession

from tools.registry import ToolConfig, ToolProgress, ToolResult

logger = logging.getLogger(__name__)


def _to_result(value: Any) -> ToolResult:
    if isinstance(value, ToolResult):
        return value
    if value is None:
        return ToolResult(text="")
    return ToolResult(text=value if isinstance(value, str) else str(value))


async def execute_tool(
    tool_config: ToolConfig,
    tool_input: Dict[str, Any],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any]
) -> AsyncGenerator[Union[ToolProgress, ToolResult], None]:
    """
    Execute a tool, yielding progress updates followed by the final ToolResult.

    Exceptions from the executor propagate; the agent loop turns them into
    an error message for the model.
    """
    if inspect.iscoroutinefunction(tool_config.executor):
        raw_result = await tool_config.executor(tool_input, db, user_id, context)
    elif inspect.isasyncgenfunction(tool_config.executor):
        raw_result = tool_config.executor(tool_input, db, user_id, context)
    else:
        raw_result = await asyncio.to_thread(tool_config.executor, tool_input, db, user_id, context)

    if not hasattr(raw_result, "__anext__"):
        yield _to_result(raw_result)
        return

    final = None
    async for item in raw_result:
        if isinstance(item, ToolProgress):
            yield item
        else:
            final = item
    if final is None:
        logger.warning(f"Streaming tool {tool_config.name} finished without a result")
    yield _to_result(final)
