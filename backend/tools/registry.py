"""
Tool Registry

Tools are grouped into plugins by their `category`. An agent is configured
with a list of plugin names and receives every tool registered under them.

Executors may be sync functions, coroutines, or async generators that yield
ToolProgress updates before a final ToolResult (see tools/executor.py).
"""

from dataclasses import dataclass
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Iterable, List, Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession


@dataclass
class ToolProgress:
    """Progress update from a streaming tool."""
    stage: str                          # Current stage name (e.g., "searching", "summarizing")
    message: str                        # Human-readable status message
    progress: float = 0.0               # 0.0 to 1.0 progress indicator
    data: Optional[Dict[str, Any]] = None


@dataclass
class ToolResult:
    """Result from a tool execution."""
    text: str                           # Text result for LLM
    payload: Optional[Dict[str, Any]] = None  # Structured data for the client (type, data)


ToolExecutor = Callable[
    [Dict[str, Any], AsyncSession, int, Dict[str, Any]],
    Union[str, ToolResult, Awaitable[Union[str, ToolResult]], AsyncGenerator[Union[ToolProgress, ToolResult], None]]
]


@dataclass
class ToolConfig:
    """Configuration for a tool an agent can call.

    executor(params, db, user_id, context) -> str | ToolResult, sync or async.
    """
    name: str                           # Tool name (e.g., "get_weather")
    description: str                    # Description for LLM
    input_schema: Dict[str, Any]        # JSON schema for parameters
    executor: ToolExecutor
    category: str = "general"           # Plugin the tool belongs to
    streaming: bool = False             # If True, executor yields ToolProgress before returning ToolResult


# =============================================================================
# Global Registry
# =============================================================================

_tool_registry: Dict[str, ToolConfig] = {}


def register_tool(tool: ToolConfig) -> None:
    """Register a tool in the global registry."""
    _tool_registry[tool.name] = tool


def get_tool(name: str) -> Optional[ToolConfig]:
    return _tool_registry.get(name)


def get_all_tools() -> List[ToolConfig]:
    return list(_tool_registry.values())


def get_plugin_names() -> List[str]:
    """Names of all plugins that have at least one registered tool."""
    return sorted({t.category for t in _tool_registry.values()})


def get_tools_by_category(category: str) -> List[ToolConfig]:
    """Get all tools in a specific category."""
    return [t for t in _tool_registry.values() if t.category == category]


def get_tools_for_plugins(plugins: Iterable[str]) -> List[ToolConfig]:
    """
    Resolve plugin names to their tools, in plugin order.

    Raises:
        KeyError: a plugin name has no registered tools
    """
    tools: List[ToolConfig] = []
    for plugin in plugins:
        plugin_tools = get_tools_by_category(plugin)
        if not plugin_tools:
            raise KeyError(plugin)
        tools.extend(plugin_tools)
    return tools


def tools_to_anthropic_format(tools: List[ToolConfig]) -> List[Dict[str, Any]]:
    """Convert a list of tools to Anthropic API format."""
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.input_schema
        }
        for tool in tools
    ]


def tools_to_dict(tools: List[ToolConfig]) -> Dict[str, ToolConfig]:
    """Convert a list of tools to a dict mapping name to config."""
    return {t.name: t for t in tools}
