"""
Plugin Tool System

Provides tool registration and execution for the agents.
"""

from tools.registry import (
    ToolProgress,
    ToolResult,
    ToolConfig,
    register_tool,
    get_tool,
    get_all_tools,
    get_plugin_names,
    get_tools_by_category,
    get_tools_for_plugins,
    tools_to_anthropic_format,
    tools_to_dict,
)
from tools.executor import execute_tool

# Import builtin tools to auto-register them
from tools import builtin

__all__ = [
    "ToolProgress",
    "ToolResult",
    "ToolConfig",
    "register_tool",
    "get_tool",
    "get_all_tools",
    "get_plugin_names",
    "get_tools_by_category",
    "get_tools_for_plugins",
    "tools_to_anthropic_format",
    "tools_to_dict",
    "execute_tool",
]
