"""
Agents Package

Contains the agentic loop, the agent group chat and prompt callers for LLM interactions.

- agent_loop: Core agentic loop with tool support (one agent turn)
- agent_factory: Named agents bound to plugin tool sets
- group_chat: Selection and termination strategies around a shared history
- prompts/: LLM prompt callers (BasePromptCaller, call_llm)
"""
