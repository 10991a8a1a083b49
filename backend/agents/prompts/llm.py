"""
Single-call LLM interface for the orchestration prompts.

`call_llm` renders {placeholder} templates into a system and user message,
calls OpenAI through BasePromptCaller and returns an LLMResult. It never
raises: failures come back as `result.error`.

Example:
    result = await call_llm(
        system_message="Extract the city from the user's request.",
        user_message="{query}",
        values={"query": "What's the weather in Paris?"},
        response_schema={"type": "object", "properties": {"city": {"type": "string"}}},
    )
    if result.ok:
        city = result.data["city"]
"""

from typing import Dict, Any, List, Optional, Union, Type
from pydantic import BaseModel, Field
from datetime import datetime, timezone
import logging
import re

from agents.prompts.base_prompt_caller import BasePromptCaller
from config.llm_models import supports_reasoning_effort
from config.settings import settings
from schemas.llm import ChatMessage, MessageRole, ModelConfig, DEFAULT_MODEL_CONFIG

logger = logging.getLogger(__name__)


class LLMUsage(BaseModel):
    """Token usage from LLM call."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LLMResult(BaseModel):
    """Result from a single LLM call."""
    input: Dict[str, Any] = Field(description="Values the templates were rendered with")
    data: Union[Dict[str, Any], str, None] = Field(default=None, description="dict for structured, str for text")
    error: Optional[str] = Field(default=None, description="Error message if call failed")
    usage: LLMUsage = Field(default_factory=LLMUsage)

    @property
    def ok(self) -> bool:
        return self.error is None


class LLMOptions(BaseModel):
    """Options for LLM calls."""
    log_prompt: bool = Field(default_factory=lambda: settings.LOG_PROMPTS, description="Write prompts to LOG_DIR/prompts")
    history: List[ChatMessage] = Field(default_factory=list, description="Messages placed before the user message")


_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def _render_template(template: str, values: Dict[str, Any]) -> str:
    """
    Replace each {key} in the template with its value; lists are comma-joined.

    Substitution is a single pass, so braces inside values stay as written.
    Unknown keys and None values leave the placeholder in place.
    """
    def substitute(match: re.Match) -> str:
        value = values.get(match.group(1))
        if value is None:
            return match.group(0)
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return str(value)

    return _PLACEHOLDER.sub(substitute, template)


async def call_llm(
    system_message: str,
    user_message: str,
    values: Dict[str, Any],
    model_config: Optional[ModelConfig] = None,
    response_schema: Union[Type[BaseModel], Dict[str, Any], None] = None,
    options: Optional[LLMOptions] = None,
) -> LLMResult:
    """
    Unified LLM call interface.

    Args:
        system_message: System prompt, can contain {placeholder} templates
        user_message: User prompt, can contain {placeholder} templates
        values: Template values
        model_config: Model settings (model, temperature, max_tokens, reasoning_effort)
        response_schema: Pydantic class, JSON schema dict, or None for text
        options: Prompt logging and prior history

    Returns:
        LLMResult; `data` is a string in text mode and a dict in structured mode
    """
    config = model_config or DEFAULT_MODEL_CONFIG
    opts = options or LLMOptions()

    try:
        prompt_caller = BasePromptCaller(
            response_model=response_schema,
            system_message=_render_template(system_message, values),
            messages_placeholder=True,
            model=config.model_id,
            temperature=config.temperature or 0.0,
            reasoning_effort=config.reasoning_effort if supports_reasoning_effort(config.model_id) else None,
            system_is_template=False,
        )

        now = datetime.now(timezone.utc)
        messages = list(opts.history)
        messages.append(ChatMessage(
            id="llm_call",
            role=MessageRole.USER,
            content=_render_template(user_message, values),
            created_at=now,
            updated_at=now,
        ))

        response = await prompt_caller.invoke(
            messages=messages,
            return_usage=True,
            log_prompt=opts.log_prompt,
            max_tokens=config.max_tokens,
        )

        llm_response = response.result
        if response_schema is None:
            data = llm_response
        elif hasattr(llm_response, "model_dump"):
            data = llm_response.model_dump()
        else:
            data = dict(llm_response)

        return LLMResult(
            input=values,
            data=data,
            usage=LLMUsage(**response.usage.model_dump()),
        )

    except Exception as e:
        logger.error(f"LLM call failed: {e}", exc_info=True)
        return LLMResult(input=values, error=str(e))
