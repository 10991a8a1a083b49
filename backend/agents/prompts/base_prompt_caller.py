from typing import Dict, Any, List, Optional, Union, Type, Literal
from pydantic import BaseModel, create_model, Field
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder
from langchain_core.output_parsers import PydanticOutputParser
from openai import AsyncOpenAI, APIError, APIConnectionError, RateLimitError, APITimeoutError
import httpx
import json
import logging
from config.settings import settings
from schemas.llm import ChatMessage
from utils.message_formatter import format_langchain_messages, format_messages_for_openai
from utils.prompt_logger import log_prompt_messages
from config.llm_models import MODEL_CONFIGS, supports_reasoning_effort, supports_temperature, get_valid_reasoning_efforts, uses_max_completion_tokens

logger = logging.getLogger(__name__)

AVAILABLE_MODELS = {model_id: model_id for model_id in MODEL_CONFIGS.keys()}

DEFAULT_MODEL = "gpt-4.1"
OPENAI_TIMEOUT = 120.0

_shared_openai_client = None


def get_shared_openai_client() -> AsyncOpenAI:
    """One pooled OpenAI client for every prompt caller and the embedding service."""
    global _shared_openai_client
    if _shared_openai_client is None:
        http_client = httpx.AsyncClient(
            limits=httpx.Limits(
                max_connections=200,
                max_keepalive_connections=50,
            ),
            timeout=httpx.Timeout(OPENAI_TIMEOUT)
        )
        _shared_openai_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, http_client=http_client)
    return _shared_openai_client


class LLMUsage(BaseModel):
    """Token usage information from LLM calls"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LLMResponse(BaseModel):
    """Response from LLM containing both the result and usage information"""
    result: Any
    usage: LLMUsage


_JSON_TYPES = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
    "array": List[Any],
    "object": Dict[str, Any],
}


class BasePromptCaller:
    """Base class for creating and using prompt callers"""

    def __init__(
        self,
        response_model: Union[Type[BaseModel], Dict[str, Any], None] = None,
        system_message: Optional[str] = None,
        messages_placeholder: bool = True,
        model: Optional[str] = None,
        temperature: float = 0.0,
        reasoning_effort: Optional[str] = None,
        system_is_template: bool = True,
    ):
        """
        Initialize a prompt caller.

        Args:
            response_model: A Pydantic model class, a JSON schema dict, or None for text-only mode
            system_message: The system message to use in the prompt
            messages_placeholder: Whether to include a messages placeholder in the prompt
            model: The OpenAI model to use (defaults to DEFAULT_MODEL)
            temperature: Sampling temperature
            reasoning_effort: Reasoning effort for models that support it
            system_is_template: False when system_message is already rendered text whose
                braces must reach the model unchanged
        """
        self._original_schema = None
        if response_model is None:
            self.response_model = None
            self.parser = None
        elif isinstance(response_model, dict):
            self.response_model = self._json_schema_to_pydantic_model(response_model)
            self._original_schema = response_model
            self.parser = PydanticOutputParser(pydantic_object=self.response_model)
        else:
            self.response_model = response_model
            self.parser = PydanticOutputParser(pydantic_object=self.response_model)
        self._text_only = self.response_model is None

        if system_message and not system_is_template:
            system_message = system_message.replace("{", "{{").replace("}", "}}")
        self.system_message = system_message
        self.messages_placeholder = messages_placeholder

        if model:
            if model not in AVAILABLE_MODELS:
                raise ValueError(f"Model {model} not available. Choose from: {list(AVAILABLE_MODELS.keys())}")
            self.model = AVAILABLE_MODELS[model]
        else:
            self.model = DEFAULT_MODEL

        self.temperature = temperature

        self.reasoning_effort = None
        if reasoning_effort:
            valid_efforts = get_valid_reasoning_efforts(self.model)
            if not valid_efforts:
                logger.warning(f"Model {self.model} does not support reasoning effort parameter. Ignoring.")
            elif reasoning_effort not in valid_efforts:
                raise ValueError(f"Invalid reasoning effort '{reasoning_effort}' for model {self.model}. Valid options: {valid_efforts}")
            else:
                self.reasoning_effort = reasoning_effort

        self.client = get_shared_openai_client()

    def _json_schema_to_pydantic_model(self, schema: Dict[str, Any], model_name: str = "DynamicModel") -> Type[BaseModel]:
        """Convert an object JSON schema to a Pydantic model class."""
        if schema.get("type") != "object":
            raise ValueError("Only object type schemas are supported")

        required = schema.get("required", [])
        field_definitions = {}

        for prop_name, prop_schema in schema.get("properties", {}).items():
            prop_type = prop_schema.get("type", "string")
            description = prop_schema.get("description", "")

            # {"type": ["string", "null"]} means Optional[str]
            is_nullable = False
            if isinstance(prop_type, list):
                is_nullable = "null" in prop_type
                non_null_types = [t for t in prop_type if t != "null"]
                prop_type = non_null_types[0] if non_null_types else "string"

            if prop_type == "string" and "enum" in prop_schema:
                python_type = Literal[tuple(prop_schema["enum"])]
            else:
                python_type = _JSON_TYPES.get(prop_type, str)

            if is_nullable or prop_name not in required:
                field_definitions[prop_name] = (Union[python_type, None], Field(default=None, description=description))
            else:
                field_definitions[prop_name] = (python_type, Field(description=description))

        unique_name = f"{model_name}_{abs(hash(json.dumps(schema, sort_keys=True)))}"
        return create_model(unique_name, **field_definitions)

    def get_prompt_template(self) -> ChatPromptTemplate:
        messages = []
        if self.system_message:
            messages.append(("system", self.system_message))
        if self.messages_placeholder:
            messages.append(MessagesPlaceholder(variable_name="messages"))
        return ChatPromptTemplate.from_messages(messages)

    def get_formatted_messages(
        self,
        messages: List[ChatMessage],
        **kwargs: Dict[str, Any]
    ) -> List[Dict[str, str]]:
        """Render the template and convert to OpenAI message dicts."""
        langchain_messages = format_langchain_messages(messages)
        format_instructions = self.parser.get_format_instructions() if self.parser else ""

        prompt = self.get_prompt_template()
        formatted_messages = prompt.format_messages(
            messages=langchain_messages,
            format_instructions=format_instructions,
            **kwargs
        )
        return format_messages_for_openai(formatted_messages)

    def get_schema(self) -> Dict[str, Any]:
        if self._original_schema:
            return self._original_schema
        return self.response_model.model_json_schema()

    def get_response_model_name(self) -> str:
        if self.response_model is None:
            return "TextResponse"
        return self.response_model.__name__

    async def invoke(
        self,
        messages: List[ChatMessage] = None,
        log_prompt: bool = False,
        return_usage: bool = False,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Dict[str, Any]
    ) -> Union[BaseModel, LLMResponse, str]:
        """
        Invoke the prompt and get a parsed response.

        Returns:
            If return_usage=True: LLMResponse with result and usage info
            Otherwise the parsed response model instance, or raw text in text-only mode
        """
        formatted_messages = self.get_formatted_messages(messages or [], **kwargs)

        if log_prompt:
            try:
                log_file_path = log_prompt_messages(
                    messages=formatted_messages,
                    prompt_type=self.__class__.__name__.lower()
                )
                logger.debug(f"Prompt messages logged to: {log_file_path}")
            except OSError as log_error:
                logger.warning(f"Failed to log prompt: {log_error}")

        use_model = self.model
        if model:
            if model not in AVAILABLE_MODELS:
                raise ValueError(f"Model {model} not available. Choose from: {list(AVAILABLE_MODELS.keys())}")
            use_model = AVAILABLE_MODELS[model]
        use_temperature = temperature if temperature is not None else self.temperature

        api_params: Dict[str, Any] = {
            "model": use_model,
            "messages": formatted_messages,
        }

        if not self._text_only:
            api_params["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "schema": self.get_schema(),
                    "name": self.get_response_model_name()
                }
            }

        if max_tokens:
            if uses_max_completion_tokens(use_model):
                api_params["max_completion_tokens"] = max_tokens
            else:
                api_params["max_tokens"] = max_tokens

        if self.reasoning_effort and supports_reasoning_effort(use_model):
            effort = self.reasoning_effort
            api_params["reasoning_effort"] = effort.value if hasattr(effort, 'value') else str(effort)

        if supports_temperature(use_model):
            api_params["temperature"] = use_temperature

        try:
            logger.debug(f"Calling OpenAI API: model={use_model}, schema={self.get_response_model_name()}")
            response = await self.client.chat.completions.create(**api_params)
        except APITimeoutError as e:
            logger.error(f"OpenAI API timeout: {e}")
            raise RuntimeError(f"OpenAI API request timed out after {OPENAI_TIMEOUT}s") from e
        except RateLimitError as e:
            logger.error(f"OpenAI API rate limit exceeded: {e}")
            raise RuntimeError("OpenAI API rate limit exceeded. Please try again later.") from e
        except APIConnectionError as e:
            logger.error(f"OpenAI API connection error: {e}")
            raise RuntimeError("Failed to connect to OpenAI API. Check network connectivity.") from e
        except APIError as e:
            logger.error(f"OpenAI API error: {e.message}")
            raise RuntimeError(f"OpenAI API error: {e.message}") from e

        choice = response.choices[0]
        response_text = choice.message.content

        if not response_text:
            if choice.finish_reason == 'length':
                raise ValueError("Token limit exceeded: response was cut off before completion.")
            if choice.finish_reason == 'content_filter':
                raise ValueError("Content was filtered by OpenAI's safety system.")
            refusal = getattr(choice.message, 'refusal', None)
            if refusal:
                raise ValueError(f"Model refused to respond: {refusal}")
            raise ValueError("OpenAI returned empty response")

        parsed_result = response_text if self._text_only else self.parser.parse(response_text)

        if not return_usage:
            return parsed_result

        usage = response.usage
        return LLMResponse(
            result=parsed_result,
            usage=LLMUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
        )
