"""
Capabilities of the OpenAI models used for strategy prompts and plugin post-processing.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel


class ModelCapabilities(BaseModel):
    """Capabilities and parameters supported by a model"""
    supports_reasoning_effort: bool = False
    reasoning_effort_levels: Optional[List[str]] = None
    supports_temperature: bool = True  # Reasoning models reject temperature
    uses_max_completion_tokens: bool = False
    max_tokens: Optional[int] = None
    supports_structured_outputs: bool = True


MODEL_CONFIGS: Dict[str, ModelCapabilities] = {
    "gpt-5-mini": ModelCapabilities(
        supports_reasoning_effort=True,
        reasoning_effort_levels=["minimal", "low", "medium", "high"],
        supports_temperature=False,
        uses_max_completion_tokens=True,
        max_tokens=64000,
    ),
    "gpt-4.1": ModelCapabilities(
        uses_max_completion_tokens=True,
        max_tokens=32768,
    ),
    "gpt-4.1-mini": ModelCapabilities(
        uses_max_completion_tokens=True,
        max_tokens=32768,
    ),
    "gpt-4o": ModelCapabilities(
        max_tokens=16384,
    ),
    "gpt-4o-mini": ModelCapabilities(
        max_tokens=16384,
    ),
}


def get_model_capabilities(model_name: str) -> ModelCapabilities:
    """
    Get the capabilities for a specific model.

    Raises:
        ValueError: If the model is not found in the configuration
    """
    if model_name not in MODEL_CONFIGS:
        raise ValueError(f"Model {model_name} not found in configuration. Available models: {list(MODEL_CONFIGS.keys())}")
    return MODEL_CONFIGS[model_name]


def supports_reasoning_effort(model_name: str) -> bool:
    try:
        return get_model_capabilities(model_name).supports_reasoning_effort
    except ValueError:
        return False


def supports_temperature(model_name: str) -> bool:
    try:
        return get_model_capabilities(model_name).supports_temperature
    except ValueError:
        return True  # Unknown models are assumed to be chat models


def get_valid_reasoning_efforts(model_name: str) -> Optional[List[str]]:
    try:
        capabilities = get_model_capabilities(model_name)
    except ValueError:
        return None
    return capabilities.reasoning_effort_levels if capabilities.supports_reasoning_effort else None


def uses_max_completion_tokens(model_name: str) -> bool:
    try:
        return get_model_capabilities(model_name).uses_max_completion_tokens
    except ValueError:
        return False
