"""
Weather Tools

Current conditions from the weatherstack API, summarized for the user.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from agents.prompts.llm import call_llm
from config.settings import settings
from tools.registry import ToolConfig, ToolResult, register_tool

logger = logging.getLogger(__name__)

CITY_EXTRACTION_PROMPT = (
    "Extract the city or location the user wants weather for. "
    "Reply with the place name only, as it would be typed into a weather service."
)

CITY_SCHEMA = {
    "type": "object",
    "properties": {
        "city": {"type": "string", "description": "City or location name"}
    },
    "required": ["city"],
}

WEATHER_SUMMARY_PROMPT = (
    "Based on the user query {query}, generate a concise and informative response not more "
    "than 50 words using the following search results:\n\n{weather}\n\n"
    "Ensure the response is clear, engaging, and to the point. If no relevant answer is found, "
    "politely acknowledge it by stating that you don't know."
)


def format_weather_report(data: Dict[str, Any]) -> Optional[str]:
    """Render a weatherstack `current` response; None when location or conditions are missing."""
    location = data.get("location")
    current = data.get("current")
    if not location or not current:
        return None

    descriptions = current.get("weather_descriptions") or []
    description = descriptions[0] if descriptions else "No description available"

    return "\n".join([
        f"🌍 Location: {location.get('name')}, {location.get('country')}",
        f"🌤️ Weather: {description}",
        f"🌡️ Temperature: {current.get('temperature')}°C (Feels like {current.get('feelslike')}°C)",
        f"💨 Wind: {current.get('wind_speed')} km/h {current.get('wind_dir', '')}".rstrip(),
        f"💧 Humidity: {current.get('humidity')}%",
        f"🌞 UV Index: {current.get('uv_index')}",
    ])


async def _extract_city(query: str) -> str:
    result = await call_llm(
        system_message=CITY_EXTRACTION_PROMPT,
        user_message="{query}",
        values={"query": query},
        response_schema=CITY_SCHEMA,
    )
    if result.ok and result.data.get("city"):
        return result.data["city"].strip()
    logger.warning(f"City extraction failed, using the raw query: {result.error}")
    return query


async def execute_get_weather(
    params: Dict[str, Any],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any],
) -> ToolResult:
    query = (params.get("query") or "").strip()
    if not query:
        return ToolResult(text="Please provide a valid query.")

    city = await _extract_city(query)

    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.get(
                settings.WEATHER_API_URL,
                params={"access_key": settings.WEATHER_API_KEY or "", "query": city},
            )
            resp.raise_for_status()
            data = resp.json()

        report = format_weather_report(data)
        if report is None:
            return ToolResult(text=f"Could not retrieve weather data for {query}.")

        summary = await call_llm(
            system_message="You describe current weather conditions.",
            user_message=WEATHER_SUMMARY_PROMPT,
            values={"query": query, "weather": report},
        )
        if not summary.ok:
            raise RuntimeError(summary.error)

        return ToolResult(
            text=summary.data,
            payload={"type": "weather", "data": {"city": city, "report": report}},
        )
    except (httpx.HTTPError, ValueError, RuntimeError) as e:
        logger.warning(f"Weather lookup failed for {city!r}: {e}")
        return ToolResult(text=f"Error retrieving weather data: {e}")


register_tool(ToolConfig(
    name="get_weather",
    description="Gets the current weather information for the city mentioned in the user's query.",
    input_schema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Query of the user, e.g. 'What's the weather in Paris?'"
            },
        },
        "required": ["query"]
    },
    executor=execute_get_weather,
    category="weather",
))
