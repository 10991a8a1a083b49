"""
Document Generation Tools

List Word templates, describe their fields, and generate filled documents.
"""

import json
import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from exceptions import TemplateNotFoundError
from services.template_service import TemplateService
from tools.registry import ToolConfig, ToolResult, register_tool

logger = logging.getLogger(__name__)


async def execute_list_templates(
    params: Dict[str, Any],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any],
) -> ToolResult:
    templates = await TemplateService().list_templates()
    if not templates:
        return ToolResult(text="No document templates are available.")
    return ToolResult(
        text="Available templates:\n" + "\n".join(f"- {name}" for name in templates),
        payload={"type": "template_list", "data": templates},
    )


async def execute_extract_template_parameters(
    params: Dict[str, Any],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any],
) -> str:
    """Return the template's payload skeleton as JSON ({} when it does not exist)."""
    template_name = (params.get("template_name") or "").strip()
    if not template_name:
        return "Error: template_name is required."
    parameters = await TemplateService().get_parameters(template_name)
    return json.dumps(parameters, ensure_ascii=False)


async def execute_generate_document(
    params: Dict[str, Any],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any],
) -> ToolResult:
    template_name = (params.get("template_name") or "").strip()
    inputs = params.get("inputs") or {}
    if isinstance(inputs, str):
        # Some models send the inputs object as a JSON string
        try:
            inputs = json.loads(inputs)
        except json.JSONDecodeError:
            return ToolResult(text="Error: inputs must be a JSON object.")

    try:
        url = await TemplateService().generate(template_name, inputs)
    except TemplateNotFoundError:
        return ToolResult(text="Template not found.")

    return ToolResult(
        text=url,
        payload={"type": "generated_document", "data": {"template_name": template_name, "url": url}},
    )


register_tool(ToolConfig(
    name="list_templates",
    description="List available document templates.",
    input_schema={"type": "object", "properties": {}},
    executor=execute_list_templates,
    category="documents",
))

register_tool(ToolConfig(
    name="extract_template_parameters",
    description=(
        "Extract all required fields (text, checkboxes and repeating table sections) from a "
        "selected template. Returns a JSON object to fill in: strings for text, booleans for "
        "checkboxes, and lists of objects for repeating sections."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "template_name": {"type": "string", "description": "Template file name, e.g. 'Invoice.docx'"},
        },
        "required": ["template_name"]
    },
    executor=execute_extract_template_parameters,
    category="documents",
))

register_tool(ToolConfig(
    name="generate_document",
    description="Generate a document from a template with the user's inputs. Returns the URL of the generated file.",
    input_schema={
        "type": "object",
        "properties": {
            "template_name": {"type": "string", "description": "Template file name"},
            "inputs": {
                "type": "object",
                "description": "Values keyed by the fields returned from extract_template_parameters"
            },
        },
        "required": ["template_name", "inputs"]
    },
    executor=execute_generate_document,
    category="documents",
))
