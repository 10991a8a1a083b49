"""
Email Tools

Drafts are always previewed; an email is only posted to the mail webhook
once the user has confirmed it.
"""

import logging
from typing import Any, Dict

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from tools.registry import ToolConfig, register_tool

logger = logging.getLogger(__name__)

EMAIL_SENT_MESSAGE = "Email sent successfully!"
EMAIL_FAILED_MESSAGE = "Failed to send email."


async def execute_send_email(
    params: Dict[str, Any],
    db: AsyncSession,
    user_id: int,
    context: Dict[str, Any],
) -> str:
    to = (params.get("to") or "").strip()
    body = params.get("body") or ""
    subject = params.get("subject")

    if not to:
        return "Please provide the recipient's email address."

    if not params.get("confirm_and_send", False):
        return f"Preview Email:\nTo: {to}\nBody: {body}\n\nPlease confirm before sending."

    if not settings.EMAIL_WEBHOOK_URL:
        logger.error("EMAIL_WEBHOOK_URL is not configured")
        return EMAIL_FAILED_MESSAGE

    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            resp = await client.post(
                settings.EMAIL_WEBHOOK_URL,
                json={"to": to, "emailBody": body, "subject": subject},
            )
    except httpx.HTTPError as e:
        logger.warning(f"Email webhook call failed: {e}")
        return EMAIL_FAILED_MESSAGE

    if resp.is_success:
        logger.info(f"Email sent for user {user_id}")
        return EMAIL_SENT_MESSAGE
    logger.warning(f"Email webhook returned {resp.status_code}")
    return EMAIL_FAILED_MESSAGE


register_tool(ToolConfig(
    name="send_email",
    description=(
        "Prepares an email for sending. Always show the preview to the user first and only set "
        "confirm_and_send to true after the user has confirmed the email body."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "to": {"type": "string", "description": "Recipient email address"},
            "body": {"type": "string", "description": "Email body"},
            "subject": {"type": "string", "description": "Optional subject line"},
            "confirm_and_send": {
                "type": "boolean",
                "description": "True only after the user confirmed the previewed email"
            },
        },
        "required": ["to", "body"]
    },
    executor=execute_send_email,
    category="email",
))
