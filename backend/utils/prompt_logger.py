import json
from datetime import datetime
from typing import List, Dict, Any, Optional
from pathlib import Path

from config.settings import settings


def log_prompt_messages(
    messages: List[Dict[str, str]],
    prompt_type: str,
    additional_context: Optional[Dict[str, Any]] = None,
    log_dir: Optional[str] = None
) -> str:
    """
    Write the messages sent to the LLM to a markdown file for later inspection.

    Args:
        messages: Formatted messages being sent to the LLM
        prompt_type: Name of the caller (e.g. "selection", "termination")
        additional_context: Extra key/values rendered above the messages
        log_dir: Directory for the files; defaults to <LOG_DIR>/prompts

    Returns:
        Path to the created log file
    """
    log_path = Path(log_dir or Path(settings.LOG_DIR) / "prompts")
    log_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")[:-3]
    filepath = log_path / f"{prompt_type}_prompt_{timestamp}.md"

    lines = [
        f"# {prompt_type.upper()} PROMPT LOG",
        f"**Timestamp:** {datetime.now().isoformat()}",
        "",
    ]

    if additional_context:
        lines.append("## Additional Context")
        for key, value in additional_context.items():
            if isinstance(value, (dict, list)):
                lines.extend([f"**{key}:**", "```json", json.dumps(value, indent=2, default=str), "```"])
            else:
                lines.append(f"**{key}:** {value}")
        lines.append("")

    lines.append(f"## Messages ({len(messages)})")
    lines.append("")
    for i, message in enumerate(messages, 1):
        role = message.get("role", "unknown")
        content = message.get("content", "")
        lines.append(f"### Message {i}: {role.upper()}")
        lines.append("")
        # System prompts are long; fence them so markdown doesn't reflow them
        if role == "system":
            lines.extend(["```", content, "```"])
        else:
            lines.append(content)
        lines.extend(["", "---", ""])

    filepath.write_text("\n".join(lines), encoding="utf-8")
    return str(filepath)
