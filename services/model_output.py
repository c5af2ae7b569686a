"""
Helpers for reading JSON out of model text
"""

import json
import re
from typing import Any

FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class MalformedModelOutput(ValueError):
    """Model text could not be read as the expected JSON"""


def strip_code_fence(text: str) -> str:
    """Return the body of the first fenced code block, or the text unchanged."""
    match = FENCED_BLOCK.search(text or '')
    return match.group(1) if match else (text or '')


def parse_model_json(text: str) -> Any:
    """
    Strip an optional fenced block, then strictly parse the rest as JSON.

    Raises:
        MalformedModelOutput: If the remainder is not valid JSON
    """
    body = strip_code_fence(text).strip()
    if not body:
        raise MalformedModelOutput("Model returned empty content")
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise MalformedModelOutput(f"Model returned invalid JSON: {e.msg}") from e


def truncate(text: str, limit: int = 500) -> str:
    text = text or ''
    return text if len(text) <= limit else text[:limit] + '...'
