"""
Chat-completion API client

Talks to an OpenAI-compatible /chat/completions endpoint (NVIDIA NIM by
default). One request per call, no retries: callers absorb failures.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from logging_config import performance_logger

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when a completion cannot be obtained"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class Completion:
    content: str
    tokens_used: int
    model: str


class LLMClient:
    """Client for a chat-completion endpoint"""

    def __init__(self, api_key: Optional[str], base_url: str = 'https://integrate.api.nvidia.com/v1',
                 default_model: str = 'meta/llama-3.1-8b-instruct', timeout: float = 60):
        """
        Args:
            api_key: Bearer key for the endpoint
            base_url: API base, without the /chat/completions suffix
            default_model: Model id used when a call does not name one
            timeout: Read timeout in seconds
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.default_model = default_model
        self.timeout = (5, timeout)  # Connection timeout, read timeout

    def complete(self, messages: List[Dict[str, str]], model: Optional[str] = None,
                 max_tokens: int = 2048, temperature: float = 0.7) -> Completion:
        """
        Run one chat completion.

        Returns:
            Completion with the first choice's text and the total token count

        Raises:
            LLMError: On missing key, transport failure, non-2xx status or an
                unreadable response body
        """
        if not self.api_key:
            raise LLMError("LLM API key is not configured")

        model = model or self.default_model
        url = f"{self.base_url}/chat/completions"
        payload = {
            'model': model,
            'messages': messages,
            'max_tokens': max_tokens,
            'temperature': temperature,
        }
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }

        started = time.monotonic()
        try:
            response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Chat completion request failed: {e}")
            raise LLMError(f"Chat completion request failed: {e}") from e

        performance_logger.log_api_call(
            service='llm',
            endpoint='chat/completions',
            duration_ms=round((time.monotonic() - started) * 1000, 1),
            status_code=response.status_code
        )

        if not response.ok:
            raise LLMError(
                f"Chat completion API error {response.status_code}: {response.text[:500]}",
                status_code=response.status_code
            )

        try:
            data: Dict[str, Any] = response.json()
        except ValueError as e:
            raise LLMError("Chat completion response is not JSON") from e

        choices = data.get('choices') or []
        content = ''
        if choices and isinstance(choices[0], dict):
            content = (choices[0].get('message') or {}).get('content') or ''
        tokens_used = int((data.get('usage') or {}).get('total_tokens') or 0)

        return Completion(content=content, tokens_used=tokens_used, model=model)
