"""Text-generation clients used to classify bookmarks.

Both backends expose the same coroutine, ``classify(prompt) -> str``; they
differ only in how the request is built and where the generated text sits in
the response body.
"""

import asyncio
import json
import logging
import os
import re
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import aiohttp

from ..errors import AuthError, ClassifierError, MalformedResponse, OrganizerError, RateLimited, Unavailable
from ..utils.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

QUOTA_PATTERN = re.compile(
    r'quota|rate[ _-]?limit|resource[ _]exhausted|too many requests',
    re.IGNORECASE,
)


class ClassifierClient:
    provider = 'generic'
    default_model: Optional[str] = None
    default_base_url: Optional[str] = None

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.1,
        max_output_tokens: int = 4096,
        timeout: float = 60,
        max_attempts: int = 3,
        backoff_seconds: float = 0.8,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if not api_key:
            raise AuthError(f"No API key configured for {self.provider}")
        self.api_key = api_key
        self.model = model or self.default_model
        self.base_url = (base_url or self.default_base_url or '').rstrip('/')
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self.retry_policy = RetryPolicy(
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
            retry_on=(RateLimited,),
        )
        self._sleep = sleep

    async def classify(self, prompt: str) -> str:
        """Send prompt and return the generated text, retrying only on rate limiting."""
        return await run_with_retry(
            lambda: self._classify_once(prompt),
            self.retry_policy,
            sleep=self._sleep,
            description=f"{self.provider} request",
        )

    async def _classify_once(self, prompt: str) -> str:
        url, headers, payload = self._build_request(prompt)
        status, body = await self._post(url, headers, payload)
        if status >= 400:
            raise self._error_for(status, body)

        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise MalformedResponse(f"{self.provider} returned invalid JSON: {e}") from e

        try:
            text = self._extract_text(data)
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponse(f"Unexpected {self.provider} response shape: {e!r}") from e
        if not text or not text.strip():
            raise MalformedResponse(f"{self.provider} returned an empty response")

        logger.debug(f"{self.provider} text: {text}")
        return text

    async def _post(self, url: str, headers: Dict[str, str], payload: dict) -> Tuple[int, str]:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload, headers=headers) as response:
                    return response.status, await response.text()
        except asyncio.TimeoutError as e:
            raise Unavailable(f"{self.provider} request timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise Unavailable(f"{self.provider} request failed: {e}") from e

    def _error_for(self, status: int, body: str) -> ClassifierError:
        message = _error_message(body)
        if status == 429 or QUOTA_PATTERN.search(message):
            return RateLimited(
                f"{self.provider} rate limit or quota exceeded (HTTP {status}): {message}. "
                f"Wait a moment or check your plan's quota."
            )
        if status in (401, 403):
            return AuthError(f"{self.provider} rejected the API key (HTTP {status}): {message}")
        return Unavailable(f"{self.provider} request failed (HTTP {status}): {message}")

    def _build_request(self, prompt: str) -> Tuple[str, Dict[str, str], dict]:
        raise NotImplementedError

    def _extract_text(self, data: dict) -> Optional[str]:
        raise NotImplementedError


class GeminiClient(ClassifierClient):
    """Google Gemini ``generateContent`` endpoint."""
    provider = 'gemini'
    default_model = 'gemini-2.0-flash'
    default_base_url = 'https://generativelanguage.googleapis.com/v1beta'

    def _build_request(self, prompt: str):
        url = f"{self.base_url}/models/{self.model}:generateContent"
        headers = {'Content-Type': 'application/json', 'x-goog-api-key': self.api_key}
        payload = {
            'contents': [{'parts': [{'text': prompt}]}],
            'generationConfig': {
                'temperature': self.temperature,
                'maxOutputTokens': self.max_output_tokens,
            },
        }
        return url, headers, payload

    def _extract_text(self, data: dict) -> Optional[str]:
        return data['candidates'][0]['content']['parts'][0]['text']


class ChatCompletionClient(ClassifierClient):
    """OpenAI-compatible ``chat/completions`` endpoint."""
    provider = 'openai'
    default_model = 'gpt-4o-mini'
    default_base_url = 'https://api.openai.com/v1'

    def _build_request(self, prompt: str):
        url = f"{self.base_url}/chat/completions"
        headers = {'Content-Type': 'application/json', 'Authorization': f"Bearer {self.api_key}"}
        payload = {
            'model': self.model,
            'messages': [{'role': 'user', 'content': prompt}],
            'temperature': self.temperature,
            'max_tokens': self.max_output_tokens,
        }
        return url, headers, payload

    def _extract_text(self, data: dict) -> Optional[str]:
        return data['choices'][0]['message']['content']


CLIENTS = {
    GeminiClient.provider: GeminiClient,
    ChatCompletionClient.provider: ChatCompletionClient,
}

API_KEY_ENV = {
    GeminiClient.provider: 'GEMINI_API_KEY',
    ChatCompletionClient.provider: 'OPENAI_API_KEY',
}


def create_client(ai_settings: dict) -> ClassifierClient:
    """Build the client selected by the ``ai`` section of the configuration."""
    provider = (ai_settings.get('provider') or 'gemini').lower()
    if provider not in CLIENTS:
        raise OrganizerError(f"Unknown AI provider: {provider!r} (expected one of {', '.join(CLIENTS)})")
    api_key = ai_settings.get('api_key') or os.environ.get(API_KEY_ENV[provider], '')
    return CLIENTS[provider](
        api_key=api_key,
        model=ai_settings.get('model'),
        base_url=ai_settings.get('base_url'),
        temperature=ai_settings.get('temperature', 0.1),
        max_output_tokens=ai_settings.get('max_output_tokens', 4096),
        timeout=ai_settings.get('timeout', 60),
        max_attempts=ai_settings.get('max_attempts', 3),
        backoff_seconds=ai_settings.get('backoff_seconds', 0.8),
    )


def _error_message(body: str) -> str:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return (body or '').strip()[:300] or 'no details'
    error = data.get('error') if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get('message') or error.get('status') or error)
    if error:
        return str(error)
    return str(data)[:300]
