"""
Generative Clients

Thin async adapters over the text-generation providers. Each one takes the
assembled system/user text and returns the raw reply text, or raises a
ClientError. Retrying is the composer's job, so SDK-level retries are off.

Usage:
    client = OpenAIGenerativeClient(api_key=settings.OPENAI_API_KEY)
    raw = await client.generate(prompt.system_text, prompt.user_text)
"""

import asyncio
import logging
import time
from typing import Any, Optional, Protocol

import openai
from openai import AsyncOpenAI
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from services.workout_composition.errors import ClientError

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_TIMEOUT_S = 60.0
DEFAULT_MAX_TOKENS = 2000
DEFAULT_TEMPERATURE = 0.55


class GenerativeClient(Protocol):
    async def generate(self, system_text: str, user_text: str) -> str:
        ...


class OpenAIGenerativeClient:
    """Chat Completions in JSON mode."""

    provider = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: Optional[str] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        client: Optional[Any] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise ClientError.missing_credential("OPENAI_API_KEY is not set")
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout_s,
                max_retries=0,
            )
        return self._client

    async def generate(self, system_text: str, user_text: str) -> str:
        client = self._get_client()
        start = time.monotonic()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_text},
                    {"role": "user", "content": user_text},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except openai.APIStatusError as e:
            raise ClientError.http_error(e.status_code, e.message) from e
        except openai.APIResponseValidationError as e:
            raise ClientError.decoding_error(str(e)) from e
        except openai.APIConnectionError as e:
            raise ClientError.http_error(0, str(e) or type(e).__name__) from e

        latency_ms = int((time.monotonic() - start) * 1000)

        if not response.choices:
            raise ClientError.invalid_response("reply has no choices")
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise ClientError.invalid_response("reply content is empty")

        usage = getattr(response, "usage", None)
        logger.info(
            f"OpenAI generation ok: model={self.model} latency_ms={latency_ms} "
            f"prompt_tokens={getattr(usage, 'prompt_tokens', 0)} "
            f"completion_tokens={getattr(usage, 'completion_tokens', 0)}"
        )
        return content


class GeminiGenerativeClient:
    """Gemini via google-genai's async surface."""

    provider = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_GEMINI_MODEL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        client: Optional[Any] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise ClientError.missing_credential("GOOGLE_AI_API_KEY is not set")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate(self, system_text: str, user_text: str) -> str:
        client = self._get_client()
        contents = [
            genai_types.Content(
                role="user",
                parts=[genai_types.Part(text=user_text)],
            ),
        ]
        config = genai_types.GenerateContentConfig(
            system_instruction=system_text,
            max_output_tokens=self.max_tokens,
            temperature=self.temperature,
            response_mime_type="application/json",
        )

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=config,
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise ClientError.http_error(0, f"Gemini call timed out after {self.timeout_s}s") from e
        except genai_errors.APIError as e:
            raise ClientError.http_error(e.code or 0, e.message or str(e)) from e

        latency_ms = int((time.monotonic() - start) * 1000)

        text = ""
        if response.candidates:
            candidate = response.candidates[0]
            if candidate.content and candidate.content.parts:
                text = candidate.content.parts[0].text or ""
        if not text.strip():
            raise ClientError.invalid_response("Gemini reply has no text")

        input_tokens = getattr(response.usage_metadata, "prompt_token_count", 0) or 0
        output_tokens = getattr(response.usage_metadata, "candidates_token_count", 0) or 0
        logger.info(
            f"Gemini generation ok: model={self.model} latency_ms={latency_ms} "
            f"input_tokens={input_tokens} output_tokens={output_tokens}"
        )
        return text
