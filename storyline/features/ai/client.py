"""
Thin wrappers over the upstream AI providers.

- OpenAI (chat JSON and text, speech, transcription) through the official SDK
- Firecrawl scrape endpoint through httpx

These raise AIClientError on any failure; storyline.features.ai.service turns
that into an AIResult.
"""
from typing import Any, Dict, Optional
import json
import logging

import httpx
from openai import OpenAI, OpenAIError

from storyline.core.config import settings

logger = logging.getLogger(__name__)

# Firecrawl request shape used for job postings
FIRECRAWL_INCLUDE_TAGS = ["title", "meta", "h1", "h2", "h3", "p", "div", "span", "article", "section"]
FIRECRAWL_EXCLUDE_TAGS = ["script", "style", "nav", "footer", "header", "aside"]
FIRECRAWL_WAIT_MS = 1000


class AIClientError(Exception):
    """An upstream AI call failed or returned something unusable."""


class AIResponseFormatError(AIClientError):
    """The call succeeded but the content was not the JSON object asked for."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


def get_openai_client(api_key: Optional[str] = None) -> OpenAI:
    key = api_key or settings.OPENAI_API_KEY
    if not key:
        raise AIClientError("OPENAI_API_KEY is not configured")
    return OpenAI(api_key=key, timeout=settings.AI_TIMEOUT_SECONDS)


def _complete(
    system_prompt: Optional[str],
    user_prompt: str,
    *,
    temperature: float,
    max_tokens: Optional[int],
    json_mode: bool,
    client: Optional[OpenAI],
) -> str:
    client = client or get_openai_client()
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_prompt})

    request_kwargs: Dict[str, Any] = {
        "model": settings.OPENAI_CHAT_MODEL,
        "messages": messages,
        "temperature": temperature,
    }
    if json_mode:
        request_kwargs["response_format"] = {"type": "json_object"}
    if max_tokens:
        request_kwargs["max_tokens"] = max_tokens

    try:
        response = client.chat.completions.create(**request_kwargs)
    except OpenAIError as e:
        raise AIClientError(f"OpenAI API error: {e}") from e

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise AIClientError("OpenAI returned an empty response")
    return content


def chat_json(
    system_prompt: Optional[str],
    user_prompt: str,
    *,
    temperature: float = 0.2,
    max_tokens: Optional[int] = None,
    client: Optional[OpenAI] = None,
) -> Dict[str, Any]:
    """Run a JSON-mode chat completion and return the parsed object."""
    content = _complete(
        system_prompt, user_prompt,
        temperature=temperature, max_tokens=max_tokens, json_mode=True, client=client,
    )
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise AIResponseFormatError("Invalid JSON format in the OpenAI response", raw=content) from e
    if not isinstance(parsed, dict):
        raise AIResponseFormatError("OpenAI did not return a JSON object", raw=content)
    return parsed


def chat_text(
    system_prompt: Optional[str],
    user_prompt: str,
    *,
    temperature: float = 0.4,
    max_tokens: Optional[int] = None,
    client: Optional[OpenAI] = None,
) -> str:
    """Run a plain chat completion and return the stripped text."""
    return _complete(
        system_prompt, user_prompt,
        temperature=temperature, max_tokens=max_tokens, json_mode=False, client=client,
    ).strip()


def speech(text: str, voice: Optional[str] = None, *, client: Optional[OpenAI] = None) -> bytes:
    client = client or get_openai_client()
    try:
        response = client.audio.speech.create(
            model=settings.OPENAI_TTS_MODEL,
            voice=voice or settings.OPENAI_TTS_VOICE,
            input=text,
            response_format="mp3",
        )
    except OpenAIError as e:
        raise AIClientError(f"Failed to generate speech: {e}") from e
    return response.content


def transcription(audio: bytes, filename: str = "recording.webm", *, client: Optional[OpenAI] = None) -> str:
    client = client or get_openai_client()
    try:
        result = client.audio.transcriptions.create(
            model=settings.OPENAI_TRANSCRIBE_MODEL,
            file=(filename, audio),
        )
    except OpenAIError as e:
        raise AIClientError(f"Failed to transcribe audio: {e}") from e
    return result.text


def firecrawl_scrape(url: str, *, http_client: Optional[httpx.Client] = None) -> Dict[str, Any]:
    """
    Scrape a page as markdown.

    Returns:
        Firecrawl `data` object (markdown, html, metadata)
    """
    if not settings.FIRECRAWL_API_KEY:
        raise AIClientError("FIRECRAWL_API_KEY is not configured")

    headers = {
        "Authorization": f"Bearer {settings.FIRECRAWL_API_KEY}",
        "Content-Type": "application/json",
    }
    payload = {
        "url": url,
        "formats": ["markdown"],
        "includeTags": FIRECRAWL_INCLUDE_TAGS,
        "excludeTags": FIRECRAWL_EXCLUDE_TAGS,
        "waitFor": FIRECRAWL_WAIT_MS,
    }

    try:
        if http_client is not None:
            response = http_client.post(settings.FIRECRAWL_URL, headers=headers, json=payload)
        else:
            with httpx.Client(timeout=settings.AI_TIMEOUT_SECONDS) as client:
                response = client.post(settings.FIRECRAWL_URL, headers=headers, json=payload)
    except httpx.HTTPError as e:
        raise AIClientError(f"Firecrawl request failed: {e}") from e

    if response.status_code >= 300:
        raise AIClientError(f"Firecrawl API error: {response.status_code} - {response.text[:500]}")

    body = response.json()
    if not body.get("success") or not body.get("data"):
        raise AIClientError(body.get("error") or "Failed to scrape content")
    return body["data"]
