from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator
from urllib.parse import urljoin

import httpx

from focustutor.schemas import ChatSession
from focustutor.settings import settings
from focustutor.subjects import build_tutor_system_prompt

logger = logging.getLogger(__name__)

STUB_CONTENT = (
    "(Stub mode) Local LLM is not configured yet.\n\n"
    "To enable a local model, run an OpenAI-compatible server (e.g. LM Studio), "
    "then set OPENAI_BASE_URL (e.g. http://localhost:1234/v1) and OPENAI_MODEL in .env."
)


@dataclass(frozen=True)
class LlmResult:
    content: str
    model: str
    stub: bool


def _normalize_base_url(base_url: str) -> str:
    base_url = (base_url or "").strip()
    if not base_url:
        return ""
    # Allow users to provide either http://host:port or http://host:port/v1
    if base_url.endswith("/"):
        base_url = base_url[:-1]
    if not base_url.endswith("/v1"):
        base_url = base_url + "/v1"
    return base_url


def _headers() -> dict[str, str]:
    headers: dict[str, str] = {"Content-Type": "application/json"}
    if settings.openai_api_key:
        headers["Authorization"] = f"Bearer {settings.openai_api_key}"
    return headers


def build_messages(prompt: str, session: ChatSession) -> list[dict[str, str]]:
    """System prompt for the session, recent history as alternating turns, then the new message."""
    messages = [{"role": "system", "content": build_tutor_system_prompt(session)}]
    for i, content in enumerate(session.recent_messages):
        messages.append({"role": "user" if i % 2 == 0 else "assistant", "content": content})
    messages.append({"role": "user", "content": prompt})
    return messages


def completion_request(
    messages: list[dict[str, str]], max_tokens: int, temperature: float, stream: bool
) -> tuple[str, dict] | None:
    """URL and body for a chat/completions call, or None in stub mode."""
    base_url = _normalize_base_url(settings.openai_base_url)
    if not base_url:
        return None
    payload = {
        "model": settings.openai_model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "stream": stream,
    }
    return urljoin(base_url + "/", "chat/completions"), payload


def message_content(data: dict) -> str:
    choices = data.get("choices") or [{}]
    return (choices[0].get("message", {}).get("content") or "").strip()


def delta_content(line: str) -> str | None:
    """
    Content carried by one SSE line of a streamed completion.
    Returns "" for lines to skip and None once the stream signals [DONE].
    """
    if not line.startswith("data: "):
        return ""
    data = line[6:].strip()
    if data == "[DONE]":
        return None
    try:
        obj = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed stream line %r", data)
        return ""
    choices = obj.get("choices") or [{}]
    return choices[0].get("delta", {}).get("content") or ""


async def generate_response(
    prompt: str, session: ChatSession, max_tokens: int = 512, temperature: float = 0.4
) -> LlmResult:
    model = settings.openai_model
    request = completion_request(build_messages(prompt, session), max_tokens, temperature, stream=False)
    if request is None:
        return LlmResult(content=STUB_CONTENT, model=model, stub=True)

    url, payload = request
    async with httpx.AsyncClient(timeout=60.0) as client:
        resp = await client.post(url, json=payload, headers=_headers())
        resp.raise_for_status()
        content = message_content(resp.json())

    if not content:
        logger.warning("Model %s returned an empty completion", model)
        content = "(No content returned from model.)"
    return LlmResult(content=content, model=model, stub=False)


async def generate_response_stream(
    prompt: str, session: ChatSession, max_tokens: int = 512, temperature: float = 0.4
) -> AsyncIterator[str]:
    """Yield reply chunks as they arrive. In stub mode the whole stub message is one chunk."""
    request = completion_request(build_messages(prompt, session), max_tokens, temperature, stream=True)
    if request is None:
        yield STUB_CONTENT
        return

    url, payload = request
    async with httpx.AsyncClient(timeout=60.0) as client:
        async with client.stream("POST", url, json=payload, headers=_headers()) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                chunk = delta_content(line)
                if chunk is None:
                    break
                if chunk:
                    yield chunk
