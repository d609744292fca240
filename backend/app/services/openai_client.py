"""Centralized OpenAI client.

All collaborators MUST use `call_openai_chat_async()` (JSON) or
`call_openai_text_async()` (free-form markdown) from this module.
This ensures:
  - Model, temperature, timeout, and token limits are read from env.
  - JSON response format is enforced via response_format when requested.
  - 1 retry on failure (timeout, API error or invalid JSON), then return None.
  - Consistent logging across all collaborators.
"""

from __future__ import annotations

import json
import os
import re
import time
from typing import Any, Dict, List, Optional

from openai import APIError, APITimeoutError, AsyncOpenAI

# ---------------------------------------------------------------------------
# Settings — all read from environment with safe defaults
# ---------------------------------------------------------------------------


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def get_openai_key() -> str:
    """Read OPENAI_API_KEY from the environment. Raises EnvironmentError if missing."""
    key = os.getenv("OPENAI_API_KEY", "").strip()
    if not key:
        print("⚠️  [OPENAI] API key missing (OPENAI_API_KEY)")
        raise EnvironmentError("OPENAI_API_KEY environment variable not set")
    return key


def get_openai_model() -> str:
    """Read OPENAI_MODEL from the environment (default: gpt-4o)."""
    return os.getenv("OPENAI_MODEL", "gpt-4o").strip()


def _get_temperature() -> float:
    return _env_float("OPENAI_TEMPERATURE", 0.1)


def _get_timeout() -> float:
    return _env_float("OPENAI_REQUEST_TIMEOUT", 40.0)


def _get_default_max_tokens() -> int:
    return _env_int("OPENAI_MAX_COMPLETION_TOKENS", 2000)


_client: Optional[AsyncOpenAI] = None


def get_async_client() -> AsyncOpenAI:
    """Shared AsyncOpenAI client (lazily initialized)."""
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=get_openai_key(), timeout=_get_timeout())
    return _client


# ---------------------------------------------------------------------------
# JSON sanitizer — extracts valid JSON from LLM output
# ---------------------------------------------------------------------------
def sanitize_json(raw: str) -> str:
    """Extract a JSON object from raw LLM output.

    Handles:
      - Markdown fences (```json ... ```)
      - Leading/trailing whitespace and BOM
      - Prose before/after JSON
      - Trailing commas before } or ]

    Raises ValueError if no JSON object is found.
    """
    text = raw.strip().lstrip("\ufeff")

    if text.startswith("```"):
        parts = text.split("```")
        text = parts[1] if len(parts) >= 3 else text[3:]

    text = text.strip()
    if text.lower().startswith("json"):
        text = text[4:].strip()

    brace_idx = text.find("{")
    if brace_idx == -1:
        raise ValueError("LLM did not return a JSON object — no '{' found")
    text = text[brace_idx:]

    rbrace_idx = text.rfind("}")
    if rbrace_idx == -1:
        raise ValueError("LLM did not return a JSON object — no '}' found")
    text = text[: rbrace_idx + 1]

    text = re.sub(r",\s*([}\]])", r"\1", text)

    return text


# ---------------------------------------------------------------------------
# Chat completions
# ---------------------------------------------------------------------------
async def call_openai_text_async(
    *,
    messages: List[Dict[str, str]],
    max_completion_tokens: int = 0,
    temperature: Optional[float] = None,
    json_mode: bool = False,
    client: Optional[AsyncOpenAI] = None,
    model: Optional[str] = None,
) -> Optional[str]:
    """Call chat completions and return the stripped message content, or None.

    Parameters
    ----------
    messages : list[dict]
        The messages array (system + user).
    max_completion_tokens : int
        Token limit for the response. 0 = use env default.
    temperature : float, optional
        Override temperature (default: from env).
    json_mode : bool
        Request ``response_format={"type": "json_object"}``.
    client / model : optional
        Overrides for tests and per-collaborator tuning.
    """
    if client is None:
        client = get_async_client()
    if model is None:
        model = get_openai_model()
    if max_completion_tokens <= 0:
        max_completion_tokens = _get_default_max_tokens()
    if temperature is None:
        temperature = _get_temperature()

    kwargs: Dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_completion_tokens,
        "temperature": temperature,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    max_retries = 1
    for attempt in range(max_retries + 1):
        t0 = time.time()
        try:
            print(f"🧠 [OPENAI] Calling {model} (attempt {attempt + 1}/{max_retries + 1})")
            response = await client.chat.completions.create(**kwargs)
            duration = time.time() - t0

            usage = getattr(response, "usage", None)
            if usage:
                print(f"🧠 [OPENAI] Tokens used: prompt={usage.prompt_tokens}, completion={usage.completion_tokens} ({duration:.1f}s)")

            content = (response.choices[0].message.content or "").strip()
            if content:
                return content

            print(f"⚠️  [OPENAI] Empty response (attempt {attempt + 1})")

        except APITimeoutError:
            print(f"❌ [OPENAI] Timeout ({time.time() - t0:.1f}s)")

        except APIError as exc:
            print(f"⚠️  [OPENAI] API error: {str(exc)[:400]}")

        except Exception as exc:
            print(f"❌ [OPENAI] Unexpected error: {exc}")
            return None

        if attempt < max_retries:
            print("🔄 [OPENAI] Retrying...")

    return None


async def call_openai_chat_async(
    *,
    messages: List[Dict[str, str]],
    max_completion_tokens: int = 0,
    temperature: Optional[float] = None,
    client: Optional[AsyncOpenAI] = None,
    model: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """JSON-mode chat completion. Returns the parsed object, or None on failure.

    An unparseable reply counts as a failed attempt and is retried once.
    """
    for attempt in range(2):
        raw_content = await call_openai_text_async(
            messages=messages,
            max_completion_tokens=max_completion_tokens,
            temperature=temperature,
            json_mode=True,
            client=client,
            model=model,
        )
        if raw_content is None:
            return None

        try:
            parsed = json.loads(sanitize_json(raw_content))
        except (ValueError, json.JSONDecodeError) as exc:
            print(f"❌ [OPENAI] JSON parse failed: {exc}")
            print(f"⚠️  [OPENAI] Raw (first 300 chars): {raw_content[:300]}")
            continue

        if not isinstance(parsed, dict):
            print("⚠️  [OPENAI] JSON response was not an object")
            continue

        print("🧠 [OPENAI] Success")
        return parsed

    return None
