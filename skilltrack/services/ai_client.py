"""Centralized AI client supporting OpenAI and Anthropic.

Usage:
    from skilltrack.services.ai_client import ai_chat

    result = await ai_chat(
        messages=[
            {"role": "system", "content": "You are an expert curriculum analyst."},
            {"role": "user", "content": "Which skills does this unit teach?"},
        ],
        use_case="extraction",   # "extraction" or None for default
        temperature=0.3,
        json_mode=True,
        max_attempts=1,
    )
    # result is the text content of the assistant response

Provider is auto-detected from the resolved model name:
  - Models starting with "claude-" route to Anthropic
  - Everything else uses the AI_PROVIDER setting (default: OpenAI)
"""

import logging
from enum import Enum

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from skilltrack.config import settings

logger = logging.getLogger(__name__)


class AIProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


# Known Anthropic model prefixes for auto-detection
_ANTHROPIC_PREFIXES = ("claude-",)


def _resolve_model(use_case: str | None) -> str:
    """Pick the model name based on the use case and config overrides."""
    if use_case == "extraction" and settings.cheap_model:
        return settings.cheap_model
    return settings.model_name


def _detect_provider(model: str) -> AIProvider:
    """Auto-detect the provider from the model name.

    Models starting with 'claude-' are routed to Anthropic.
    Everything else uses the global ai_provider setting (default: OpenAI).
    """
    model_lower = model.lower()
    for prefix in _ANTHROPIC_PREFIXES:
        if model_lower.startswith(prefix):
            return AIProvider.ANTHROPIC
    try:
        return AIProvider(settings.ai_provider.lower())
    except ValueError:
        return AIProvider.OPENAI


def _log_retry(retry_state):
    logger.warning(
        "AI call failed (attempt %d), retrying: %s",
        retry_state.attempt_number,
        retry_state.outcome.exception(),
    )


async def ai_chat(
    messages: list[dict],
    *,
    use_case: str | None = None,
    temperature: float = 0.7,
    json_mode: bool = False,
    max_tokens: int = 4096,
    max_attempts: int | None = None,
) -> str:
    """Send a chat completion and return the assistant text.

    Works with both OpenAI and Anthropic APIs transparently. ``max_attempts``
    defaults to the AI_MAX_ATTEMPTS setting; pass 1 for a single try.
    """
    model = _resolve_model(use_case)
    provider = _detect_provider(model)

    if provider == AIProvider.OPENAI:
        call = _openai_chat
    elif provider == AIProvider.ANTHROPIC:
        call = _anthropic_chat
    else:
        raise ValueError(f"Unknown AI provider: {provider}")

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max_attempts or settings.ai_max_attempts),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type(Exception),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await call(messages, model, temperature, json_mode, max_tokens)


async def _openai_chat(
    messages: list[dict],
    model: str,
    temperature: float,
    json_mode: bool,
    max_tokens: int,
) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=settings.api_key)
    kwargs: dict = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    response = await client.chat.completions.create(**kwargs)
    return response.choices[0].message.content


async def _anthropic_chat(
    messages: list[dict],
    model: str,
    temperature: float,
    json_mode: bool,
    max_tokens: int,
) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)

    # Anthropic uses a separate system parameter, not a system message
    system_text = ""
    chat_messages = []
    for msg in messages:
        if msg["role"] == "system":
            system_text += msg["content"] + "\n"
        else:
            chat_messages.append({"role": msg["role"], "content": msg["content"]})

    if json_mode:
        system_text += "\nYou MUST respond with valid JSON only. No other text.\n"

    kwargs: dict = {
        "model": model,
        "messages": chat_messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if system_text.strip():
        kwargs["system"] = system_text.strip()

    response = await client.messages.create(**kwargs)
    return response.content[0].text
