"""LiteLLM wrapper with retry and structured logging."""

from __future__ import annotations

import json
import logging
from typing import Any

import litellm

from align_engine.config import ENGINE_CONFIG

logger = logging.getLogger(__name__)

# Suppress litellm's verbose logging
litellm.suppress_debug_info = True


async def llm_complete(
    prompt: str,
    system: str | None = None,
    model: str | None = None,
    temperature: float | None = None,
    max_retries: int | None = None,
    json_mode: bool = False,
) -> str:
    """Send a completion request via litellm and return the text response."""
    model = model or ENGINE_CONFIG["llm_model"]
    temperature = temperature if temperature is not None else ENGINE_CONFIG["llm_temperature"]
    max_retries = max_retries or ENGINE_CONFIG["llm_max_retries"]

    messages: list[dict[str, str]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    kwargs: dict[str, Any] = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    for attempt in range(max_retries):
        try:
            response = await litellm.acompletion(
                model=model,
                messages=messages,
                temperature=temperature,
                **kwargs,
            )
            return response.choices[0].message.content or ""
        except Exception:
            if attempt == max_retries - 1:
                raise
            logger.warning("LLM call failed (attempt %d/%d), retrying...", attempt + 1, max_retries)

    return ""  # unreachable but satisfies type checker


async def llm_complete_json(
    prompt: str,
    system: str | None = None,
    model: str | None = None,
    temperature: float | None = None,
) -> dict[str, Any]:
    """Send a completion request and parse the response as a JSON object.

    The prompt should instruct the LLM to respond with valid JSON only. A
    payload wrapped as ``{"reply": "<json>"}`` is unwrapped.
    """
    text = await llm_complete(
        prompt, system=system, model=model, temperature=temperature, json_mode=True,
    )
    data = _parse_json(text)

    if isinstance(data, dict) and set(data) == {"reply"} and isinstance(data["reply"], str):
        data = _parse_json(data["reply"])

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _parse_json(text: str) -> Any:
    # Strip markdown code fences if present
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    return json.loads(cleaned)
