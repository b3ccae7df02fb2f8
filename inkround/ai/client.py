"""Streaming client for the external generative service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from openai import AsyncOpenAI

from inkround.config import Settings

logger = logging.getLogger(__name__)


class GenerationError(RuntimeError):
  """Raised when the generative service fails or returns nothing usable."""


@dataclass(frozen=True)
class GenerationRequest:
  """One prompt for the generative service."""

  message: str
  system_prompt: str | None = None
  session_context: str | None = None
  model_hint: str | None = None


class GenerativeClient(Protocol):
  """Returns the fully concatenated text of a streamed completion."""

  async def complete(self, request: GenerationRequest) -> str:
    """Send the request and return the concatenated response text."""


class OpenAICompatibleClient:
  """Stream chat completions from an OpenAI-compatible endpoint and join the chunks."""

  def __init__(self, *, api_key: str, base_url: str | None, default_model: str, client: AsyncOpenAI | None = None) -> None:
    self._default_model = default_model
    self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

  async def complete(self, request: GenerationRequest) -> str:
    messages: list[dict[str, str]] = []
    if request.system_prompt:
      messages.append({"role": "system", "content": request.system_prompt})
    messages.append({"role": "user", "content": request.message})

    extra_body: dict[str, Any] | None = None
    if request.session_context:
      extra_body = {"session_id": request.session_context}

    model = request.model_hint or self._default_model
    try:
      stream = await self._client.chat.completions.create(model=model, messages=messages, stream=True, extra_body=extra_body)  # type: ignore[arg-type]
      chunks: list[str] = []
      async for chunk in stream:
        if not chunk.choices:
          continue
        delta = chunk.choices[0].delta.content
        if delta:
          chunks.append(delta)
    except Exception as exc:  # noqa: BLE001
      raise GenerationError(f"Generative call failed for model {model}: {exc}") from exc

    content = "".join(chunks)
    if not content.strip():
      raise GenerationError(f"Generative service returned an empty completion for model {model}")
    logger.debug("Generative response model=%s chars=%d", model, len(content))
    return content


def build_generative_client(settings: Settings) -> GenerativeClient:
  """Build the configured generative client."""
  if not settings.llm_api_key:
    raise ValueError("INKROUND_LLM_API_KEY must be set to reach the generative service.")
  return OpenAICompatibleClient(api_key=settings.llm_api_key, base_url=settings.llm_base_url, default_model=settings.llm_model)
