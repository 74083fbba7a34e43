"""OpenRouter completion client: schema-validated objects and streamed text."""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, TypeVar

from pydantic import BaseModel, ValidationError

from vooli.config import settings
from vooli.services import logger as log_service

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class StructuredOutputError(ValueError):
    """The completion did not contain an object matching the requested schema."""


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


def _usage_from(raw: Any) -> Usage:
    return Usage(
        input_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        output_tokens=getattr(raw, "completion_tokens", 0) or 0,
    )


def extract_json_object(raw_text: str) -> dict[str, Any]:
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


class CompletionClient:
    """Thin wrapper over the OpenAI-compatible chat completions API."""

    def __init__(self, openai_client: Any | None = None):
        self._client = openai_client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_client()
        return self._client

    @staticmethod
    def _temperature_for_model(model: str) -> int | None:
        # Reasoning models reject an explicit temperature.
        lowered = (model or "").lower()
        if lowered.rsplit("/", 1)[-1].startswith(("o1", "o3", "o4")):
            return None
        if "gpt-5" in lowered:
            return 1
        return 0

    @staticmethod
    def _messages(prompt: str, system: str | None) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages

    def _base_kwargs(self, model: str, prompt: str, system: str | None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._messages(prompt, system),
        }
        temperature = self._temperature_for_model(model)
        if temperature is not None:
            kwargs["temperature"] = temperature
        return kwargs

    async def generate_object(
        self,
        *,
        schema: type[SchemaT],
        prompt: str,
        system: str | None = None,
        model: str | None = None,
        caller: str = "generate_object",
    ) -> SchemaT:
        """Request a JSON object matching `schema` and validate it."""
        model_name = model or get_model()
        kwargs = self._base_kwargs(model_name, prompt, system)
        kwargs["response_format"] = {
            "type": "json_schema",
            "json_schema": {
                "name": schema.__name__,
                "schema": schema.model_json_schema(),
            },
        }

        t0 = time.monotonic()
        try:
            response = await self.client.chat.completions.create(**kwargs)
        except Exception as exc:
            log_service.log_llm_call(
                model=model_name,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(exc),
            )
            raise
        usage = _usage_from(getattr(response, "usage", None))
        log_service.log_llm_call(
            model=model_name,
            caller=caller,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )

        choices = getattr(response, "choices", None) or []
        text = getattr(choices[0].message, "content", None) if choices else None
        if not text:
            raise StructuredOutputError(f"{caller}: empty completion")
        try:
            return schema.model_validate(extract_json_object(text))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StructuredOutputError(f"{caller}: {exc}") from exc

    async def stream_text(
        self,
        *,
        prompt: str,
        system: str | None = None,
        model: str | None = None,
        caller: str = "stream_text",
    ) -> AsyncIterator[str]:
        """Yield text deltas in generation order."""
        model_name = model or get_model()
        kwargs = self._base_kwargs(model_name, prompt, system)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        t0 = time.monotonic()
        usage = Usage()
        stream = await self.client.chat.completions.create(**kwargs)
        try:
            async for chunk in stream:
                if getattr(chunk, "usage", None):
                    usage = _usage_from(chunk.usage)
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                delta = getattr(choices[0], "delta", None)
                text = getattr(delta, "content", None) if delta else None
                if text:
                    yield text
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()
        log_service.log_llm_call(
            model=model_name,
            caller=caller,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )


def get_client() -> Any:
    """Get an OpenRouter client via the OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
        timeout=settings.llm_timeout_seconds,
    )


def get_model() -> str:
    return settings.default_model


def get_reasoning_model() -> str:
    return settings.reasoning_model or settings.default_model


_completion_client: CompletionClient | None = None


def client() -> CompletionClient:
    """Get or create the shared completion client."""
    global _completion_client
    if _completion_client is None:
        _completion_client = CompletionClient()
    return _completion_client
