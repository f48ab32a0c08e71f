"""LLM client — HTTP connection to a text-generation backend.

The engine injects an LLM callable matching the protocol:

    async def __call__(self, stage: str, prompt: str,
                       options: GenerationOptions | None = None) -> str: ...

`stage` identifies which part of the engine is calling (e.g. "roadmap",
"narrator", "adaptation"). The implementation may use it for logging or
routing; the simplest implementation ignores it.

Implementations:

    HttpLLM      — real HTTP client, supports KoboldCpp, OpenAI-compatible and
                   HuggingFace inference backends. Selected by provider_format.
    FallbackLLM  — walks a prioritized list of LLMs, bounding every attempt
                   with a timeout. Raises LLMError only when all of them fail.
    EchoLLM      — returns the prompt back unchanged. Useful for smoke-testing
                   the wiring without a running model.

The offline LocalNarrator lives in better_dm.local_narrator and is usually the
last entry of a FallbackLLM chain.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Literal, Protocol

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class GenerationOptions(BaseModel):
    """Per-call sampling options. None means "use the backend default"."""

    temperature: float | None = None
    max_tokens: int | None = None
    system_context: str = ""


# ---------------------------------------------------------------------------
# Protocol — every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(
        self, stage: str, prompt: str, options: GenerationOptions | None = None
    ) -> str: ...


def compose_prompt(prompt: str, options: GenerationOptions | None) -> str:
    """Prepend the system context for backends without a separate system slot."""
    if options and options.system_context:
        return f"{options.system_context.strip()}\n\n{prompt}"
    return prompt


# ---------------------------------------------------------------------------
# HttpLLM — connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai", "huggingface"]


class HttpLLM:
    """Async HTTP client for text-generation backends.

    Supported formats:
      "koboldcpp"    — POST /api/v1/generate  {"prompt": ..., "max_length": ...}
                       Response: {"results": [{"text": "..."}]}
      "openai"       — POST /v1/completions   {"model": ..., "prompt": ...}
                       Response: {"choices": [{"text": "..."}]}
      "huggingface"  — POST /{model}          {"inputs": ..., "parameters": {...}}
                       Response: [{"generated_text": "..."}] or {"generated_text": "..."}

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:5001".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "koboldcpp".
        model:           Model identifier; sent in the body for openai, part of
                         the URL for huggingface.
        timeout:         HTTP timeout in seconds. Defaults to 30.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 30.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    @property
    def name(self) -> str:
        if self._model:
            return f"{self._format}:{self._model}"
        return f"{self._format}:{self._base_url}"

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(
        self, prompt: str, options: GenerationOptions | None
    ) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        opts = options or GenerationOptions()
        text = compose_prompt(prompt, opts)

        if self._format == "openai":
            url = f"{self._base_url}/v1/completions"
            body: dict = {"prompt": text}
            if self._model:
                body["model"] = self._model
            if opts.temperature is not None:
                body["temperature"] = opts.temperature
            if opts.max_tokens is not None:
                body["max_tokens"] = opts.max_tokens
            return url, body

        if self._format == "huggingface":
            url = f"{self._base_url}/{self._model}" if self._model else self._base_url
            params: dict = {"return_full_text": False, "do_sample": True}
            if opts.temperature is not None:
                params["temperature"] = opts.temperature
            if opts.max_tokens is not None:
                params["max_new_tokens"] = opts.max_tokens
            return url, {"inputs": text, "parameters": params}

        # koboldcpp (default)
        url = f"{self._base_url}/api/v1/generate"
        body = {"prompt": text}
        if opts.temperature is not None:
            body["temperature"] = opts.temperature
        if opts.max_tokens is not None:
            body["max_length"] = opts.max_tokens
        return url, body

    def _parse_response(self, data) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            choices = data.get("choices") if isinstance(data, dict) else None
            if not choices or "text" not in choices[0]:
                raise LLMError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["text"]

        if self._format == "huggingface":
            if isinstance(data, list) and data and "generated_text" in data[0]:
                return data[0]["generated_text"].strip()
            if isinstance(data, dict) and "generated_text" in data:
                return data["generated_text"].strip()
            raise LLMError("Unexpected response format from HuggingFace backend")

        # koboldcpp
        results = data.get("results") if isinstance(data, dict) else None
        if not results or "text" not in results[0]:
            raise LLMError("Unexpected response format from KoboldCpp backend")
        return results[0]["text"]

    async def __call__(
        self, stage: str, prompt: str, options: GenerationOptions | None = None
    ) -> str:
        url, body = self._build_request(prompt, options)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM backend request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a body that is not JSON") from e
        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# FallbackLLM — prioritized backends with bounded attempts
# ---------------------------------------------------------------------------

class FallbackLLM:
    """Try each backend in order until one returns usable text.

    Every attempt is bounded by `timeout` seconds. A round walks the whole
    list once; up to `max_retries` rounds are made with `retry_delay`
    seconds between them. Responses shorter than `min_length` characters
    (after stripping) count as failures, like an empty completion.

    The index of the last backend that succeeded is remembered and tried
    first on the next call.
    """

    def __init__(
        self,
        backends: Sequence[LLM],
        timeout: float = 30.0,
        max_retries: int = 1,
        retry_delay: float = 1.0,
        min_length: int = 1,
    ) -> None:
        if not backends:
            raise ValueError("FallbackLLM needs at least one backend")
        self._backends = list(backends)
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay
        self._min_length = min_length
        self._preferred = 0

    def _order(self) -> list[int]:
        n = len(self._backends)
        return [(self._preferred + i) % n for i in range(n)]

    async def __call__(
        self, stage: str, prompt: str, options: GenerationOptions | None = None
    ) -> str:
        errors: list[str] = []
        for attempt in range(self._max_retries):
            if attempt:
                await asyncio.sleep(self._retry_delay)
            for index in self._order():
                backend = self._backends[index]
                label = getattr(backend, "name", type(backend).__name__)
                try:
                    text = await asyncio.wait_for(
                        backend(stage, prompt, options), timeout=self._timeout
                    )
                except asyncio.TimeoutError:
                    logger.warning("llm backend %s timed out (stage=%s)", label, stage)
                    errors.append(f"{label}: timed out after {self._timeout}s")
                    continue
                except LLMError as e:
                    logger.warning("llm backend %s failed (stage=%s): %s", label, stage, e)
                    errors.append(f"{label}: {e}")
                    continue

                if len(text.strip()) < self._min_length:
                    logger.warning("llm backend %s returned a too-short response", label)
                    errors.append(f"{label}: response too short")
                    continue

                self._preferred = index
                return text

        raise LLMError("All LLM backends failed: " + "; ".join(errors))


# ---------------------------------------------------------------------------
# EchoLLM — returns the prompt unchanged; useful for wiring smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the prompt text as-is. No network calls.

    Lets you verify that prompt assembly and state updates work end-to-end
    without a running model. The output won't be valid JSON for structured
    stages, which exercises the fallback parsers.
    """

    name = "echo"

    async def __call__(
        self, stage: str, prompt: str, options: GenerationOptions | None = None
    ) -> str:
        logger.debug("EchoLLM stage=%s prompt_len=%d", stage, len(prompt))
        return prompt


# ---------------------------------------------------------------------------
# LLMError — raised by every client for connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
