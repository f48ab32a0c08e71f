"""Build the engine's LLM from app config.

Connections come from config["llm_connections"] (first entry first); when
none are configured, a single connection is read from the LLM_PROVIDER_URL /
LLM_API_KEY / LLM_PROVIDER_FORMAT / LLM_MODEL environment variables. The
offline LocalNarrator is appended as the last backend unless
generation.use_local_fallback is false.
"""

import logging
import os
from typing import Any

from better_dm.llm import LLM, FallbackLLM, GenerationOptions, HttpLLM
from better_dm.local_narrator import LocalNarrator

logger = logging.getLogger(__name__)


def _env_connection() -> dict[str, Any] | None:
    url = os.getenv("LLM_PROVIDER_URL", "")
    if not url:
        return None
    return {
        "name": "env",
        "provider_url": url,
        "api_key": os.getenv("LLM_API_KEY", ""),
        "provider_format": os.getenv("LLM_PROVIDER_FORMAT", "koboldcpp"),
        "model": os.getenv("LLM_MODEL", ""),
    }


def build_llm(config: dict[str, Any]) -> LLM:
    """Return a FallbackLLM over every configured backend."""
    gen = config.get("generation", {})
    timeout = float(gen.get("timeout", 30.0))

    connections = list(config.get("llm_connections") or [])
    if not connections:
        env = _env_connection()
        if env:
            connections.append(env)

    backends: list[LLM] = []
    for conn in connections:
        if not conn.get("provider_url"):
            logger.warning("Skipping LLM connection %r without provider_url", conn.get("name"))
            continue
        backends.append(HttpLLM(
            provider_url=conn["provider_url"],
            api_key=conn.get("api_key", ""),
            provider_format=conn.get("provider_format", "koboldcpp"),
            model=conn.get("model", ""),
            timeout=timeout,
        ))

    if gen.get("use_local_fallback", True) or not backends:
        backends.append(LocalNarrator())

    logger.info("LLM chain: %s", ", ".join(getattr(b, "name", type(b).__name__) for b in backends))
    return FallbackLLM(
        backends,
        timeout=timeout,
        max_retries=int(gen.get("max_retries", 1)),
        retry_delay=float(gen.get("retry_delay", 1.0)),
    )


def narrator_options(config: dict[str, Any]) -> GenerationOptions:
    gen = config.get("generation", {})
    return GenerationOptions(
        temperature=gen.get("temperature"),
        max_tokens=gen.get("max_tokens"),
    )
