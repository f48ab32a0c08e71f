"""Tests for building the LLM chain from app config."""

from backend.llm import build_llm, narrator_options
from better_dm.llm import FallbackLLM, HttpLLM
from better_dm.local_narrator import LocalNarrator
from better_dm.storage import _CONFIG_DEFAULTS


def _config(**generation) -> dict:
    return {
        "llm_connections": [
            {"name": "kobold", "provider_url": "http://localhost:5001"},
            {"name": "broken", "provider_url": ""},
            {"name": "hf", "provider_url": "https://hf.example/models",
             "provider_format": "huggingface", "model": "mistral"},
        ],
        "generation": {**_CONFIG_DEFAULTS["generation"], **generation},
    }


def test_connections_in_order_with_local_fallback(monkeypatch):
    monkeypatch.delenv("LLM_PROVIDER_URL", raising=False)
    llm = build_llm(_config())
    assert isinstance(llm, FallbackLLM)
    backends = llm._backends
    assert [type(b) for b in backends] == [HttpLLM, HttpLLM, LocalNarrator]
    assert backends[1].name == "huggingface:mistral"


def test_local_fallback_can_be_disabled():
    llm = build_llm(_config(use_local_fallback=False))
    assert not any(isinstance(b, LocalNarrator) for b in llm._backends)


def test_env_connection_used_when_none_configured(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER_URL", "http://gpu-box:8080")
    monkeypatch.setenv("LLM_PROVIDER_FORMAT", "openai")
    llm = build_llm({"llm_connections": [], "generation": {"use_local_fallback": False}})
    assert llm._backends[0].name == "openai:http://gpu-box:8080"


def test_no_backends_still_has_local_narrator(monkeypatch):
    monkeypatch.delenv("LLM_PROVIDER_URL", raising=False)
    llm = build_llm({"llm_connections": [], "generation": {"use_local_fallback": False}})
    assert [type(b) for b in llm._backends] == [LocalNarrator]


def test_narrator_options():
    options = narrator_options(_config(temperature=0.5, max_tokens=300))
    assert options.temperature == 0.5
    assert options.max_tokens == 300
