"""Helpers for pulling structured data out of free-form LLM output."""

from __future__ import annotations

import json
import logging

logger = logging.getLogger(__name__)

_decoder = json.JSONDecoder()


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    return cleaned


def parse_json_output(text: str) -> dict | None:
    """Parse the first JSON object in LLM output, stripping markdown fences.

    Models often wrap the object in prose ("Here is the roadmap: {...}"), so
    when the whole text is not JSON the first decodable `{...}` is used.
    Returns None when no object can be found.
    """
    cleaned = _strip_fences(text)
    try:
        data = json.loads(cleaned)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    start = cleaned.find("{")
    while start != -1:
        try:
            data, _ = _decoder.raw_decode(cleaned, start)
        except json.JSONDecodeError:
            start = cleaned.find("{", start + 1)
            continue
        if isinstance(data, dict):
            return data
        start = cleaned.find("{", start + 1)

    logger.warning("LLM output contains no JSON object (len=%d)", len(text))
    return None
