"""Control-signal extraction and response clean-up.

The narrator requests state transitions with bracket tokens written inline
(`[SCENE_COMPLETE]`). In structured mode it may also end with one line:

    SIGNALS: {"scene_complete": true, "roll_dice": false}

Tokens are honoured in both modes; the side channel only in structured mode,
and the results are OR-ed together. Every reserved marker is removed before
the text reaches the player.
"""

from __future__ import annotations

import json
import logging
import re

from better_dm.models import Signals

logger = logging.getLogger(__name__)

SIGNAL_TOKENS: dict[str, str] = {
    "SCENE_COMPLETE": "scene_complete",
    "CHAPTER_ADVANCE": "chapter_advance",
    "ROADMAP_UPDATE": "roadmap_update",
    "ROLL_DICE": "roll_dice",
    "EMERGENCY_MODE": "emergency_mode",
}

_TOKEN_RE = re.compile(r"\[(" + "|".join(SIGNAL_TOKENS) + r")\]", re.IGNORECASE)
_SIDE_CHANNEL_RE = re.compile(r"^[ \t]*SIGNALS:[ \t]*(.*)$", re.IGNORECASE | re.MULTILINE)

SHORT_RESPONSE_FALLBACK = "I need a moment to think about that. Please try again."
MIN_RESPONSE_LENGTH = 10


def _parse_side_channel(payload: str) -> Signals:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed SIGNALS line: %r", payload)
        return Signals()
    if not isinstance(data, dict):
        return Signals()
    # accept snake_case, camelCase and the bracket-token spelling
    flags: dict[str, bool] = {}
    for key, value in data.items():
        if not isinstance(value, bool):
            logger.warning("Ignoring non-boolean signal %r=%r", key, value)
            continue
        name = SIGNAL_TOKENS.get(str(key).upper(), key)
        flags[name] = value
    return Signals.model_validate(flags)


def _strip_tokens(text: str) -> tuple[str, Signals]:
    # removing one token can splice its neighbours into another, so repeat
    signals = Signals()
    while True:
        found = {SIGNAL_TOKENS[m.upper()]: True for m in _TOKEN_RE.findall(text)}
        if not found:
            return text, signals
        signals = signals.merge(Signals(**found))
        text = _TOKEN_RE.sub("", text)


def extract_signals(text: str, structured: bool = False) -> tuple[str, Signals]:
    """Return (text without any markers, detected signals)."""
    signals = Signals()

    if structured:
        for match in _SIDE_CHANNEL_RE.finditer(text):
            signals = signals.merge(_parse_side_channel(match.group(1).strip()))
        text = _SIDE_CHANNEL_RE.sub("", text)

    text, token_signals = _strip_tokens(text)
    return text.strip(), signals.merge(token_signals)


def ensure_quality(text: str) -> str:
    """Normalize whitespace, replace near-empty output, end on punctuation."""
    text = re.sub(r"\s+", " ", text or "").strip()
    if len(text) < MIN_RESPONSE_LENGTH:
        return SHORT_RESPONSE_FALLBACK
    if text[-1] not in ".!?":
        text += "."
    return text


def process_response(text: str, structured: bool = False) -> tuple[str, Signals]:
    """Extract signals, then run the quality pass on what is left."""
    cleaned, signals = extract_signals(text, structured)
    return ensure_quality(cleaned), signals
