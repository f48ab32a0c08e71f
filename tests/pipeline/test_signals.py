"""Tests for control-signal extraction and the response quality pass."""

from better_dm.models import Signals
from better_dm.pipeline.signals import (
    SHORT_RESPONSE_FALLBACK,
    ensure_quality,
    extract_signals,
    process_response,
)


# ── bracket tokens ──────────────────────────────────────────


def test_tokens_detected_and_removed():
    text, signals = extract_signals("The door opens. [SCENE_COMPLETE] Roll for it [ROLL_DICE]")
    assert signals.scene_complete
    assert signals.roll_dice
    assert not signals.chapter_advance
    assert "[" not in text


def test_tokens_case_insensitive():
    text, signals = extract_signals("Onward! [chapter_advance]")
    assert signals.chapter_advance
    assert text == "Onward!"


def test_no_tokens():
    text, signals = extract_signals("Nothing special happens.")
    assert text == "Nothing special happens."
    assert signals.model_dump() == {
        "scene_complete": False,
        "chapter_advance": False,
        "roadmap_update": False,
        "roll_dice": False,
        "emergency_mode": False,
    }


def test_unknown_bracket_text_kept():
    text, _ = extract_signals("You find [a rusty key].")
    assert text == "You find [a rusty key]."


def test_nested_tokens_removed_until_none_remain():
    text, signals = extract_signals(
        "The door opens. [SCENE_[CHAPTER_ADVANCE]COMPLETE] You step through."
    )
    assert "[SCENE_COMPLETE]" not in text
    assert "[CHAPTER_ADVANCE]" not in text
    assert signals.chapter_advance
    assert signals.scene_complete


def test_process_response_never_returns_spliced_token():
    text, _ = process_response("Run! [ROLL_[EMERGENCY_MODE]DICE] Now.")
    assert "[ROLL_DICE]" not in text
    assert text == "Run! Now."


# ── structured side channel ─────────────────────────────────


def test_side_channel_line_parsed_and_removed():
    raw = 'The bridge collapses behind you.\nSIGNALS: {"scene_complete": true, "roll_dice": false}'
    text, signals = extract_signals(raw, structured=True)
    assert text == "The bridge collapses behind you."
    assert signals.scene_complete
    assert not signals.roll_dice


def test_side_channel_accepts_other_spellings():
    _, signals = extract_signals('Go.\nSIGNALS: {"chapterAdvance": true, "ROLL_DICE": true}', structured=True)
    assert signals.chapter_advance
    assert signals.roll_dice


def test_side_channel_and_tokens_combined():
    _, signals = extract_signals('A roar! [ROLL_DICE]\nSIGNALS: {"scene_complete": true}', structured=True)
    assert signals.scene_complete
    assert signals.roll_dice


def test_malformed_side_channel_ignored():
    text, signals = extract_signals("The wind howls.\nSIGNALS: {scene_complete: yes", structured=True)
    assert text == "The wind howls."
    assert not signals.scene_complete


# ── quality pass ────────────────────────────────────────────


def test_whitespace_collapsed_and_period_added():
    assert ensure_quality("  You   enter\n\nthe hall  ") == "You enter the hall."


def test_existing_punctuation_kept():
    assert ensure_quality("Are you sure?") == "Are you sure?"


def test_short_text_replaced():
    assert ensure_quality("ok") == SHORT_RESPONSE_FALLBACK
    assert ensure_quality("") == SHORT_RESPONSE_FALLBACK


def test_process_response_text_is_only_a_token():
    text, signals = process_response("[SCENE_COMPLETE]")
    assert text == SHORT_RESPONSE_FALLBACK
    assert signals.scene_complete


def test_side_channel_ignored_in_token_mode():
    raw = "Signals: the beacon fires are lit along the ridge."
    text, signals = extract_signals(raw)
    assert text == raw
    assert signals == Signals()


def test_side_channel_needs_real_booleans():
    _, signals = extract_signals(
        'Go.\nSIGNALS: {"scene_complete": "false", "roll_dice": 1, "chapter_advance": true}',
        structured=True,
    )
    assert not signals.scene_complete
    assert not signals.roll_dice
    assert signals.chapter_advance
