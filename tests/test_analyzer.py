"""Tests for CampaignAnalyzer: keyword analysis, the deterministic roadmap,
reply parsing, and LLM failure handling."""

import json

import pytest

from better_dm.analyzer import (
    ROADMAP_OPTIONS,
    CampaignAnalyzer,
    analyze_character,
    analyze_prompt,
    classify_theme,
    fallback_roadmap,
    fallback_roadmap_data,
    parse_labeled_text,
    parse_roadmap_reply,
)
from better_dm.llm import LLMError
from tests.stubs import StubLLM

DRAGON_PROMPT = "A dragon terrorizes the Kingdom of Valdris from the dark forest"


# ── keyword analysis ────────────────────────────────────────


@pytest.mark.parametrize("prompt, theme", [
    ("A cursed land", "dark"),
    ("Investigate the missing heir", "mystery"),
    ("Intrigue at the royal court", "political"),
    ("Explore the unknown seas", "exploration"),
    ("Save the princess", "heroic"),
    # dark is checked before mystery
    ("A dark mystery", "dark"),
])
def test_classify_theme(prompt, theme):
    assert classify_theme(prompt) == theme


def test_analyze_prompt():
    pa = analyze_prompt(DRAGON_PROMPT)
    assert pa.title == "Kingdom Valdris"
    assert pa.theme == "dark"
    assert pa.goal == "Defeat the ancient dragon threatening the land"
    assert pa.has_villain and pa.has_dragon and pa.has_forest
    assert not pa.has_dungeon


def test_analyze_prompt_defaults():
    pa = analyze_prompt("something happens")
    assert pa.title == "Epic Adventure"
    assert pa.goal == "Save the realm from danger"


def test_analyze_character_from_text_and_dict():
    ca = analyze_character("A noble wizard seeking revenge")
    assert (ca.archetype, ca.background, ca.motivation) == ("mage", "noble", "revenge")
    ca = analyze_character({"class": "Rogue", "goal": "gold"})
    assert ca.archetype == "rogue"
    assert ca.motivation == "gold"
    assert ca.background is None


# ── deterministic roadmap ───────────────────────────────────


def test_fallback_roadmap_structure():
    roadmap = fallback_roadmap("Help the village", "")
    assert [c.title for c in roadmap.chapters] == [
        "The Call to Adventure",
        "The Journey Begins",
        "The Trials",
        "The Final Confrontation",
    ]
    assert roadmap.chapters[0].scenes[0].title == "A Peaceful Beginning"
    assert roadmap.chapters[-1].scenes[-1].type == "climax"
    assert len(roadmap.emergency_scenarios) == 1
    assert [t.title for t in roadmap.plot_threads] == ["The Main Quest"]


def test_fallback_roadmap_reacts_to_prompt_keywords():
    roadmap = fallback_roadmap(DRAGON_PROMPT + " and its dungeon", "")
    journey = [s.title for s in roadmap.chapters[1].scenes]
    trials = [s.title for s in roadmap.chapters[2].scenes]
    assert journey[0] == "Into the Wild"
    assert trials[0] == "Into the Depths"
    assert "The Ancient Dragon" in [n.name for n in roadmap.npcs]
    assert {l.name for l in roadmap.locations} == {
        "Peaceful Village", "The Dark Forest", "The Ancient Dungeon",
    }


def test_fallback_roadmap_villain_without_dragon():
    roadmap = fallback_roadmap("An evil necromancer rises", "")
    assert "The Dark Lord" in [n.name for n in roadmap.npcs]
    assert len(roadmap.plot_threads) == 2


@pytest.mark.parametrize("character, trial_type, mentor", [
    ("warrior", "combat", "Veteran Warrior"),
    ("wizard", "puzzle", "Wise Wizard"),
    ("bard", "social", "Experienced Adventurer"),
])
def test_fallback_roadmap_reacts_to_character(character, trial_type, mentor):
    roadmap = fallback_roadmap("Help the village", character)
    trial = next(s for s in roadmap.chapters[1].scenes if s.title == "First Trial")
    assert trial.type == trial_type
    assert next(n for n in roadmap.npcs if n.name == "The Mentor").role == mentor


def test_fallback_story_scenes_keep_overridden_difficulty():
    roadmap = fallback_roadmap("Help the village", "")
    finale = roadmap.chapters[3].scenes[0]
    assert finale.title == "The Final Approach"
    assert finale.type == "story"
    assert finale.difficulty == 7


# ── reply parsing ───────────────────────────────────────────


def test_json_reply_merged_with_fallback():
    reply = "Here you go:\n" + json.dumps({
        "title": "The Frozen Throne",
        "theme": "Horror",
        "overallGoal": "Break the winter curse",
        "chapters": [{"title": "Frost Gate", "scenes": [
            {"title": "Arrival", "type": "combat", "difficulty": 2},
        ]}],
        "npcs": [],
    })
    fallback = fallback_roadmap_data("Help the village", "")
    roadmap = parse_roadmap_reply(reply, fallback)
    assert roadmap.title == "The Frozen Throne"
    assert roadmap.theme == "horror"
    assert roadmap.overall_goal == "Break the winter curse"
    assert len(roadmap.chapters) == 1
    assert roadmap.chapters[0].scenes[0].difficulty == 3
    # empty or missing fields come from the keyword roadmap
    assert [n.name for n in roadmap.npcs] == ["Village Elder", "The Mentor"]
    assert roadmap.emergency_scenarios


LABELED_REPLY = """Title: The Frozen Throne
Theme: Dark
Goal: Break the winter curse
Chapter 1: The Frost Gate
Scene 1: Arrival
Scene 2: The Frozen Market
Chapter 2: The Ice Palace
NPC: Queen Isolde, the frozen monarch
Location: Frost Gate, the border town
"""


def test_parse_labeled_text():
    data = parse_labeled_text(LABELED_REPLY)
    assert data["title"] == "The Frozen Throne"
    assert data["overall_goal"] == "Break the winter curse"
    assert [c["title"] for c in data["chapters"]] == ["The Frost Gate", "The Ice Palace"]
    assert [s["title"] for s in data["chapters"][0]["scenes"]] == ["Arrival", "The Frozen Market"]
    assert data["npcs"] == [{"name": "Queen Isolde", "role": "the frozen monarch"}]
    assert data["locations"] == [{"name": "Frost Gate", "description": "the border town"}]


def test_labeled_reply_chapter_without_scenes_gets_placeholder():
    roadmap = parse_roadmap_reply(LABELED_REPLY, fallback_roadmap_data("", ""))
    assert roadmap.theme == "dark"
    assert roadmap.chapters[1].scenes[0].title == "The Ice Palace: Opening"


def test_unparsable_reply():
    assert parse_roadmap_reply("The dragon sleeps.", fallback_roadmap_data("", "")) is None


def test_invalid_json_roadmap_rejected():
    reply = json.dumps({"title": "X", "chapters": "three of them"})
    assert parse_roadmap_reply(reply, fallback_roadmap_data("", "")) is None


# ── CampaignAnalyzer ────────────────────────────────────────


async def test_generate_roadmap_uses_llm_reply():
    reply = json.dumps({"title": "Salt and Iron", "chapters": [{"title": "Docks"}]})
    llm = StubLLM({"roadmap": [reply]})
    roadmap = await CampaignAnalyzer(llm).generate_roadmap("Pirates", {"class": "rogue"})
    assert roadmap.title == "Salt and Iron"
    assert llm.options == [ROADMAP_OPTIONS]
    assert '"class": "rogue"' in llm.calls[0][1]


async def test_generate_roadmap_falls_back_on_llm_error():
    roadmap = await CampaignAnalyzer(StubLLM()).generate_roadmap(DRAGON_PROMPT)
    assert roadmap.title == "Kingdom Valdris"
    assert len(roadmap.chapters) == 4


async def test_generate_roadmap_falls_back_on_unexpected_error():
    llm = StubLLM({"roadmap": [ValueError("broken client")]})
    roadmap = await CampaignAnalyzer(llm).generate_roadmap("Help the village")
    assert roadmap.chapters[0].title == "The Call to Adventure"


async def test_generate_roadmap_falls_back_on_garbage():
    llm = StubLLM({"roadmap": ["I'm sorry, I can't help with that."]})
    roadmap = await CampaignAnalyzer(llm).generate_roadmap("Help the village")
    assert len(roadmap.chapters) == 4


async def test_llm_error_type_is_not_leaked():
    llm = StubLLM({"roadmap": [LLMError("down")]})
    roadmap = await CampaignAnalyzer(llm).generate_roadmap("")
    assert roadmap.title == "Epic Adventure"
