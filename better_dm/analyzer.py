"""Campaign analyzer — turns a campaign prompt into a Roadmap.

generate_roadmap() asks the LLM for a JSON roadmap first. When the call fails
or the reply can't be used, a deterministic roadmap is built from keyword
analysis of the prompt and the character description. It never raises.

Reply parsing, in order:
  1. the first JSON object in the text, gaps filled from the keyword roadmap;
  2. labeled lines ("Title: ...", "Chapter 2: ...", "NPC: ..."), same gap fill;
  3. otherwise the reply is unparsable and the keyword roadmap is used as-is.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from better_dm.llm import LLM, GenerationOptions, LLMError
from better_dm.models import Roadmap
from better_dm.parsing import parse_json_output
from better_dm.prompts import build_roadmap_prompt

logger = logging.getLogger(__name__)

ROADMAP_OPTIONS = GenerationOptions(
    temperature=0.7,
    max_tokens=2000,
    system_context="You are a master dungeon master creating an epic campaign roadmap.",
)

# Checked in this order; the first theme with a matching keyword wins.
THEME_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("dark", ("dark", "shadow", "curse")),
    ("mystery", ("mystery", "investigate", "clue")),
    ("political", ("political", "intrigue", "court")),
    ("exploration", ("explore", "discover", "unknown")),
]

GOAL_TRIGGERS: list[tuple[tuple[str, ...], str]] = [
    (("dragon",), "Defeat the ancient dragon threatening the land"),
    (("evil", "villain"), "Stop the evil forces and restore peace"),
    (("treasure", "artifact"), "Find the legendary treasure and its secrets"),
    (("kingdom", "realm"), "Protect the kingdom from impending doom"),
]
DEFAULT_GOAL = "Save the realm from danger"
DEFAULT_TITLE = "Epic Adventure"

VILLAIN_KEYWORDS = ("villain", "evil", "dragon", "tyrant", "necromancer")
FOREST_KEYWORDS = ("forest", "woods")
DUNGEON_KEYWORDS = ("dungeon", "tomb")

ARCHETYPE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "warrior": ("fighter", "warrior", "paladin"),
    "mage": ("wizard", "mage", "sorcerer"),
    "rogue": ("rogue", "thief", "assassin"),
    "ranger": ("ranger", "hunter"),
    "cleric": ("cleric", "priest"),
}
BACKGROUND_KEYWORDS: dict[str, tuple[str, ...]] = {
    "noble": ("noble", "aristocrat"),
    "heroic": ("hero", "champion"),
    "criminal": ("criminal", "outlaw"),
}
MOTIVATION_KEYWORDS: dict[str, tuple[str, ...]] = {
    "justice": ("justice", "protect"),
    "gold": ("gold", "treasure"),
    "revenge": ("revenge", "vengeance"),
}

MENTOR_ROLES = {
    "mage": "Wise Wizard",
    "warrior": "Veteran Warrior",
    "rogue": "Retired Spymaster",
    "ranger": "Old Pathfinder",
    "cleric": "High Priest",
}

_TITLE_WORD_RE = re.compile(r"\b[A-Z][a-z]+\b")


def _has_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(k in text for k in keywords)


# ---------------------------------------------------------------------------
# Keyword analysis
# ---------------------------------------------------------------------------

@dataclass
class PromptAnalysis:
    title: str
    theme: str
    goal: str
    has_villain: bool
    has_dragon: bool
    has_forest: bool
    has_dungeon: bool


@dataclass
class CharacterAnalysis:
    archetype: str | None
    background: str | None
    motivation: str | None


def classify_theme(prompt: str) -> str:
    lowered = prompt.lower()
    for theme, keywords in THEME_KEYWORDS:
        if _has_any(lowered, keywords):
            return theme
    return "heroic"


def analyze_prompt(prompt: str) -> PromptAnalysis:
    lowered = prompt.lower()
    goal = DEFAULT_GOAL
    for triggers, text in GOAL_TRIGGERS:
        if _has_any(lowered, triggers):
            goal = text
            break
    return PromptAnalysis(
        title=" ".join(_TITLE_WORD_RE.findall(prompt)[:3]) or DEFAULT_TITLE,
        theme=classify_theme(prompt),
        goal=goal,
        has_villain=_has_any(lowered, VILLAIN_KEYWORDS),
        has_dragon="dragon" in lowered,
        has_forest=_has_any(lowered, FOREST_KEYWORDS),
        has_dungeon=_has_any(lowered, DUNGEON_KEYWORDS),
    )


def _first_match(text: str, table: dict[str, tuple[str, ...]]) -> str | None:
    for name, keywords in table.items():
        if _has_any(text, keywords):
            return name
    return None


def analyze_character(character_info: Any) -> CharacterAnalysis:
    if isinstance(character_info, str):
        text = character_info.lower()
    else:
        text = json.dumps(character_info, default=str).lower()
    return CharacterAnalysis(
        archetype=_first_match(text, ARCHETYPE_KEYWORDS),
        background=_first_match(text, BACKGROUND_KEYWORDS),
        motivation=_first_match(text, MOTIVATION_KEYWORDS),
    )


# ---------------------------------------------------------------------------
# Deterministic roadmap
# ---------------------------------------------------------------------------

def _journey_scenes(pa: PromptAnalysis, ca: CharacterAnalysis) -> list[dict]:
    scenes = []
    if pa.has_forest:
        scenes.append({
            "title": "Into the Wild",
            "description": "The hero ventures into dangerous wilderness",
            "type": "exploration",
            "difficulty": 3,
            "objectives": ["Navigate the wilderness", "Avoid or overcome natural dangers"],
            "choices": ["Take the safe path", "Risk the dangerous shortcut", "Make camp and rest"],
        })
    trial_type = {"warrior": "combat", "mage": "puzzle"}.get(ca.archetype or "", "social")
    description = "The hero faces their first real test of skill and courage"
    if ca.motivation == "revenge":
        description += ", and an old grudge sharpens every choice"
    elif ca.motivation == "gold":
        description += ", with a rich reward promised to whoever succeeds"
    scenes.append({
        "title": "First Trial",
        "description": description,
        "type": trial_type,
        "difficulty": 4,
        "objectives": ["Prove your worth", "Overcome the challenge"],
        "choices": ["Face the challenge head-on", "Find an alternative solution", "Seek help from allies"],
    })
    return scenes


def _trial_scenes(pa: PromptAnalysis) -> list[dict]:
    scenes = []
    if pa.has_dungeon:
        scenes.append({
            "title": "Into the Depths",
            "description": "Forgotten halls below the earth hide what the hero needs",
            "type": "exploration",
            "difficulty": 5,
            "objectives": ["Find a way through the ruins", "Recover what was hidden there"],
            "choices": ["Descend carefully", "Search for another entrance", "Set a trap for the guardians"],
        })
    scenes += [
        {
            "title": "The Greater Challenge",
            "description": "A more serious threat emerges that tests the hero's growth",
            "type": "combat",
            "difficulty": 6,
            "objectives": ["Defeat a powerful enemy", "Protect innocent people"],
            "choices": ["Fight with honor", "Use cunning tactics", "Attempt to negotiate"],
        },
        {
            "title": "Revelation",
            "description": "Important truths about the quest are revealed",
            "type": "story",
            "difficulty": 5,
            "difficulty_override": True,
            "objectives": ["Uncover the truth", "Decide how to proceed"],
            "choices": ["Continue as planned", "Change strategy", "Seek more allies"],
        },
    ]
    return scenes


def _climax_scenes() -> list[dict]:
    return [
        {
            "title": "The Final Approach",
            "description": "The hero prepares for the ultimate confrontation",
            "type": "story",
            "difficulty": 7,
            "difficulty_override": True,
            "objectives": ["Prepare for final battle", "Rally allies"],
            "choices": ["Attack immediately", "Gather more strength", "Attempt diplomacy"],
        },
        {
            "title": "Ultimate Confrontation",
            "description": "The final battle that determines the fate of all",
            "type": "climax",
            "difficulty": 9,
            "objectives": ["Defeat the main threat", "Save the realm"],
            "choices": ["Fight with everything you have", "Use strategy over force", "Make the ultimate sacrifice"],
        },
    ]


def _chapters(pa: PromptAnalysis, ca: CharacterAnalysis) -> list[dict]:
    return [
        {
            "title": "The Call to Adventure",
            "description": "The hero receives a call to adventure and begins their journey",
            "objectives": ["Meet the quest giver", "Learn about the threat", "Accept the mission"],
            "scenes": [
                {
                    "title": "A Peaceful Beginning",
                    "description": "The adventure starts in a peaceful setting before danger emerges",
                    "type": "story",
                    "difficulty": 1,
                    "objectives": ["Establish the peaceful world", "Introduce the character"],
                    "possible_outcomes": ["Character learns of the threat", "Meets important ally"],
                    "npcs_present": ["Village Elder", "Concerned Citizen"],
                    "choices": ["Accept the quest", "Ask for more information", "Suggest alternative approach"],
                },
                {
                    "title": "The Threat Revealed",
                    "description": "The true nature of the danger becomes clear",
                    "type": "social",
                    "difficulty": 2,
                    "objectives": ["Understand the threat", "Gather initial information"],
                    "possible_outcomes": ["Learns enemy's plan", "Gains important ally", "Discovers time pressure"],
                    "choices": ["Investigate immediately", "Gather more allies", "Seek more information"],
                },
            ],
        },
        {
            "title": "The Journey Begins",
            "description": "The hero sets out on their quest and faces the first challenges",
            "objectives": ["Overcome first obstacle", "Gain valuable ally or item", "Learn more about the enemy"],
            "scenes": _journey_scenes(pa, ca),
        },
        {
            "title": "The Trials",
            "description": "The hero faces increasingly difficult challenges",
            "objectives": ["Overcome major obstacle", "Confront secondary antagonist", "Gain crucial knowledge"],
            "scenes": _trial_scenes(pa),
        },
        {
            "title": "The Final Confrontation",
            "description": "The hero faces the ultimate challenge and resolves the main conflict",
            "objectives": ["Confront the main antagonist", "Resolve the central conflict", "Save the day"],
            "scenes": _climax_scenes(),
        },
    ]


def _npcs(pa: PromptAnalysis, ca: CharacterAnalysis) -> list[dict]:
    elder_relationship = {
        "noble": "Old friend of the hero's family",
        "criminal": "Wary of the hero's past",
    }.get(ca.background or "", "Trusted authority figure")
    npcs = [
        {
            "name": "Village Elder",
            "role": "Quest Giver",
            "motivation": "Protect the village and its people",
            "relationship": elder_relationship,
        },
        {
            "name": "The Mentor",
            "role": MENTOR_ROLES.get(ca.archetype or "", "Experienced Adventurer"),
            "motivation": "Guide the hero to success",
            "relationship": "Teacher and ally",
        },
    ]
    if pa.has_villain:
        npcs.append({
            "name": "The Ancient Dragon" if pa.has_dragon else "The Dark Lord",
            "role": "Primary Antagonist",
            "motivation": "Achieve ultimate power",
            "relationship": "Sworn enemy",
        })
    return npcs


def _locations(pa: PromptAnalysis) -> list[dict]:
    locations = [{
        "name": "Peaceful Village",
        "description": "Where the adventure begins",
        "significance": "Safe haven and starting point",
    }]
    if pa.has_forest:
        locations.append({
            "name": "The Dark Forest",
            "description": "A dangerous woodland filled with mystery",
            "significance": "Testing ground and path to adventure",
        })
    if pa.has_dungeon:
        locations.append({
            "name": "The Ancient Dungeon",
            "description": "Ruins holding ancient secrets",
            "significance": "Contains crucial information or items",
        })
    return locations


def _plot_threads(pa: PromptAnalysis) -> list[dict]:
    threads = [{"title": "The Main Quest", "description": pa.goal, "status": "active"}]
    if pa.has_villain:
        threads.append({
            "title": "The Villain's Plan",
            "description": "Uncover and stop the antagonist's scheme",
            "status": "developing",
        })
    return threads


def fallback_roadmap_data(campaign_prompt: str, character_info: Any) -> dict[str, Any]:
    """Build the keyword-analysis roadmap as plain data (snake_case keys)."""
    pa = analyze_prompt(campaign_prompt or "")
    ca = analyze_character(character_info or "")
    return {
        "title": pa.title,
        "theme": pa.theme,
        "overall_goal": pa.goal,
        "estimated_sessions": 6,
        "difficulty_progression": "gradual",
        "chapters": _chapters(pa, ca),
        "npcs": _npcs(pa, ca),
        "locations": _locations(pa),
        "plot_threads": _plot_threads(pa),
        "emergency_scenarios": [{
            "trigger": "Player goes completely off-track",
            "scenario": "A sudden event forces the story back toward the main plot",
            "description": "Use unexpected events to redirect the narrative",
        }],
    }


def fallback_roadmap(campaign_prompt: str, character_info: Any) -> Roadmap:
    return Roadmap.model_validate(fallback_roadmap_data(campaign_prompt, character_info))


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

_FIELD_ALIASES: dict[str, str] = {
    "overallGoal": "overall_goal",
    "goal": "overall_goal",
    "estimatedSessions": "estimated_sessions",
    "difficultyProgression": "difficulty_progression",
    "plotThreads": "plot_threads",
    "emergencyScenarios": "emergency_scenarios",
}


def _merge_with_fallback(data: dict[str, Any], fallback: dict[str, Any]) -> dict[str, Any]:
    """Fill every missing or empty top-level field from the fallback data."""
    merged = dict(fallback)
    for key, value in data.items():
        key = _FIELD_ALIASES.get(key, key)
        if key not in fallback:
            continue
        if value is None or value == "" or value == []:
            continue
        merged[key] = value
    return merged


def _validate(data: dict[str, Any], fallback: dict[str, Any]) -> Roadmap | None:
    try:
        return Roadmap.model_validate(_merge_with_fallback(data, fallback))
    except ValidationError as e:
        logger.warning("Roadmap reply failed validation: %s", e.error_count())
        return None


_LABEL_RE = re.compile(r"^\s*[-*#\s]*\**(title|theme|goal|overall goal)\**\s*[:\-]\s*\"?([^\"\n]+)\"?", re.IGNORECASE | re.MULTILINE)
_CHAPTER_RE = re.compile(r"^\s*[-*#\s]*\**chapter\s*\d*\**\s*[:.\-]\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_SCENE_RE = re.compile(r"^\s*[-*#\s]*\**scene\s*\d*\**\s*[:.\-]\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_NPC_RE = re.compile(r"^\s*[-*#\s]*\**npc\**\s*[:\-]\s*([^,\-:(\n]+)(?:[,\-:(]\s*(.+))?$", re.IGNORECASE | re.MULTILINE)
_LOCATION_RE = re.compile(r"^\s*[-*#\s]*\**location\**\s*[:\-]\s*([^,\-:(\n]+)(?:[,\-:(]\s*(.+))?$", re.IGNORECASE | re.MULTILINE)


def parse_labeled_text(text: str) -> dict[str, Any] | None:
    """Heuristic extraction from a prose reply. None when nothing is found."""
    data: dict[str, Any] = {}
    for m in _LABEL_RE.finditer(text):
        label = m.group(1).lower()
        value = m.group(2).strip().strip("*").strip()
        key = "overall_goal" if "goal" in label else label
        data.setdefault(key, value)

    # scenes are attached to the most recent chapter heading
    chapters: list[dict[str, Any]] = []
    for line in text.splitlines():
        if m := _CHAPTER_RE.match(line):
            chapters.append({"title": m.group(1).strip().strip("*").strip(), "scenes": []})
        elif (m := _SCENE_RE.match(line)) and chapters:
            chapters[-1]["scenes"].append({"title": m.group(1).strip().strip("*").strip()})
    if chapters:
        data["chapters"] = chapters

    npcs = [
        {"name": m.group(1).strip(), "role": (m.group(2) or "").strip().rstrip(")")}
        for m in _NPC_RE.finditer(text)
    ]
    if npcs:
        data["npcs"] = npcs
    locations = [
        {"name": m.group(1).strip(), "description": (m.group(2) or "").strip().rstrip(")")}
        for m in _LOCATION_RE.finditer(text)
    ]
    if locations:
        data["locations"] = locations

    return data or None


def parse_roadmap_reply(text: str, fallback: dict[str, Any]) -> Roadmap | None:
    data = parse_json_output(text)
    if data is not None:
        roadmap = _validate(data, fallback)
        if roadmap is not None:
            return roadmap
    labeled = parse_labeled_text(text)
    if labeled is not None:
        return _validate(labeled, fallback)
    return None


# ---------------------------------------------------------------------------
# CampaignAnalyzer
# ---------------------------------------------------------------------------

class CampaignAnalyzer:
    def __init__(self, llm: LLM) -> None:
        self._llm = llm

    async def generate_roadmap(self, campaign_prompt: str, character_info: Any = "") -> Roadmap:
        """Generate a roadmap for the prompt. Never raises."""
        try:
            fallback = fallback_roadmap_data(campaign_prompt, character_info)
        except Exception:
            logger.exception("Keyword analysis failed; using the generic roadmap")
            fallback = fallback_roadmap_data("", "")

        try:
            reply = await self._llm(
                "roadmap",
                build_roadmap_prompt(campaign_prompt, character_info),
                ROADMAP_OPTIONS,
            )
        except LLMError as e:
            logger.warning("Roadmap generation failed, using keyword roadmap: %s", e)
            return Roadmap.model_validate(fallback)
        except Exception:
            logger.exception("Roadmap generation raised unexpectedly")
            return Roadmap.model_validate(fallback)

        roadmap = parse_roadmap_reply(reply, fallback)
        if roadmap is None:
            logger.warning("Roadmap reply was unparsable, using keyword roadmap")
            return Roadmap.model_validate(fallback)

        logger.info("Generated roadmap %r with %d chapters", roadmap.title, len(roadmap.chapters))
        return roadmap
