"""Core domain models.

Every engine component and the storage layer operate on these types.
Pydantic is used for validation and serialisation at every data boundary:
roadmaps parsed out of LLM text, saved campaign snapshots, API bodies.

Python attributes are snake_case; the wire format is camelCase
(`overallGoal`, `currentChapter`, ...). Models accept either spelling on input
and are dumped with `by_alias=True`.
"""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

Theme = Literal["heroic", "dark", "mystery", "political", "exploration", "horror"]
SceneType = Literal["story", "exploration", "social", "combat", "puzzle", "climax"]
DifficultyProgression = Literal["gradual", "steep", "plateau"]
ThreadStatus = Literal["active", "developing", "resolved", "dormant", "abandoned"]
Role = Literal["player", "narrator"]

THEMES: tuple[str, ...] = ("heroic", "dark", "mystery", "political", "exploration", "horror")
SCENE_TYPES: tuple[str, ...] = ("story", "exploration", "social", "combat", "puzzle", "climax")

# Allowed difficulty range per scene type (inclusive).
DIFFICULTY_RANGES: dict[str, tuple[int, int]] = {
    "story": (1, 3),
    "exploration": (2, 6),
    "social": (2, 7),
    "combat": (3, 9),
    "puzzle": (4, 8),
    "climax": (6, 10),
}


def now_ms() -> int:
    return int(time.time() * 1000)


def clamp_difficulty(scene_type: str, difficulty: int) -> int:
    low, high = DIFFICULTY_RANGES.get(scene_type, (1, 10))
    return max(low, min(high, difficulty))


def unique_strings(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for v in values:
        v = v.strip()
        if v and v.lower() not in seen:
            seen.add(v.lower())
            result.append(v)
    return result


def _unique_by(items: list, key: str) -> list:
    """Collapse entries sharing a name/title (case-insensitive); later ones win."""
    by_key: dict[str, Any] = {}
    for item in items:
        by_key[getattr(item, key).lower()] = item
    return list(by_key.values())


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Roadmap structure
# ---------------------------------------------------------------------------

class Scene(WireModel):
    """A single encounter within a chapter."""

    title: str
    description: str = ""
    type: SceneType = "story"
    difficulty: int = Field(default=1, ge=1, le=10)
    objectives: list[str] = Field(default_factory=list)
    completed_objectives: list[str] = Field(default_factory=list)
    choices: list[str] = Field(default_factory=list)
    npcs_present: list[str] = Field(default_factory=list)
    possible_outcomes: list[str] = Field(default_factory=list)
    adaptation_notes: list[str] = Field(default_factory=list)
    difficulty_override: bool = False

    @field_validator("difficulty", mode="before")
    @classmethod
    def _coerce_difficulty(cls, v: Any) -> Any:
        # LLMs sometimes answer "7/10" or 7.5
        if isinstance(v, str):
            digits = v.split("/")[0].strip()
            return int(float(digits)) if digits else 1
        if isinstance(v, float):
            return int(round(v))
        return v

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            lowered = v.strip().lower()
            for scene_type in SCENE_TYPES:
                if scene_type in lowered:
                    return scene_type
            return "story"
        return v

    @field_validator("objectives", "choices")
    @classmethod
    def _dedupe(cls, v: list[str]) -> list[str]:
        return unique_strings(v)

    @model_validator(mode="after")
    def _difficulty_in_range(self) -> Scene:
        if not self.difficulty_override:
            self.difficulty = clamp_difficulty(self.type, self.difficulty)
        return self

    def outstanding_objectives(self) -> list[str]:
        done = {o.lower() for o in self.completed_objectives}
        return [o for o in self.objectives if o.lower() not in done]


class Chapter(WireModel):
    """A major story beat made of ordered scenes."""

    title: str
    description: str = ""
    objectives: list[str] = Field(default_factory=list)
    scenes: list[Scene] = Field(default_factory=list)
    adaptation_notes: list[str] = Field(default_factory=list)

    @field_validator("objectives")
    @classmethod
    def _dedupe(cls, v: list[str]) -> list[str]:
        return unique_strings(v)

    @model_validator(mode="after")
    def _at_least_one_scene(self) -> Chapter:
        if not self.scenes:
            self.scenes.append(placeholder_scene(self))
        return self


def placeholder_scene(chapter: Chapter) -> Scene:
    return Scene(
        title=f"{chapter.title}: Opening",
        description=chapter.description or "The story continues.",
        type="story",
        difficulty=1,
        objectives=list(chapter.objectives[:2]),
    )


class NPC(WireModel):
    name: str
    role: str = ""
    motivation: str = ""
    relationship: str = ""


class Location(WireModel):
    name: str
    description: str = ""
    significance: str = ""


class PlotThread(WireModel):
    title: str
    description: str = ""
    status: ThreadStatus = "active"


class EmergencyScenario(WireModel):
    """A prewritten redirect used when the player leaves the plan entirely."""

    trigger: str
    scenario: str
    description: str = ""
    created_at: int | None = None
    used: bool = False


class Roadmap(WireModel):
    """The complete campaign plan."""

    title: str = "Epic Adventure"
    theme: Theme = "heroic"
    overall_goal: str = "Save the realm from danger"
    estimated_sessions: int = Field(default=6, ge=1)
    difficulty_progression: DifficultyProgression = "gradual"
    chapters: list[Chapter] = Field(default_factory=list, min_length=1)
    npcs: list[NPC] = Field(default_factory=list)
    locations: list[Location] = Field(default_factory=list)
    plot_threads: list[PlotThread] = Field(default_factory=list)
    emergency_scenarios: list[EmergencyScenario] = Field(default_factory=list)

    @field_validator("theme", mode="before")
    @classmethod
    def _normalize_theme(cls, v: Any) -> Any:
        # "Heroic fantasy" → "heroic"; anything unrecognized → "heroic"
        if isinstance(v, str):
            lowered = v.strip().lower()
            for theme in THEMES:
                if theme in lowered:
                    return theme
            return "heroic"
        return v

    @field_validator("estimated_sessions", mode="before")
    @classmethod
    def _coerce_sessions(cls, v: Any) -> Any:
        if isinstance(v, str):
            digits = "".join(ch for ch in v.split("-")[0] if ch.isdigit())
            return int(digits) if digits else 6
        return v

    @model_validator(mode="after")
    def _unique_names(self) -> Roadmap:
        self.npcs = _unique_by(self.npcs, "name")
        self.locations = _unique_by(self.locations, "name")
        self.plot_threads = _unique_by(self.plot_threads, "title")
        return self


# ---------------------------------------------------------------------------
# Adaptation
# ---------------------------------------------------------------------------

class ScenePatch(WireModel):
    """Structural change to one scene.

    `target` names a scene in the current chapter; None means the current
    scene. An unknown target creates a new scene.
    """

    target: str | None = None
    title: str | None = None
    description: str | None = None
    type: SceneType | None = None
    difficulty: int | None = Field(default=None, ge=1, le=10)
    add_objectives: list[str] = Field(default_factory=list)
    complete_objectives: list[str] = Field(default_factory=list)
    add_choices: list[str] = Field(default_factory=list)
    notes: str | None = None


class ChapterPatch(WireModel):
    """Structural change to one chapter (None target = current chapter)."""

    target: str | None = None
    title: str | None = None
    description: str | None = None
    add_objectives: list[str] = Field(default_factory=list)
    add_scenes: list[Scene] = Field(default_factory=list)
    notes: str | None = None


class PlotThreadUpdate(WireModel):
    title: str
    status: ThreadStatus | None = None
    details: str | None = None


AdaptationSource = Literal["structured", "coarse", "none"]


class AdaptationDecision(WireModel):
    scene_modifications: ScenePatch | None = None
    chapter_modifications: ChapterPatch | None = None
    plot_thread_updates: list[PlotThreadUpdate] | None = None
    source: AdaptationSource = "none"

    @property
    def is_empty(self) -> bool:
        return (
            self.scene_modifications is None
            and self.chapter_modifications is None
            and not self.plot_thread_updates
        )


# ---------------------------------------------------------------------------
# Histories
# ---------------------------------------------------------------------------

class ChoiceRecord(WireModel):
    """One player choice. Append-only; never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    chapter: int
    scene: int
    action: str
    result: str
    timestamp: int = Field(default_factory=now_ms)


class AdaptationRecord(WireModel):
    model_config = ConfigDict(frozen=True)

    trigger: str
    changes: AdaptationDecision
    timestamp: int = Field(default_factory=now_ms)


class ConversationEntry(WireModel):
    role: Role
    text: str
    timestamp: int = Field(default_factory=now_ms)


# ---------------------------------------------------------------------------
# Turn results
# ---------------------------------------------------------------------------

class Signals(WireModel):
    scene_complete: bool = False
    chapter_advance: bool = False
    roadmap_update: bool = False
    roll_dice: bool = False
    emergency_mode: bool = False

    def merge(self, other: Signals) -> Signals:
        return Signals(**{
            name: getattr(self, name) or getattr(other, name)
            for name in Signals.model_fields
        })


class TurnResult(WireModel):
    """What process_player_action hands back to the caller."""

    response: str
    signals: Signals = Field(default_factory=Signals)
    roadmap: dict[str, Any] | None = None
    scene: Scene | None = None
    advanced: bool = False
    campaign_complete: bool = False
    error: bool = False
    busy: bool = False


class OpeningResult(WireModel):
    roadmap: Roadmap
    opening: str


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class Campaign(WireModel):
    """Saved campaign metadata. The session snapshot is stored separately."""

    slug: str
    title: str
    prompt: str = ""
    character_info: Any = ""
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
