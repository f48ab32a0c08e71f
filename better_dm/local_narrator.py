"""Offline narrator — a keyword-driven LLM stand-in.

LocalNarrator matches the LLM protocol and needs no model. For the
"narrator" stage it reads the player's action and the current scene back out
of the rendered prompt, classifies the action (examination, combat, social,
movement, general) and fills a randomly chosen template. Every other stage
raises LLMError, so the caller falls back to its own deterministic path.

It is normally the last backend of a FallbackLLM chain, so a campaign keeps
running when every remote backend is down.
"""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field

from better_dm.llm import GenerationOptions, LLMError

logger = logging.getLogger(__name__)

EXAMINE_KEYWORDS = ("look", "examine", "inspect", "search", "investigate", "check", "study", "observe")
COMBAT_KEYWORDS = ("attack", "fight", "strike", "hit", "shoot", "cast", "defend", "block", "dodge")
SOCIAL_KEYWORDS = ("talk", "speak", "ask", "tell", "persuade", "intimidate", "negotiate", "greet")
MOVEMENT_KEYWORDS = ("go", "move", "walk", "run", "travel", "head", "approach", "leave", "enter")

_ACTION_RE = re.compile(r"=== PLAYER'S ACTION ===\s*\"(.*?)\"\s*$", re.MULTILINE | re.DOTALL)
_SCENE_RE = re.compile(r"^Scene: (.+?), an? (\w+) encounter", re.MULTILINE)
_CHAPTER_RE = re.compile(r"^- Chapter \d+/\d+: (.+)$", re.MULTILINE)
_OBJECTIVES_RE = re.compile(r"^Active Objectives: (.+)$", re.MULTILINE)


@dataclass
class PromptContext:
    action: str = ""
    scene: str = "the current situation"
    scene_type: str = "story"
    chapter: str = "your quest"
    objectives: list[str] = field(default_factory=list)


def read_prompt(prompt: str) -> PromptContext:
    """Recover the action and scene details from a rendered narrator prompt."""
    ctx = PromptContext()
    if m := _ACTION_RE.search(prompt):
        ctx.action = m.group(1).strip()
    if m := _SCENE_RE.search(prompt):
        ctx.scene, ctx.scene_type = m.group(1).strip(), m.group(2).lower()
    if m := _CHAPTER_RE.search(prompt):
        ctx.chapter = m.group(1).strip()
    if m := _OBJECTIVES_RE.search(prompt):
        objectives = m.group(1).strip()
        if objectives != "Explore and discover":
            ctx.objectives = [o.strip() for o in objectives.split(",") if o.strip()]
    return ctx


def classify_action(action: str) -> str:
    """Return the first matching category, checked in a fixed order."""
    lowered = action.lower()
    for category, keywords in (
        ("examination", EXAMINE_KEYWORDS),
        ("combat", COMBAT_KEYWORDS),
        ("social", SOCIAL_KEYWORDS),
        ("movement", MOVEMENT_KEYWORDS),
    ):
        if any(k in lowered for k in keywords):
            return category
    return "general"


# ── Template pools ───────────────────────────────────────

_EXAMINATION = {
    "story": [
        "As you carefully examine your surroundings in {scene}, small details stand out: "
        "scuffed stones, a half-burned notice, voices that drop when you pass. "
        "Everything here seems connected to {chapter}. {hint}",
        "Your methodical investigation of {scene} reveals more than a casual glance would. "
        "The signs point to recent trouble, and {hint_lower}",
    ],
    "exploration": [
        "Your exploration of {scene} uncovers a narrow, half-hidden way that few have walked. "
        "This place clearly matters in {chapter}. {hint}",
        "As you search through {scene}, your instincts guide you to marks left by an earlier "
        "traveller. {hint}",
    ],
    "social": [
        "You study the people in {scene}. Guarded glances and hushed talk suggest the community "
        "is uneasy about what {chapter} has brought. {hint}",
    ],
    "combat": [
        "Your tactical assessment of {scene} shows cover to the left and a choke point ahead. "
        "Either could decide a fight. {hint}",
    ],
}

_COMBAT = [
    "Roll for initiative! Your attack strikes true in {scene}. Steel rings and your foe "
    "staggers back, looking for an opening. This battle is a pivotal moment in {chapter}. {hint}",
    "Combat begins! You engage your foe in {scene}. The fight is close and brutal, but you "
    "hold your ground. {hint}",
    "Battle is joined! In {scene}, the tide shifts as your blow lands. Victory here brings "
    "you one step closer. {hint}",
]

_SOCIAL = [
    "Make a Persuasion check. Your words land with impact in {scene}, and the listener leans "
    "in, weighing what you said. {hint}",
    "Roll for Insight. As you navigate the social currents of {scene}, you sense there is "
    "more going on than anyone admits. {hint}",
    "The people here react to your approach. The exchange in {scene} opens a door that was "
    "closed a moment ago. {hint}",
]

_MOVEMENT = [
    "You advance purposefully through {scene}. The route narrows and the light changes as "
    "{chapter} draws you onward. {hint}",
    "Your journey continues. Each step through {scene} brings new sights and the feeling of "
    "being watched. {hint}",
]

_GENERAL = [
    "I see what you're trying to do. Your decision to {action} in {scene} does not go "
    "unnoticed, and the world responds. {hint}",
    "Interesting choice! As you {action} in {scene}, the consequences ripple outward through "
    "{chapter}. {hint}",
    "The dice of fate are cast! Your bold move in {scene} changes the mood at once. {hint}",
]

_HINTS = [
    "Remember, you need to {objective}.",
    "Your goal to {objective} seems within reach.",
    "Consider how this relates to your aim to {objective}.",
    "This might help you {objective}.",
]

NO_OBJECTIVE_HINT = "Continue exploring to discover what you should do next."


class LocalNarrator:
    """Offline contextual narrator for the narrator stage. No network access."""

    name = "local"

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def _hint(self, objectives: list[str]) -> str:
        if not objectives:
            return NO_OBJECTIVE_HINT
        objective = self._rng.choice(objectives)
        return self._rng.choice(_HINTS).format(objective=objective[:1].lower() + objective[1:])

    def narrate(self, ctx: PromptContext) -> str:
        category = classify_action(ctx.action)
        if category == "examination":
            pool = _EXAMINATION.get(ctx.scene_type, _EXAMINATION["story"])
        else:
            pool = {
                "combat": _COMBAT,
                "social": _SOCIAL,
                "movement": _MOVEMENT,
            }.get(category, _GENERAL)
        hint = self._hint(ctx.objectives)
        return self._rng.choice(pool).format(
            scene=ctx.scene,
            chapter=ctx.chapter,
            action=(ctx.action.lower().rstrip(".!?") or "act"),
            hint=hint,
            hint_lower=hint[:1].lower() + hint[1:],
        )

    async def __call__(
        self, stage: str, prompt: str, options: GenerationOptions | None = None
    ) -> str:
        if stage != "narrator":
            raise LLMError(f"Local narrator does not support the {stage} stage")
        ctx = read_prompt(prompt)
        logger.info("Local narrator answering %r", ctx.action[:60])
        return self.narrate(ctx)
