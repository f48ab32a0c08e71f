"""Handlebars prompt rendering for every LLM stage.

Templates are module constants; free text is inserted with triple-stash
(`{{{x}}}`) so player input reaches the model without HTML escaping.

Stages and their builders:
  roadmap     — build_roadmap_prompt      (CampaignAnalyzer)
  opening     — build_opening_prompt      (NarrativeOrchestrator.initialize)
  narrator    — build_system_context + build_action_prompt
  adaptation  — build_adaptation_prompt   (AdaptationEngine)
  emergency   — build_emergency_prompt    (emergency mode redirect)
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pybars

from better_dm.models import ChoiceRecord, ConversationEntry, PlotThread, Roadmap, Scene

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_take(this, options, items, count):
    """{{#take array N}}...{{/take}} — iterate over the first N items."""
    result = []
    for item in list(items or [])[:int(count)]:
        result.extend(options["fn"](item))
    return result


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}} — iterate over the last N items."""
    result = []
    for item in list(items or [])[-int(count):]:
        result.extend(options["fn"](item))
    return result


def _helper_join(this, items, separator=", "):
    """{{join array ", "}} — join strings inline."""
    return separator.join(str(i) for i in (items or []))


_HELPERS: dict[str, Callable] = {
    "take": _helper_take,
    "last": _helper_last,
    "join": _helper_join,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

SIGNAL_INSTRUCTIONS_TOKENS = """DM SIGNALS (use when appropriate, inline in your narration):
[SCENE_COMPLETE] - When current objectives are accomplished
[CHAPTER_ADVANCE] - When ready to transition to the next major story beat
[ROADMAP_UPDATE] - When player actions create new story possibilities
[ROLL_DICE] - When a skill check, saving throw, or attack roll is needed"""

SIGNAL_INSTRUCTIONS_STRUCTURED = """DM SIGNALS: after your narration, end with exactly one line of the form
SIGNALS: {"scene_complete": false, "chapter_advance": false, "roadmap_update": false, "roll_dice": false}
setting a flag to true when the current objectives are accomplished (scene_complete),
the next major story beat should begin (chapter_advance), the player's actions open
new story possibilities (roadmap_update), or a check or attack roll is needed (roll_dice)."""

SYSTEM_CONTEXT_TEMPLATE = """You are an experienced Dungeon Master running a tabletop fantasy campaign. You speak with the voice and authority of a seasoned DM. Your responses should feel like they come from behind the DM screen: descriptive, engaging, and full of the detail that brings the world to life.

TONE AND STYLE:
- Use vivid, cinematic descriptions that paint clear mental images
- Speak directly to the player as "you"
- Include sensory details (what they see, hear, smell, feel)
- Build tension and atmosphere appropriate to the situation
- Reference dice rolls, checks, and game mechanics naturally when relevant
- Show consequences of actions through the world's reactions

CAMPAIGN MANAGEMENT:
- Follow the established campaign roadmap but adapt to player choices
- Guide the player toward the current objectives through natural storytelling
- Introduce NPCs with distinct personalities and motivations
- Create meaningful choices that impact the story's direction

{{{campaign_context}}}

Current Scene Status:
{{#if scene}}
Scene: {{{scene.title}}}, a {{scene.type}} encounter (Difficulty {{scene.difficulty}}/10)
Active Objectives: {{#if scene.objectives}}{{{join scene.objectives ", "}}}{{else}}Explore and discover{{/if}}
Scene Context: {{#if scene.description}}{{{scene.description}}}{{else}}The adventure continues...{{/if}}
{{else}}
Setting up the next scene...
{{/if}}
{{#if emergency}}

REDIRECT GUIDANCE (the player has strayed far from the plan):
{{{emergency.scenario}}}
Weave this in naturally; respect the player's choice while steering back toward: {{{overall_goal}}}
{{/if}}

{{{signal_instructions}}}

Remember: the player's choices matter. Make every response feel like it is happening at your gaming table."""

ACTION_TEMPLATE = """{{{system_context}}}

=== RECENT GAME SESSION ===
{{#each conversation}}{{{role_label}}}: {{{text}}}
{{/each}}
=== PLAYER'S ACTION ===
"{{{action}}}"

=== YOUR RESPONSE AS DM ===
The player has declared their action. Describe what happens next:
- Acknowledge the action with descriptive consequences
- Advance the current scene toward its objectives: {{#if objectives}}{{{join objectives ", "}}}{{else}}Continue the story{{/if}}
- Maintain the campaign's momentum and atmosphere
- Present clear opportunities for the player's next move

DM Response:
"""

OPENING_TEMPLATE = """You are a Dungeon Master starting a new campaign. Set the opening scene with a rich, descriptive style that makes the player feel present in the world.

CAMPAIGN OVERVIEW:
Campaign Title: {{{title}}}
Theme & Tone: {{theme}}
Ultimate Goal: {{{overall_goal}}}

OPENING SCENE:
Chapter: {{{chapter_title}}}
Scene: {{{scene_title}}} ({{scene_type}})
{{#if scene_description}}Scene Context: {{{scene_description}}}
{{/if}}
CRAFT THE OPENING:
- Paint a vivid picture that draws the player into the world
- Establish the atmosphere and tone of the adventure
- Present the initial hook or situation naturally
- End with a clear moment where the player needs to decide what to do

Aim for 200-250 words.

Opening Scene:"""

ROADMAP_TEMPLATE = """Create a detailed fantasy campaign roadmap based on this prompt: "{{{campaign_prompt}}}"

Character Information:
{{{character_json}}}

Generate a campaign structure with:
1. Campaign title and central theme (one of: heroic, dark, mystery, political, exploration, horror)
2. Overall story goal and estimated 6-8 sessions
3. 3-4 main chapters with clear progression
4. Each chapter with 2-3 key scenes (type: story, exploration, social, combat, puzzle or climax; difficulty 1-10)
5. Important NPCs with motivations and relationships
6. Key locations with descriptions and significance
7. Major plot threads that weave through the campaign
8. Emergency scenarios for when the player goes off-track

Make the campaign feel epic yet personal to the character's background and class.

Respond with a single JSON object and nothing else, using this shape:
{
  "title": "...", "theme": "...", "overallGoal": "...", "estimatedSessions": 6,
  "difficultyProgression": "gradual",
  "chapters": [{"title": "...", "description": "...", "objectives": ["..."],
                "scenes": [{"title": "...", "description": "...", "type": "story",
                            "difficulty": 1, "objectives": ["..."], "choices": ["..."]}]}],
  "npcs": [{"name": "...", "role": "...", "motivation": "...", "relationship": "..."}],
  "locations": [{"name": "...", "description": "...", "significance": "..."}],
  "plotThreads": [{"title": "...", "description": "...", "status": "active"}],
  "emergencyScenarios": [{"trigger": "...", "scenario": "...", "description": "..."}]
}"""

ADAPTATION_TEMPLATE = """Current Campaign State:
Chapter: {{{chapter_title}}}
Scene: {{{scene_title}}}

Recent Player Action: {{{action}}}
Action Result: {{{result}}}

Player Choice History:
{{#each recent_choices}}- {{{action}}} ({{{result}}})
{{/each}}
Campaign Roadmap Context:
{{{roadmap_context}}}

Analyze this player action and decide whether the campaign roadmap must adapt:
1. Does this action require changes to the current scene?
2. Should the current chapter's objectives or upcoming scenes change?
3. Are there plot threads to introduce or whose status changes?

Respond with a single JSON object and nothing else:
{"scene": null | {"target": null, "description": "...", "add_objectives": ["..."], "complete_objectives": ["..."], "add_choices": ["..."], "notes": "..."},
 "chapter": null | {"target": null, "add_objectives": ["..."], "add_scenes": [{"title": "...", "type": "story", "difficulty": 3}], "notes": "..."},
 "plot_threads": null | [{"title": "...", "status": "active|developing|resolved|dormant|abandoned", "details": "..."}]}
Use null for anything that should stay as it is."""

EMERGENCY_TEMPLATE = """The player has gone significantly off the planned campaign path with this action: "{{{action}}}"

Current campaign context:
{{{campaign_context}}}

Describe a way to redirect the story back toward the main campaign objectives while:
1. Respecting the player's agency and choice
2. Making the redirection feel natural and story-driven
3. Connecting back to the main plot
4. Keeping the campaign's theme and tone

Reply with a brief scenario description (2-4 sentences)."""


# ── Builders ─────────────────────────────────────────────


def _scene_ctx(scene: Scene | None) -> dict[str, Any] | None:
    if scene is None:
        return None
    return {
        "title": scene.title,
        "type": scene.type,
        "difficulty": scene.difficulty,
        "objectives": scene.outstanding_objectives(),
        "description": scene.description,
    }


def build_system_context(
    roadmap: Roadmap | None,
    campaign_context: str,
    scene: Scene | None,
    emergency: dict[str, Any] | None = None,
    structured_signals: bool = False,
) -> str:
    ctx = {
        "campaign_context": campaign_context.strip(),
        "scene": _scene_ctx(scene),
        "emergency": emergency,
        "overall_goal": roadmap.overall_goal if roadmap else "",
        "signal_instructions": (
            SIGNAL_INSTRUCTIONS_STRUCTURED if structured_signals else SIGNAL_INSTRUCTIONS_TOKENS
        ),
    }
    return render_prompt(SYSTEM_CONTEXT_TEMPLATE, ctx)


def build_action_prompt(
    system_context: str,
    conversation: list[ConversationEntry],
    action: str,
    scene: Scene | None,
    recent_turns: int = 5,
) -> str:
    # the new action is already the last history entry; show what came before it
    previous = conversation[:-1] if conversation and conversation[-1].text == action else conversation
    ctx = {
        "system_context": system_context,
        "conversation": [
            {"role_label": "PLAYER" if e.role == "player" else "DM", "text": e.text}
            for e in previous[-recent_turns:]
        ],
        "action": action,
        "objectives": scene.outstanding_objectives() if scene else [],
    }
    return render_prompt(ACTION_TEMPLATE, ctx)


def build_opening_prompt(roadmap: Roadmap) -> str:
    chapter = roadmap.chapters[0] if roadmap.chapters else None
    scene = chapter.scenes[0] if chapter and chapter.scenes else None
    ctx = {
        "title": roadmap.title,
        "theme": roadmap.theme,
        "overall_goal": roadmap.overall_goal,
        "chapter_title": chapter.title if chapter else "The Beginning",
        "scene_title": scene.title if scene else "Opening",
        "scene_type": scene.type if scene else "story",
        "scene_description": scene.description if scene else "",
    }
    return render_prompt(OPENING_TEMPLATE, ctx)


def build_roadmap_prompt(campaign_prompt: str, character_info: Any) -> str:
    if isinstance(character_info, str):
        character_json = character_info or "(no character details given)"
    else:
        character_json = json.dumps(character_info, indent=2, default=str)
    return render_prompt(ROADMAP_TEMPLATE, {
        "campaign_prompt": campaign_prompt,
        "character_json": character_json,
    })


def build_adaptation_prompt(
    action: str,
    result: str,
    chapter_title: str,
    scene_title: str,
    recent_choices: list[ChoiceRecord],
    objectives: list[str],
    upcoming: list[dict[str, Any]],
    plot_threads: list[PlotThread],
) -> str:
    roadmap_context = json.dumps({
        "currentObjectives": objectives,
        "upcomingScenes": upcoming,
        "activePlotThreads": [t.to_wire() for t in plot_threads],
    }, indent=2)
    return render_prompt(ADAPTATION_TEMPLATE, {
        "action": action,
        "result": result,
        "chapter_title": chapter_title or "Unknown",
        "scene_title": scene_title or "Unknown",
        "recent_choices": [{"action": c.action, "result": c.result} for c in recent_choices],
        "roadmap_context": roadmap_context,
    })


def build_emergency_prompt(action: str, campaign_context: str) -> str:
    return render_prompt(EMERGENCY_TEMPLATE, {
        "action": action,
        "campaign_context": campaign_context.strip(),
    })
