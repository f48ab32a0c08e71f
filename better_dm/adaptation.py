"""Adaptation engine — decides how the roadmap reacts to a player action.

The LLM is asked for a typed decision:

    {"scene": ScenePatch | null, "chapter": ChapterPatch | null,
     "plot_threads": [PlotThreadUpdate] | null}

A reply that is not valid JSON of that shape is read coarsely: the words
"scene", "chapter" and "plot" switch the matching part on, and each part only
records the analysis text as a note. A failed LLM call yields an empty
decision. adapt() never raises, and every call is logged in the store's
adaptation history.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from better_dm.llm import LLM, GenerationOptions, LLMError
from better_dm.models import (
    AdaptationDecision,
    ChapterPatch,
    PlotThreadUpdate,
    ScenePatch,
)
from better_dm.parsing import parse_json_output
from better_dm.prompts import build_adaptation_prompt
from better_dm.roadmap import RoadmapStore

logger = logging.getLogger(__name__)

ADAPTATION_OPTIONS = GenerationOptions(
    temperature=0.6,
    max_tokens=800,
    system_context="You are analyzing player actions to adapt a campaign roadmap intelligently.",
)

DEVIATION_KEYWORDS = ("abandon", "refuse", "instead", "different", "leave")

MAX_NOTE_LENGTH = 500

_SCENE_KEYS = ("scene", "scene_modifications", "sceneModifications")
_CHAPTER_KEYS = ("chapter", "chapter_modifications", "chapterModifications")
_THREAD_KEYS = ("plot_threads", "plotThreads", "plot_thread_updates", "plotThreadUpdates")


def _pick(data: dict[str, Any], keys: tuple[str, ...]) -> tuple[bool, Any]:
    for key in keys:
        if key in data:
            return True, data[key]
    return False, None


def parse_structured(text: str) -> AdaptationDecision | None:
    """Validate a JSON decision. None when the reply doesn't have that shape."""
    data = parse_json_output(text)
    if data is None:
        return None
    has_scene, scene = _pick(data, _SCENE_KEYS)
    has_chapter, chapter = _pick(data, _CHAPTER_KEYS)
    has_threads, threads = _pick(data, _THREAD_KEYS)
    if not (has_scene or has_chapter or has_threads):
        return None
    if threads is not None and not isinstance(threads, list):
        threads = [threads]
    try:
        return AdaptationDecision(
            scene_modifications=ScenePatch.model_validate(scene) if scene else None,
            chapter_modifications=ChapterPatch.model_validate(chapter) if chapter else None,
            plot_thread_updates=[PlotThreadUpdate.model_validate(t) for t in threads] if threads else None,
            source="structured",
        )
    except ValidationError as e:
        logger.warning("Adaptation decision failed validation: %s", e.error_count())
        return None


def parse_coarse(text: str, store: RoadmapStore) -> AdaptationDecision:
    """Degraded reading: keyword presence only, changes recorded as notes."""
    lowered = text.lower()
    note = " ".join(text.split())[:MAX_NOTE_LENGTH]
    scene = ScenePatch(notes=note) if "scene" in lowered else None
    chapter = ChapterPatch(notes=note) if "chapter" in lowered else None
    threads = None
    if "plot" in lowered:
        active = store.active_plot_threads(limit=1)
        if active:
            # names the thread without changing it
            threads = [PlotThreadUpdate(title=active[0].title)]
    return AdaptationDecision(
        scene_modifications=scene,
        chapter_modifications=chapter,
        plot_thread_updates=threads,
        source="coarse",
    )


def is_deviation(action: str) -> bool:
    """True when the action contains a major-deviation keyword."""
    lowered = action.lower()
    return any(k in lowered for k in DEVIATION_KEYWORDS)


class AdaptationEngine:
    def __init__(self, llm: LLM) -> None:
        self._llm = llm

    def is_deviation(self, action: str) -> bool:
        return is_deviation(action)

    async def adapt(self, action: str, result: str, store: RoadmapStore) -> AdaptationDecision:
        """Ask for an adaptation decision and log it in the store. Never raises.

        The decision is returned unapplied; the caller applies it with
        store.apply_adaptation().
        """
        chapter = store.get_current_chapter()
        scene = store.get_current_scene()
        prompt = build_adaptation_prompt(
            action=action,
            result=result,
            chapter_title=chapter.title if chapter else "",
            scene_title=scene.title if scene else "",
            recent_choices=store.recent_choices(3),
            objectives=scene.outstanding_objectives() if scene else [],
            upcoming=store.upcoming_scenes(3),
            plot_threads=store.active_plot_threads(3),
        )

        try:
            reply = await self._llm("adaptation", prompt, ADAPTATION_OPTIONS)
        except LLMError as e:
            logger.warning("Adaptation analysis failed, no changes: %s", e)
            decision = AdaptationDecision(source="none")
        except Exception:
            logger.exception("Adaptation analysis raised unexpectedly")
            decision = AdaptationDecision(source="none")
        else:
            decision = parse_structured(reply) or parse_coarse(reply, store)

        if store.initialized:
            store.record_adaptation(action, decision)
        logger.info(
            "Adaptation for %r: source=%s empty=%s", action[:60], decision.source, decision.is_empty
        )
        return decision
