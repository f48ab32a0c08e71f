"""Roadmap store — the campaign plan, the cursor and the histories.

Only advance() and import_state() move the cursor. The roadmap itself is
modified in place by the apply_* methods; chapters are appended or edited,
never reordered.

Snapshot format (export_state / import_state), camelCase on the wire:

    {
      "roadmap":  {...Roadmap...},
      "progress": {"currentChapter": 0, "currentScene": 1},
      "history":  {"playerChoices": [...], "adaptations": [...]}
    }
"""

from __future__ import annotations

import logging
from typing import Any

from better_dm.models import (
    AdaptationDecision,
    AdaptationRecord,
    Chapter,
    ChapterPatch,
    ChoiceRecord,
    PlotThread,
    Roadmap,
    Scene,
    ScenePatch,
    clamp_difficulty,
    unique_strings,
)

logger = logging.getLogger(__name__)

NOT_INITIALIZED_CONTEXT = "Campaign roadmap not yet initialized."


class RoadmapStore:
    def __init__(self) -> None:
        self.roadmap: Roadmap | None = None
        self.current_chapter = 0
        self.current_scene = 0
        self.player_choices: list[ChoiceRecord] = []
        self.adaptations: list[AdaptationRecord] = []

    @property
    def initialized(self) -> bool:
        return self.roadmap is not None

    def initialize(self, roadmap: Roadmap) -> None:
        """Adopt a new roadmap; cursor to (0, 0), histories cleared."""
        self.roadmap = roadmap
        self.current_chapter = 0
        self.current_scene = 0
        self.player_choices = []
        self.adaptations = []
        logger.info("Roadmap %r loaded (%d chapters)", roadmap.title, len(roadmap.chapters))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_current_chapter(self) -> Chapter | None:
        if self.roadmap is None:
            return None
        return self.roadmap.chapters[self.current_chapter]

    def get_current_scene(self) -> Scene | None:
        chapter = self.get_current_chapter()
        if chapter is None:
            return None
        return chapter.scenes[self.current_scene]

    def upcoming_scenes(self, count: int = 3) -> list[dict[str, Any]]:
        """The next `count` scenes after the cursor, crossing chapter boundaries."""
        if self.roadmap is None:
            return []
        upcoming: list[dict[str, Any]] = []
        chapter_index = self.current_chapter
        scene_index = self.current_scene + 1
        while len(upcoming) < count and chapter_index < len(self.roadmap.chapters):
            scenes = self.roadmap.chapters[chapter_index].scenes
            while len(upcoming) < count and scene_index < len(scenes):
                scene = scenes[scene_index]
                upcoming.append({
                    "chapter": chapter_index,
                    "scene": scene_index,
                    "title": scene.title,
                    "type": scene.type,
                })
                scene_index += 1
            chapter_index += 1
            scene_index = 0
        return upcoming

    def active_plot_threads(self, limit: int = 3) -> list[PlotThread]:
        if self.roadmap is None:
            return []
        active = [t for t in self.roadmap.plot_threads if t.status in ("active", "developing")]
        return active[:limit]

    def campaign_context(self) -> str:
        """Plain-text summary of the campaign for prompt assembly."""
        if self.roadmap is None:
            return NOT_INITIALIZED_CONTEXT
        chapter = self.get_current_chapter()
        scene = self.get_current_scene()
        threads = ", ".join(t.title for t in self.active_plot_threads()) or "None"
        objectives = ", ".join(scene.outstanding_objectives()) or "None"
        lines = [
            f"Campaign: {self.roadmap.title}",
            f"Theme: {self.roadmap.theme}",
            f"Overall Goal: {self.roadmap.overall_goal}",
            "",
            "Current Progress:",
            f"- Chapter {self.current_chapter + 1}/{len(self.roadmap.chapters)}: {chapter.title}",
            f"- Scene {self.current_scene + 1}/{len(chapter.scenes)}: {scene.title}",
            "",
            f"Current Objectives: {objectives}",
            f"Active Plot Threads: {threads}",
        ]
        recent = self.player_choices[-3:]
        if recent:
            lines += ["", "Recent Player Choices:"]
            lines += [f"- {c.action} → {c.result}" for c in recent]
        return "\n".join(lines)

    def campaign_state(self) -> dict[str, Any]:
        """Progress summary for UIs."""
        chapter = self.get_current_chapter()
        scene = self.get_current_scene()
        return {
            "initialized": self.initialized,
            "title": self.roadmap.title if self.roadmap else None,
            "currentChapter": self.current_chapter,
            "currentScene": self.current_scene,
            "sceneInfo": scene.to_wire() if scene else None,
            "chapterInfo": chapter.to_wire() if chapter else None,
            "progress": {
                "chaptersCompleted": self.current_chapter,
                "totalChapters": len(self.roadmap.chapters) if self.roadmap else 0,
                "scenesInChapter": len(chapter.scenes) if chapter else 0,
                "currentSceneIndex": self.current_scene,
            },
        }

    # ------------------------------------------------------------------
    # Cursor
    # ------------------------------------------------------------------

    def advance(self) -> bool:
        """Move to the next scene, or the first scene of the next chapter.

        Returns False at the final scene of the final chapter; the cursor
        stays where it is.
        """
        if self.roadmap is None:
            return False
        chapter = self.roadmap.chapters[self.current_chapter]
        if self.current_scene + 1 < len(chapter.scenes):
            self.current_scene += 1
            logger.info("Advanced to scene %d of chapter %d", self.current_scene, self.current_chapter)
            return True
        if self.current_chapter + 1 < len(self.roadmap.chapters):
            self.current_chapter += 1
            self.current_scene = 0
            logger.info("Advanced to chapter %d", self.current_chapter)
            return True
        logger.info("Campaign complete; cursor stays at (%d, %d)", self.current_chapter, self.current_scene)
        return False

    # ------------------------------------------------------------------
    # Modifications
    # ------------------------------------------------------------------

    def _require_roadmap(self) -> Roadmap:
        if self.roadmap is None:
            raise RuntimeError("Roadmap store is not initialized")
        return self.roadmap

    def apply_scene_modification(self, patch: ScenePatch) -> Scene:
        self._require_roadmap()
        chapter = self.get_current_chapter()
        if patch.target is None:
            scene = self.get_current_scene()
        else:
            wanted = patch.target.strip().lower()
            scene = next((s for s in chapter.scenes if s.title.lower() == wanted), None)
            if scene is None:
                scene = Scene(title=patch.target.strip(), type=patch.type or "story")
                chapter.scenes.append(scene)
                logger.info("Added scene %r to chapter %r", scene.title, chapter.title)

        if patch.title:
            scene.title = patch.title
        if patch.description is not None:
            scene.description = patch.description
        if patch.type is not None:
            scene.type = patch.type
        if patch.difficulty is not None:
            scene.difficulty = patch.difficulty
        if not scene.difficulty_override:
            scene.difficulty = clamp_difficulty(scene.type, scene.difficulty)
        scene.objectives = unique_strings(scene.objectives + patch.add_objectives)
        scene.choices = unique_strings(scene.choices + patch.add_choices)
        if patch.complete_objectives:
            scene.completed_objectives = unique_strings(
                scene.completed_objectives + patch.complete_objectives
            )
        if patch.notes:
            scene.adaptation_notes.append(patch.notes)
        return scene

    def apply_chapter_modification(self, patch: ChapterPatch) -> Chapter:
        roadmap = self._require_roadmap()
        if patch.target is None:
            chapter = self.get_current_chapter()
        else:
            wanted = patch.target.strip().lower()
            chapter = next((c for c in roadmap.chapters if c.title.lower() == wanted), None)
            if chapter is None:
                chapter = Chapter(
                    title=patch.target.strip(),
                    description=patch.description or "",
                    scenes=list(patch.add_scenes),
                )
                roadmap.chapters.append(chapter)
                logger.info("Added chapter %r", chapter.title)
                patch = patch.model_copy(update={"add_scenes": [], "description": None})

        if patch.title:
            chapter.title = patch.title
        if patch.description is not None:
            chapter.description = patch.description
        chapter.objectives = unique_strings(chapter.objectives + patch.add_objectives)
        chapter.scenes.extend(patch.add_scenes)
        if patch.notes:
            chapter.adaptation_notes.append(patch.notes)
        return chapter

    def update_plot_thread(
        self, title: str, status: str | None = None, details: str | None = None
    ) -> PlotThread:
        """Merge into the thread with this title, or create it."""
        roadmap = self._require_roadmap()
        wanted = title.strip().lower()
        thread = next((t for t in roadmap.plot_threads if t.title.lower() == wanted), None)
        if thread is None:
            thread = PlotThread(title=title.strip(), description=details or "", status=status or "active")
            roadmap.plot_threads.append(thread)
            logger.info("New plot thread %r", thread.title)
            return thread
        if status is not None:
            thread.status = status
        if details:
            thread.description = f"{thread.description}\n{details}".strip() if thread.description else details
        return thread

    def apply_adaptation(self, decision: AdaptationDecision) -> None:
        if decision.scene_modifications is not None:
            self.apply_scene_modification(decision.scene_modifications)
        if decision.chapter_modifications is not None:
            self.apply_chapter_modification(decision.chapter_modifications)
        for update in decision.plot_thread_updates or []:
            self.update_plot_thread(update.title, update.status, update.details)

    # ------------------------------------------------------------------
    # Histories
    # ------------------------------------------------------------------

    def record_choice(self, action: str, result: str) -> ChoiceRecord:
        record = ChoiceRecord(
            chapter=self.current_chapter,
            scene=self.current_scene,
            action=action,
            result=result,
        )
        self.player_choices.append(record)
        return record

    def record_adaptation(self, trigger: str, decision: AdaptationDecision) -> AdaptationRecord:
        record = AdaptationRecord(trigger=trigger, changes=decision)
        self.adaptations.append(record)
        return record

    def recent_choices(self, count: int = 3) -> list[ChoiceRecord]:
        return self.player_choices[-count:]

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def export_state(self) -> dict[str, Any]:
        return {
            "roadmap": self.roadmap.to_wire() if self.roadmap else None,
            "progress": {
                "currentChapter": self.current_chapter,
                "currentScene": self.current_scene,
            },
            "history": {
                "playerChoices": [c.to_wire() for c in self.player_choices],
                "adaptations": [a.to_wire() for a in self.adaptations],
            },
        }

    def import_state(self, snapshot: dict[str, Any]) -> None:
        """Load a snapshot produced by export_state().

        Raises pydantic.ValidationError for a malformed roadmap and
        ValueError when the snapshot has none. A cursor outside the roadmap
        is clamped to the last valid position.
        """
        if not snapshot.get("roadmap"):
            raise ValueError("Snapshot has no roadmap")
        roadmap = Roadmap.model_validate(snapshot["roadmap"])
        history = snapshot.get("history") or {}
        choices = [ChoiceRecord.model_validate(c) for c in history.get("playerChoices", [])]
        adaptations = [AdaptationRecord.model_validate(a) for a in history.get("adaptations", [])]

        progress = snapshot.get("progress") or {}
        chapter = int(progress.get("currentChapter", 0))
        scene = int(progress.get("currentScene", 0))
        if chapter >= len(roadmap.chapters):
            chapter = len(roadmap.chapters) - 1
            scene = len(roadmap.chapters[chapter].scenes) - 1
        chapter = max(0, chapter)
        scene = max(0, min(scene, len(roadmap.chapters[chapter].scenes) - 1))

        self.roadmap = roadmap
        self.current_chapter = chapter
        self.current_scene = scene
        self.player_choices = choices
        self.adaptations = adaptations
        logger.info("Imported roadmap %r at (%d, %d)", roadmap.title, chapter, scene)
