"""Narrative orchestrator — runs one player turn end-to-end.

Turn flow:
  1. Reject the action with a busy result if a turn is already in flight.
  2. Append the action to the conversation history.
  3. Build the prompt: system context (tone, campaign context, current scene,
     signal instructions) + last N conversation turns + the action.
  4. Call the narrator LLM. On failure return the apology result.
  5. Extract signals and strip them; run the quality pass.
  6. Record the choice. On scene_complete / chapter_advance, advance the
     cursor once (subject to the advance policy) and emit the matching event.
  7. Run the adaptation engine and apply its decision.
     Track deviations; enter emergency mode when they pile up.
  8. Append the narration to history, rebuild the system context.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Literal

from pydantic import BaseModel, Field

from better_dm.adaptation import AdaptationEngine
from better_dm.analyzer import CampaignAnalyzer
from better_dm.events import EventBus, EventType
from better_dm.llm import LLM, GenerationOptions, LLMError
from better_dm.models import (
    ConversationEntry,
    EmergencyScenario,
    OpeningResult,
    Roadmap,
    Signals,
    TurnResult,
    now_ms,
)
from better_dm.pipeline.signals import SHORT_RESPONSE_FALLBACK, process_response
from better_dm.prompts import (
    build_action_prompt,
    build_emergency_prompt,
    build_opening_prompt,
    build_system_context,
)
from better_dm.roadmap import RoadmapStore

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "Please wait, I'm still processing your previous action..."
APOLOGY_MESSAGE = "I encountered an issue processing your action. Please try again."
DEFAULT_REDIRECT = "A sudden event forces the story back toward the main plot."

OPENING_OPTIONS = GenerationOptions(temperature=0.8, max_tokens=500)
EMERGENCY_OPTIONS = GenerationOptions(temperature=0.7, max_tokens=300)

FALLBACK_OPENINGS: dict[str, list[str]] = {
    "heroic": [
        "Welcome to {title}! You find yourself in a peaceful village as the morning sun casts long "
        "shadows across cobblestone streets. The air is filled with the scent of fresh bread and the "
        "sound of merchants setting up their stalls. But beneath this tranquil surface, whispers of "
        "danger circulate among the townsfolk. Something dark stirs in the distant lands, and the "
        "people look to heroes like you for hope. As you walk through the village square, an elderly "
        "figure approaches with urgent eyes and a tale that will change your destiny forever.",
        "The story of {title} begins in a time of relative peace, but peace, as you well know, rarely "
        "lasts. You stand at the crossroads of fate, where the choices you make will echo through "
        "history. The world around you is beautiful yet fragile, filled with people who deserve "
        "protection from the shadows that gather on the horizon. Today marks the beginning of an "
        "adventure that will test your courage and forge you into the legend you're destined to become.",
    ],
    "dark": [
        "Darkness creeps across the land in {title}, and you find yourself in a world where hope "
        "flickers like a dying candle. The village you enter is shrouded in an unnatural gloom, with "
        "shuttered windows and fearful glances from the few souls brave enough to venture outside. "
        "Something ancient and malevolent has awakened, casting its shadow over everything you hold "
        "dear. In this place where nightmares walk among the living, you must find the strength to "
        "stand against the encroaching evil.",
        "Welcome to a realm where {title} unfolds, a world tainted by corruption and haunted by ancient "
        "curses. The settlement before you bears the scars of recent tragedy, its people hollow-eyed "
        "and desperate. Dark omens fill the sky, and even the bravest warriors speak in hushed tones of "
        "the terror that lurks beyond these walls. You are perhaps the last hope in a world that has "
        "forgotten what it means to dream of better days.",
    ],
    "mystery": [
        "The tale of {title} begins with questions that demand answers. You arrive in a place where "
        "nothing is quite what it seems, where every shadow might hide a clue and every conversation "
        "might reveal a secret. Recent events have left the locals puzzled and afraid, speaking in "
        "riddles about strange occurrences that defy explanation. Beneath the surface of this "
        "seemingly ordinary place lies a web of intrigue waiting to be unraveled.",
        "In {title}, truth is a rare commodity, and you find yourself in a community where secrets run "
        "as deep as ancient roots. Whispered conversations stop when you approach, and knowing glances "
        "are exchanged when they think you're not looking. Something significant has happened here, "
        "and your arrival may be the key to unlocking mysteries that have plagued this place for far "
        "too long.",
    ],
}
OPENING_PROMPT_SUFFIX = "\n\nWhat would you like to do first?"

State = Literal["uninitialized", "ready", "processing"]


class CampaignNotStartedError(RuntimeError):
    """Raised when a turn is requested before initialize()."""


class NarrativeSettings(BaseModel):
    """Tunables from the `narrative` config section."""

    max_history_length: int = Field(default=15, ge=1)
    recent_turns: int = Field(default=5, ge=1)
    advance_policy: Literal["narrator", "objectives"] = "narrator"
    signal_mode: Literal["tokens", "structured"] = "tokens"
    deviation_threshold: int = Field(default=3, ge=1)
    max_emergency_scenarios: int = Field(default=5, ge=0)


def fallback_opening(roadmap: Roadmap, rng: random.Random | None = None) -> str:
    """A static theme-keyed opening; unknown themes use the heroic pool."""
    pool = FALLBACK_OPENINGS.get(roadmap.theme, FALLBACK_OPENINGS["heroic"])
    text = (rng or random).choice(pool).format(title=roadmap.title or "Epic Adventure")
    return text + OPENING_PROMPT_SUFFIX


class NarrativeOrchestrator:
    """Composition root for one campaign session.

    Collaborators are injected; anything not given is built around `llm`.
    """

    def __init__(
        self,
        llm: LLM,
        *,
        store: RoadmapStore | None = None,
        analyzer: CampaignAnalyzer | None = None,
        adaptation: AdaptationEngine | None = None,
        events: EventBus | None = None,
        settings: NarrativeSettings | None = None,
        narrator_options: GenerationOptions | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._llm = llm
        self.store = store or RoadmapStore()
        self.analyzer = analyzer or CampaignAnalyzer(llm)
        self.adaptation = adaptation or AdaptationEngine(llm)
        self.events = events or EventBus()
        self.settings = settings or NarrativeSettings()
        self._narrator_options = narrator_options or GenerationOptions()
        self._rng = rng or random.Random()

        self.history: list[ConversationEntry] = []
        self.system_context = ""
        self.emergency_mode = False
        self.deviation_count = 0
        self.redirect: str | None = None
        self._processing = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> State:
        if self._processing:
            return "processing"
        return "ready" if self.store.initialized else "uninitialized"

    @property
    def _structured_signals(self) -> bool:
        return self.settings.signal_mode == "structured"

    def _add_to_history(self, role: str, text: str) -> None:
        self.history.append(ConversationEntry(role=role, text=text))
        if len(self.history) > self.settings.max_history_length:
            self.history = self.history[-self.settings.max_history_length:]

    def _update_system_context(self) -> None:
        self.system_context = build_system_context(
            self.store.roadmap,
            self.store.campaign_context(),
            self.store.get_current_scene(),
            emergency={"scenario": self.redirect} if self.emergency_mode and self.redirect else None,
            structured_signals=self._structured_signals,
        )

    # ------------------------------------------------------------------
    # Campaign start
    # ------------------------------------------------------------------

    async def initialize(self, campaign_prompt: str, character_info: Any = "") -> OpeningResult:
        roadmap = await self.analyzer.generate_roadmap(campaign_prompt, character_info)
        self.store.initialize(roadmap)
        self.history = []
        self.emergency_mode = False
        self.deviation_count = 0
        self.redirect = None
        self._update_system_context()

        opening = await self._generate_opening(roadmap)
        self._add_to_history("narrator", opening)
        self.events.emit(EventType.CAMPAIGN_STARTED, title=roadmap.title, theme=roadmap.theme)
        logger.info("Campaign %r started", roadmap.title)
        return OpeningResult(roadmap=roadmap, opening=opening)

    async def _generate_opening(self, roadmap: Roadmap) -> str:
        options = OPENING_OPTIONS.model_copy(update={"system_context": self.system_context})
        try:
            reply = await self._llm("opening", build_opening_prompt(roadmap), options)
        except LLMError as e:
            logger.warning("Opening generation failed, using a static opening: %s", e)
            return fallback_opening(roadmap, self._rng)
        except Exception:
            logger.exception("Opening generation raised unexpectedly")
            return fallback_opening(roadmap, self._rng)

        text, _ = process_response(reply, self._structured_signals)
        if text == SHORT_RESPONSE_FALLBACK:
            logger.warning("Opening reply too short, using a static opening")
            return fallback_opening(roadmap, self._rng)
        return text

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def process_player_action(self, action: str) -> TurnResult:
        # The busy check and flag must happen before the first await.
        if not self.store.initialized:
            raise CampaignNotStartedError("Call initialize() before sending player actions")
        if self._processing:
            return TurnResult(response=BUSY_MESSAGE, busy=True)

        self._processing = True
        try:
            return await self._run_turn(action)
        except Exception:
            logger.exception("Failed to process player action %r", action[:60])
            return TurnResult(
                response=APOLOGY_MESSAGE,
                error=True,
                scene=self.store.get_current_scene(),
            )
        finally:
            self._processing = False

    async def _run_turn(self, action: str) -> TurnResult:
        self._add_to_history("player", action)

        prompt = build_action_prompt(
            self.system_context,
            self.history,
            action,
            self.store.get_current_scene(),
            recent_turns=self.settings.recent_turns,
        )
        try:
            reply = await self._llm("narrator", prompt, self._narrator_options)
        except LLMError as e:
            logger.warning("Narrator call failed: %s", e)
            return TurnResult(
                response=APOLOGY_MESSAGE,
                error=True,
                scene=self.store.get_current_scene(),
            )

        text, signals = process_response(reply, self._structured_signals)

        self.store.record_choice(action, text)
        advanced, complete = self._handle_progression(signals)

        decision = await self.adaptation.adapt(action, text, self.store)
        self.store.apply_adaptation(decision)

        if self.adaptation.is_deviation(action):
            self.deviation_count += 1
            logger.info("Deviation %d/%d: %r", self.deviation_count,
                        self.settings.deviation_threshold, action[:60])
        if signals.emergency_mode or self.deviation_count >= self.settings.deviation_threshold:
            await self._enter_emergency_mode(action)

        self._add_to_history("narrator", text)
        self._update_system_context()

        return TurnResult(
            response=text,
            signals=signals,
            roadmap=self.store.roadmap.to_wire(),
            scene=self.store.get_current_scene(),
            advanced=advanced,
            campaign_complete=complete,
        )

    def _handle_progression(self, signals: Signals) -> tuple[bool, bool]:
        """Advance once if a progression signal allows it. Returns (advanced, complete)."""
        if not (signals.scene_complete or signals.chapter_advance):
            return False, False

        scene = self.store.get_current_scene()
        if self.settings.advance_policy == "objectives" and scene.outstanding_objectives():
            logger.info("Advance refused: %d objectives outstanding in %r",
                        len(scene.outstanding_objectives()), scene.title)
            return False, False

        previous_chapter = self.store.current_chapter
        if not self.store.advance():
            self.events.emit(EventType.CAMPAIGN_COMPLETE, title=self.store.roadmap.title)
            return False, True

        # back on the planned path
        self.emergency_mode = False
        self.redirect = None
        self.deviation_count = 0

        position = {"chapter": self.store.current_chapter, "scene": self.store.current_scene}
        if self.store.current_chapter != previous_chapter:
            self.events.emit(EventType.CHAPTER_ADVANCE, **position)
        else:
            self.events.emit(EventType.SCENE_COMPLETE, **position)
        return True, False

    async def _enter_emergency_mode(self, action: str) -> None:
        roadmap = self.store.roadmap
        self.emergency_mode = True
        self.deviation_count = 0

        scenario = next((s for s in roadmap.emergency_scenarios if not s.used), None)
        if scenario is None:
            scenario = await self._generate_emergency_scenario(action)
        scenario.used = True
        self.redirect = scenario.scenario

        logger.warning("Entering emergency mode: %s", scenario.scenario[:80])
        self.events.emit(EventType.EMERGENCY_MODE, trigger=action, scenario=scenario.scenario)

    async def _generate_emergency_scenario(self, action: str) -> EmergencyScenario:
        roadmap = self.store.roadmap
        generated = [s for s in roadmap.emergency_scenarios if s.created_at is not None]
        if len(generated) >= self.settings.max_emergency_scenarios:
            logger.info("Emergency scenario limit reached, reusing the latest")
            return roadmap.emergency_scenarios[-1] if roadmap.emergency_scenarios else EmergencyScenario(
                trigger=action, scenario=DEFAULT_REDIRECT,
            )

        try:
            reply = await self._llm(
                "emergency",
                build_emergency_prompt(action, self.store.campaign_context()),
                EMERGENCY_OPTIONS,
            )
            text = " ".join(reply.split()) or DEFAULT_REDIRECT
        except LLMError as e:
            logger.warning("Emergency scenario generation failed: %s", e)
            text = DEFAULT_REDIRECT

        scenario = EmergencyScenario(trigger=action, scenario=text, created_at=now_ms())
        roadmap.emergency_scenarios.append(scenario)
        return scenario

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def campaign_state(self) -> dict[str, Any]:
        return {
            **self.store.campaign_state(),
            "state": self.state,
            "emergencyMode": self.emergency_mode,
            "deviationCount": self.deviation_count,
        }

    def export_state(self) -> dict[str, Any]:
        return {
            **self.store.export_state(),
            "conversationHistory": [e.to_wire() for e in self.history],
            "emergencyMode": self.emergency_mode,
            "deviationCount": self.deviation_count,
            "redirect": self.redirect,
        }

    def import_state(self, snapshot: dict[str, Any]) -> None:
        # everything is validated before the store or the session changes
        entries = [ConversationEntry.model_validate(e) for e in snapshot.get("conversationHistory", [])]
        deviation_count = int(snapshot.get("deviationCount", 0))
        self.store.import_state(snapshot)
        self.history = entries[-self.settings.max_history_length:]
        self.emergency_mode = bool(snapshot.get("emergencyMode", False))
        self.deviation_count = deviation_count
        self.redirect = snapshot.get("redirect")
        self._update_system_context()
