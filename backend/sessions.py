"""Active campaign sessions.

One NarrativeOrchestrator per campaign slug, created on first use and kept
in memory. Every state-changing call persists the orchestrator snapshot, so
a restarted server picks each campaign up where it left off.
"""

import logging
from pathlib import Path
from typing import Any

from backend.llm import build_llm, narrator_options
from better_dm.events import EventBus, GameEvent
from better_dm.llm import LLM
from better_dm.models import Campaign, OpeningResult, TurnResult
from better_dm.pipeline.orchestrator import NarrativeOrchestrator, NarrativeSettings
from better_dm.storage import Storage

logger = logging.getLogger(__name__)

_storage: Storage | None = None
_sessions: dict[str, NarrativeOrchestrator] = {}
_llm_override: LLM | None = None


def init_sessions(data_dir: Path) -> None:
    global _storage
    data_dir.mkdir(parents=True, exist_ok=True)
    _storage = Storage(data_dir)
    _sessions.clear()


def storage() -> Storage:
    assert _storage is not None, "Call init_sessions() before using sessions"
    return _storage


def set_llm(llm: LLM | None) -> None:
    """Use this LLM for every new session instead of the configured chain (tests)."""
    global _llm_override
    _llm_override = llm


def _log_event(event: GameEvent) -> None:
    logger.info("event %s %s", event.type.value, event.data)


def _new_orchestrator() -> NarrativeOrchestrator:
    config = storage().get_config()
    llm = _llm_override or build_llm(config)
    events = EventBus()
    events.on(None, _log_event)
    return NarrativeOrchestrator(
        llm,
        events=events,
        settings=NarrativeSettings.model_validate(config["narrative"]),
        narrator_options=narrator_options(config),
    )


def get_session(slug: str) -> NarrativeOrchestrator | None:
    """Return the live session, loading its snapshot from disk if needed."""
    if slug in _sessions:
        return _sessions[slug]
    if storage().get_campaign(slug) is None:
        return None
    orchestrator = _new_orchestrator()
    snapshot = storage().load_state(slug)
    if snapshot:
        orchestrator.import_state(snapshot)
    _sessions[slug] = orchestrator
    return orchestrator


def save(slug: str) -> None:
    orchestrator = _sessions.get(slug)
    campaign = storage().get_campaign(slug)
    if orchestrator is None or campaign is None:
        return
    storage().save_state(slug, orchestrator.export_state())
    storage().update_campaign(campaign)


async def start_campaign(
    title: str, prompt: str, character_info: Any = ""
) -> tuple[Campaign, OpeningResult]:
    campaign = storage().create_campaign(title, prompt, character_info)
    orchestrator = _new_orchestrator()
    _sessions[campaign.slug] = orchestrator
    opening = await orchestrator.initialize(prompt, character_info)
    save(campaign.slug)
    return campaign, opening


async def process_action(slug: str, action: str) -> TurnResult | None:
    orchestrator = get_session(slug)
    if orchestrator is None:
        return None
    result = await orchestrator.process_player_action(action)
    if not result.busy:
        save(slug)
    return result


def import_campaign(slug: str, snapshot: dict[str, Any]) -> NarrativeOrchestrator | None:
    orchestrator = get_session(slug)
    if orchestrator is None:
        return None
    orchestrator.import_state(snapshot)
    save(slug)
    return orchestrator


def delete_campaign(slug: str) -> bool:
    _sessions.pop(slug, None)
    return storage().delete_campaign(slug)


def event_log(slug: str) -> list[dict[str, Any]] | None:
    orchestrator = get_session(slug)
    if orchestrator is None:
        return None
    return [e.to_dict() for e in orchestrator.events.history()]

