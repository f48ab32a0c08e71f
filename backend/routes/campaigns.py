"""Campaign CRUD + roadmap + player action endpoints."""

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from backend import sessions
from better_dm.pipeline.orchestrator import CampaignNotStartedError

from .models import ActionBody, CreateCampaign

router = APIRouter()


def _session_or_404(slug: str):
    orchestrator = sessions.get_session(slug)
    if orchestrator is None:
        raise HTTPException(404, "Campaign not found")
    return orchestrator


@router.get("/campaigns")
async def list_campaigns():
    """List all campaigns, most recently played first."""
    return [c.to_wire() for c in sessions.storage().list_campaigns()]


@router.post("/campaigns")
async def create_campaign(body: CreateCampaign):
    """Generate a roadmap and opening for a new campaign."""
    if not body.prompt.strip():
        raise HTTPException(422, "Campaign prompt must not be empty")
    campaign, opening = await sessions.start_campaign(
        body.title or body.prompt[:40], body.prompt, body.character_info
    )
    return {
        "campaign": campaign.to_wire(),
        "roadmap": opening.roadmap.to_wire(),
        "opening": opening.opening,
    }


@router.get("/campaigns/{slug}")
async def get_campaign(slug: str):
    """Campaign metadata plus the current progress summary."""
    campaign = sessions.storage().get_campaign(slug)
    if not campaign:
        raise HTTPException(404, "Campaign not found")
    return {"campaign": campaign.to_wire(), "state": _session_or_404(slug).campaign_state()}


@router.delete("/campaigns/{slug}")
async def delete_campaign(slug: str):
    """Delete a campaign and its saved session."""
    if not sessions.delete_campaign(slug):
        raise HTTPException(404, "Campaign not found")
    return {"ok": True}


@router.get("/campaigns/{slug}/roadmap")
async def get_roadmap(slug: str):
    """Full roadmap with the cursor and the next scenes."""
    store = _session_or_404(slug).store
    if not store.initialized:
        raise HTTPException(409, "Campaign has not started")
    return {
        "roadmap": store.roadmap.to_wire(),
        "currentChapter": store.current_chapter,
        "currentScene": store.current_scene,
        "upcomingScenes": store.upcoming_scenes(3),
    }


@router.post("/campaigns/{slug}/actions")
async def player_action(slug: str, body: ActionBody):
    """Send a player action and run one narrative turn."""
    if not body.action.strip():
        raise HTTPException(422, "Action must not be empty")
    try:
        result = await sessions.process_action(slug, body.action)
    except CampaignNotStartedError as e:
        raise HTTPException(409, str(e))
    if result is None:
        raise HTTPException(404, "Campaign not found")
    return result.to_wire()


@router.get("/campaigns/{slug}/events")
async def get_events(slug: str):
    """Events emitted by the live session, oldest first."""
    events = sessions.event_log(slug)
    if events is None:
        raise HTTPException(404, "Campaign not found")
    return events


@router.get("/campaigns/{slug}/export")
async def export_campaign(slug: str):
    """Full session snapshot for download."""
    return _session_or_404(slug).export_state()


@router.post("/campaigns/{slug}/import")
async def import_campaign(slug: str, body: dict):
    """Replace the session with a previously exported snapshot."""
    try:
        orchestrator = sessions.import_campaign(slug, body)
    except (ValidationError, ValueError) as e:
        raise HTTPException(422, f"Invalid snapshot: {e}")
    if orchestrator is None:
        raise HTTPException(404, "Campaign not found")
    return orchestrator.campaign_state()
