"""API tests: campaign lifecycle, player actions, snapshots and settings."""

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from backend import sessions
from backend.app import create_app
from tests.stubs import StubLLM

TEST_DATA_DIR = Path("data-tests")
NO_CHANGE = '{"scene": null, "chapter": null, "plot_threads": null}'

ROADMAP = {
    "title": "Salt and Iron",
    "theme": "mystery",
    "chapters": [
        {"title": "The Docks", "scenes": [
            {"title": "Gilded Anchor", "type": "social", "difficulty": 2},
            {"title": "Warehouse Nine", "type": "exploration", "difficulty": 4},
        ]},
    ],
}


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(TEST_DATA_DIR))


def _start(client, llm: StubLLM) -> str:
    sessions.set_llm(llm)
    res = client.post("/api/campaigns", json={
        "title": "Salt and Iron",
        "prompt": "Smugglers in a port city",
        "character_info": {"class": "rogue"},
    })
    assert res.status_code == 200
    return res.json()["campaign"]["slug"]


def _llm(**stages) -> StubLLM:
    responses = {
        "roadmap": [json.dumps(ROADMAP)],
        "opening": ["Rain drums on the roof of the Gilded Anchor."],
    }
    responses.update(stages)
    return StubLLM(responses)


# ── settings ────────────────────────────────────────────────


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_settings_patch_merges(client):
    res = client.patch("/api/settings", json={"narrative": {"deviation_threshold": 4}})
    assert res.status_code == 200
    settings = client.get("/api/settings").json()
    assert settings["narrative"]["deviation_threshold"] == 4
    assert settings["narrative"]["max_history_length"] == 15


def test_check_connection_unreachable(client):
    res = client.post("/api/check-connection", json={"provider_url": "http://127.0.0.1:1"})
    assert res.json() == {"ok": False}


# ── campaign lifecycle ──────────────────────────────────────


def test_create_campaign(client):
    sessions.set_llm(_llm())
    res = client.post("/api/campaigns", json={"title": "Salt and Iron", "prompt": "Smugglers"})
    body = res.json()
    assert body["campaign"]["slug"] == "salt-and-iron"
    assert body["roadmap"]["title"] == "Salt and Iron"
    assert body["opening"] == "Rain drums on the roof of the Gilded Anchor."
    assert (TEST_DATA_DIR / "campaigns" / "salt-and-iron" / "state.json").is_file()


def test_create_campaign_empty_prompt(client):
    res = client.post("/api/campaigns", json={"title": "Nothing", "prompt": "  "})
    assert res.status_code == 422


def test_list_get_delete(client):
    slug = _start(client, _llm())
    assert [c["slug"] for c in client.get("/api/campaigns").json()] == [slug]

    detail = client.get(f"/api/campaigns/{slug}").json()
    assert detail["campaign"]["title"] == "Salt and Iron"
    assert detail["state"]["state"] == "ready"

    assert client.delete(f"/api/campaigns/{slug}").json() == {"ok": True}
    assert client.get(f"/api/campaigns/{slug}").status_code == 404
    assert client.delete(f"/api/campaigns/{slug}").status_code == 404


def test_roadmap_endpoint(client):
    slug = _start(client, _llm())
    body = client.get(f"/api/campaigns/{slug}/roadmap").json()
    assert body["currentChapter"] == 0
    assert body["currentScene"] == 0
    assert body["upcomingScenes"][0]["title"] == "Warehouse Nine"


def test_roadmap_before_start_is_conflict(client):
    campaign = sessions.storage().create_campaign("Unstarted")
    res = client.get(f"/api/campaigns/{campaign.slug}/roadmap")
    assert res.status_code == 409


# ── player actions ──────────────────────────────────────────


def test_player_action_runs_turn_and_persists(client):
    slug = _start(client, _llm(
        narrator=["The contact nods and leads you out. [SCENE_COMPLETE]"],
        adaptation=[NO_CHANGE],
    ))
    res = client.post(f"/api/campaigns/{slug}/actions", json={"action": "I show the ring"})
    body = res.json()
    assert body["response"] == "The contact nods and leads you out."
    assert body["advanced"] is True
    assert body["signals"]["sceneComplete"] is True
    assert body["scene"]["title"] == "Warehouse Nine"

    saved = json.loads((TEST_DATA_DIR / "campaigns" / slug / "state.json").read_text())
    assert saved["progress"]["currentScene"] == 1
    assert saved["history"]["playerChoices"][0]["action"] == "I show the ring"


def test_player_action_apology_on_llm_failure(client):
    slug = _start(client, _llm())
    body = client.post(f"/api/campaigns/{slug}/actions", json={"action": "I wait"}).json()
    assert body["error"] is True
    assert body["scene"]["title"] == "Gilded Anchor"


def test_player_action_validation(client):
    slug = _start(client, _llm())
    assert client.post(f"/api/campaigns/{slug}/actions", json={"action": ""}).status_code == 422
    assert client.post("/api/campaigns/nope/actions", json={"action": "hi"}).status_code == 404


def test_player_action_before_start_is_conflict(client):
    campaign = sessions.storage().create_campaign("Unstarted")
    res = client.post(f"/api/campaigns/{campaign.slug}/actions", json={"action": "hi"})
    assert res.status_code == 409


def test_session_reloaded_from_disk(client):
    slug = _start(client, _llm())
    # a fresh app forgets live sessions; the snapshot is loaded on first use
    client = TestClient(create_app(TEST_DATA_DIR))
    sessions.set_llm(StubLLM({
        "narrator": ["The harbor bells ring out."],
        "adaptation": [NO_CHANGE],
    }))
    body = client.post(f"/api/campaigns/{slug}/actions", json={"action": "I listen"}).json()
    assert body["response"] == "The harbor bells ring out."
    assert body["roadmap"]["title"] == "Salt and Iron"


def test_events_endpoint(client):
    slug = _start(client, _llm())
    events = client.get(f"/api/campaigns/{slug}/events").json()
    assert [e["type"] for e in events] == ["campaign_started"]
    assert client.get("/api/campaigns/nope/events").status_code == 404


# ── export / import ─────────────────────────────────────────


def test_export_import(client):
    slug = _start(client, _llm(
        narrator=["The contact nods and leads you out. [SCENE_COMPLETE]"],
        adaptation=[NO_CHANGE],
    ))
    before = client.get(f"/api/campaigns/{slug}/export").json()
    client.post(f"/api/campaigns/{slug}/actions", json={"action": "I show the ring"})

    state = client.post(f"/api/campaigns/{slug}/import", json=before).json()
    assert state["currentScene"] == 0
    assert client.get(f"/api/campaigns/{slug}/export").json() == before


def test_import_invalid_snapshot(client):
    slug = _start(client, _llm())
    res = client.post(f"/api/campaigns/{slug}/import", json={"roadmap": {"chapters": []}})
    assert res.status_code == 422
    res = client.post(f"/api/campaigns/{slug}/import", json={"progress": {}})
    assert res.status_code == 422
