"""Tests for the roadmap MCP tools."""

import json

import pytest
from mcp.shared.memory import create_connected_server_and_client_session

from backend import mcp_server
from better_dm.analyzer import fallback_roadmap
from better_dm.roadmap import RoadmapStore


@pytest.fixture
def store() -> RoadmapStore:
    s = RoadmapStore()
    s.initialize(fallback_roadmap("A dragon threatens the kingdom", "warrior"))
    mcp_server.set_store(s)
    yield s
    mcp_server.set_store(RoadmapStore())


def test_tools_without_campaign():
    mcp_server.set_store(RoadmapStore())
    assert mcp_server.campaign_context()["initialized"] is False
    assert mcp_server.current_scene() == {"initialized": False}
    assert mcp_server.upcoming_scenes() == {"scenes": []}
    assert "error" in mcp_server.update_plot_thread("Anything")


def test_campaign_context(store):
    result = mcp_server.campaign_context()
    assert result["initialized"] is True
    assert "Overall Goal: Defeat the ancient dragon threatening the land" in result["context"]


def test_current_scene(store):
    store.advance()
    result = mcp_server.current_scene()
    assert result["chapter"] == 0
    assert result["scene"] == 1
    assert result["chapterTitle"] == "The Call to Adventure"
    assert result["sceneInfo"]["title"] == "The Threat Revealed"


def test_upcoming_scenes(store):
    scenes = mcp_server.upcoming_scenes(count=2)["scenes"]
    assert [s["title"] for s in scenes] == ["The Threat Revealed", "First Trial"]


def test_update_plot_thread(store):
    result = mcp_server.update_plot_thread("The Villain's Plan", status="resolved", details="Foiled")
    assert result["status"] == "resolved"
    assert mcp_server.get_store().roadmap.plot_threads[1].status == "resolved"


def test_update_plot_thread_rejects_unknown_status(store):
    result = mcp_server.update_plot_thread("The Main Quest", status="forgotten")
    assert "error" in result
    assert store.roadmap.plot_threads[0].status == "active"


async def test_tools_over_mcp_session(store):
    async with create_connected_server_and_client_session(mcp_server.mcp._mcp_server) as client:
        result = await client.call_tool("upcoming_scenes", {"count": 1})
    payload = json.loads(result.content[0].text)
    assert payload["scenes"][0]["title"] == "The Threat Revealed"
