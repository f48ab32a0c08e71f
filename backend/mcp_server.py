"""FastMCP server exposing a campaign roadmap as MCP tools.

Tools:
  - campaign_context()                        — plain-text campaign summary
  - current_scene()                           — the scene under the cursor
  - upcoming_scenes(count)                    — the next scenes after the cursor
  - update_plot_thread(title, status, details) — merge into or create a thread

The roadmap store is a module global replaced via set_store() for tests, or
loaded from a saved campaign when run as __main__.

Usage:
    uv run python -m backend.mcp_server <campaign-slug>
"""

from mcp.server.fastmcp import FastMCP

from better_dm.roadmap import RoadmapStore

mcp = FastMCP("better-dm-roadmap")

_store: RoadmapStore = RoadmapStore()


def set_store(store: RoadmapStore) -> None:
    """Replace the active store (used in tests)."""
    global _store
    _store = store


def get_store() -> RoadmapStore:
    """Return the active store (used in tests to inspect stored state)."""
    return _store


@mcp.tool()
def campaign_context() -> dict:
    """Summarize the campaign: title, goal, progress and active plot threads."""
    return {"initialized": _store.initialized, "context": _store.campaign_context()}


@mcp.tool()
def current_scene() -> dict:
    """Return the current chapter and scene with their positions."""
    scene = _store.get_current_scene()
    if scene is None:
        return {"initialized": False}
    return {
        "initialized": True,
        "chapter": _store.current_chapter,
        "scene": _store.current_scene,
        "chapterTitle": _store.get_current_chapter().title,
        "sceneInfo": scene.to_wire(),
    }


@mcp.tool()
def upcoming_scenes(count: int = 3) -> dict:
    """List the next scenes after the cursor, crossing chapter boundaries."""
    return {"scenes": _store.upcoming_scenes(count)}


@mcp.tool()
def update_plot_thread(title: str, status: str | None = None, details: str | None = None) -> dict:
    """Update a plot thread by title, creating it if it does not exist."""
    if not _store.initialized:
        return {"error": "No campaign loaded"}
    if status is not None and status not in ("active", "developing", "resolved", "dormant", "abandoned"):
        return {"error": f"Unknown status {status!r}"}
    return _store.update_plot_thread(title, status, details).to_wire()


if __name__ == "__main__":
    import os
    import sys
    from pathlib import Path

    from better_dm.storage import Storage

    data_dir = Path(os.getenv("DATA_DIR", Path(__file__).parent.parent / "data"))
    snapshot = Storage(data_dir).load_state(sys.argv[1]) if len(sys.argv) > 1 else None
    if snapshot:
        _store.import_state(snapshot)
    mcp.run()
