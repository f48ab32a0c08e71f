"""Health check, settings and connection check endpoints."""

import httpx
from fastapi import APIRouter

from backend import sessions

from .models import CheckConnectionBody

router = APIRouter()

# Cheap GET endpoints that answer when the backend is up.
_PROBE_PATHS = {
    "koboldcpp": "/api/v1/model",
    "openai": "/v1/models",
    "huggingface": "",
}


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.post("/check-connection")
async def check_connection(body: CheckConnectionBody):
    """Quick health check against an LLM provider URL."""
    path = _PROBE_PATHS.get(body.provider_format, "/api/v1/model")
    url = f"{body.provider_url.rstrip('/')}{path}"
    headers: dict[str, str] = {}
    if body.api_key:
        headers["Authorization"] = f"Bearer {body.api_key}"
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            resp = await client.get(url, headers=headers)
            resp.raise_for_status()
        return {"ok": True}
    except httpx.HTTPError:
        return {"ok": False}


@router.get("/settings")
async def get_settings():
    """Get global app settings (connections, generation, narrative)."""
    return sessions.storage().get_config()


@router.patch("/settings")
async def update_settings(body: dict):
    """Update global app settings (partial merge)."""
    return sessions.storage().update_config(body)
