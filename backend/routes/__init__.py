"""FastAPI API endpoints under /api.

Endpoint groups: settings (health, settings, check-connection) and campaigns
(create, list, roadmap, player actions, events, export/import). Each
campaign's resources are nested under /api/campaigns/{slug}/.
"""

from fastapi import APIRouter

from .campaigns import router as campaigns_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(campaigns_router)
