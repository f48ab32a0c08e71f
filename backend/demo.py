"""Create demo campaigns for development/testing.

Demo campaigns are built with the keyword roadmap so no model is needed.
"""

import shutil

from backend import sessions
from better_dm.analyzer import fallback_roadmap
from better_dm.pipeline.orchestrator import fallback_opening
from better_dm.roadmap import RoadmapStore

DEMO_CAMPAIGNS = [
    {
        "title": "Dragon's Hollow",
        "prompt": "Deep in the mountain pass lies a village terrorized by a young dragon. "
        "The townsfolk need a hero, but things are not as simple as they seem.",
        "character_info": {"name": "Gareth", "class": "Paladin", "background": "Noble",
                           "motivation": "Protect the innocent"},
    },
    {
        "title": "The Whispering Tomb",
        "prompt": "A mystery in the old forest: travellers vanish near a sealed tomb and "
        "someone leaves clues for anyone brave enough to investigate.",
        "character_info": "Elena, a wizard seeking revenge for her lost brother",
    },
]


def create_demo_data() -> None:
    """Wipe existing campaigns and create fresh demo data."""
    storage = sessions.storage()
    campaigns_dir = storage.base_path / "campaigns"
    if campaigns_dir.exists():
        shutil.rmtree(campaigns_dir)
    campaigns_dir.mkdir(parents=True, exist_ok=True)
    sessions.init_sessions(storage.base_path)

    for demo in DEMO_CAMPAIGNS:
        campaign = sessions.storage().create_campaign(
            demo["title"], demo["prompt"], demo["character_info"]
        )
        roadmap = fallback_roadmap(demo["prompt"], demo["character_info"])
        store = RoadmapStore()
        store.initialize(roadmap)
        opening = fallback_opening(roadmap)
        sessions.storage().save_state(campaign.slug, {
            **store.export_state(),
            "conversationHistory": [{"role": "narrator", "text": opening}],
            "emergencyMode": False,
            "deviationCount": 0,
            "redirect": None,
        })
