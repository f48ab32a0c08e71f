"""JSON file storage.

All state is stored in flat JSON files under a configurable base directory.
There is no database or ORM — reads and writes go through plain helper
methods that load and dump JSON.

Directory layout:

    {base}/
      config.json              ← app config (connections, generation, narrative)
      campaigns/
        {slug}.json            ← campaign metadata
        {slug}/
          state.json           ← orchestrator snapshot (roadmap, cursor, histories)
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import unicodedata
from pathlib import Path
from typing import Any

from better_dm.models import Campaign, now_ms

logger = logging.getLogger(__name__)

_CONFIG_DEFAULTS: dict[str, Any] = {
    "llm_connections": [],
    "generation": {
        "timeout": 30.0,
        "max_retries": 3,
        "retry_delay": 1.0,
        "temperature": 0.8,
        "max_tokens": 400,
        "use_local_fallback": True,
    },
    "narrative": {
        "max_history_length": 15,
        "recent_turns": 5,
        "advance_policy": "narrator",
        "signal_mode": "tokens",
        "deviation_threshold": 3,
        "max_emergency_scenarios": 5,
    },
}

# Sections merged key by key on read and write.
_NESTED_SECTIONS = ("generation", "narrative")


def slugify(title: str) -> str:
    """Convert a title to a filesystem-safe slug.

    "The Cursed Tavern" → "the-cursed-tavern"
    """
    text = unicodedata.normalize("NFKD", title)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"['\"]", "", text)  # strip apostrophes/quotes before hyphenation
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")
    return text or "untitled"


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._campaign_root = base_path / "campaigns"
        self._campaign_root.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _campaign_file(self, slug: str) -> Path:
        return self._campaign_root / f"{slug}.json"

    def _campaign_dir(self, slug: str) -> Path:
        return self._campaign_root / slug

    def _config_path(self) -> Path:
        return self._base / "config.json"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    def _unique_slug(self, title: str) -> str:
        base = slugify(title)
        slug, n = base, 2
        while self._campaign_file(slug).exists():
            slug = f"{base}-{n}"
            n += 1
        return slug

    def create_campaign(self, title: str, prompt: str = "", character_info: Any = "") -> Campaign:
        campaign = Campaign(
            slug=self._unique_slug(title),
            title=title,
            prompt=prompt,
            character_info=character_info,
        )
        self._write_json(self._campaign_file(campaign.slug), campaign.to_wire())
        self._campaign_dir(campaign.slug).mkdir(exist_ok=True)
        logger.info("Created campaign %s", campaign.slug)
        return campaign

    def get_campaign(self, slug: str) -> Campaign | None:
        path = self._campaign_file(slug)
        if not path.exists():
            return None
        return Campaign.model_validate(self._read_json(path))

    def update_campaign(self, campaign: Campaign) -> Campaign:
        campaign = campaign.model_copy(update={"updated_at": now_ms()})
        self._write_json(self._campaign_file(campaign.slug), campaign.to_wire())
        return campaign

    def list_campaigns(self) -> list[Campaign]:
        """All campaigns, most recently updated first."""
        campaigns = [
            Campaign.model_validate(self._read_json(p))
            for p in self._campaign_root.glob("*.json")
        ]
        return sorted(campaigns, key=lambda c: c.updated_at, reverse=True)

    def delete_campaign(self, slug: str) -> bool:
        path = self._campaign_file(slug)
        if not path.exists():
            return False
        path.unlink()
        if self._campaign_dir(slug).exists():
            shutil.rmtree(self._campaign_dir(slug))
        logger.info("Deleted campaign %s", slug)
        return True

    # ------------------------------------------------------------------
    # Session snapshots
    # ------------------------------------------------------------------

    def save_state(self, slug: str, snapshot: dict[str, Any]) -> None:
        self._campaign_dir(slug).mkdir(exist_ok=True)
        self._write_json(self._campaign_dir(slug) / "state.json", snapshot)

    def load_state(self, slug: str) -> dict[str, Any] | None:
        path = self._campaign_dir(slug) / "state.json"
        if not path.exists():
            return None
        return self._read_json(path)

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def get_config(self) -> dict[str, Any]:
        """Read config, returning defaults merged with stored values."""
        config: dict[str, Any] = json.loads(json.dumps(_CONFIG_DEFAULTS))
        path = self._config_path()
        if path.is_file():
            stored = self._read_json(path)
            if "llm_connections" in stored:
                config["llm_connections"] = stored["llm_connections"]
            for section in _NESTED_SECTIONS:
                if isinstance(stored.get(section), dict):
                    config[section].update(stored[section])
        return config

    def update_config(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Merge fields into config and persist. Returns full config."""
        config = self.get_config()
        if "llm_connections" in fields:
            config["llm_connections"] = fields["llm_connections"]
        for section in _NESTED_SECTIONS:
            if isinstance(fields.get(section), dict):
                config[section].update(fields[section])
        self._write_json(self._config_path(), config)
        return config
