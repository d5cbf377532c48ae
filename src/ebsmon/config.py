"""JSON-backed settings for ebsmon."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "ebsmon"
CONFIG_PATH = CONFIG_DIR / "config.json"

DEFAULT_UNZIPPED_PATH = "/mnt/ebs/unzipped"
DEFAULT_BANNED_PATH = "/mnt/ebs/banned"


@dataclass
class Config:
    """Settings; CLI options override what is loaded from the file."""

    redash_url: str = "https://sql.telemetry.mozilla.org"
    redash_api_key: str = ""
    redash_data_source_id: int = 0
    push_api_key: str = ""
    unzipped: str = DEFAULT_UNZIPPED_PATH
    banned: str = DEFAULT_BANNED_PATH
    patterns: str = str(CONFIG_DIR / "patterns.json")
    outdir: str = "."
    addon_types: list[str] = field(default_factory=lambda: ["extension"])

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Create Config from dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @property
    def patterns_path(self) -> Path:
        return Path(self.patterns).expanduser()

    @property
    def unzipped_path(self) -> Path:
        return Path(self.unzipped).expanduser()

    @property
    def banned_path(self) -> Path | None:
        return Path(self.banned).expanduser() if self.banned else None


def default_config_path() -> Path:
    return Path(os.environ.get("EBSMON_CONFIG", CONFIG_PATH)).expanduser()


def load_config(path: Path | None = None) -> Config:
    """Load config from a JSON file. Returns defaults if the file is missing."""
    path = path or default_config_path()
    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return Config()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        config = Config.from_dict(raw)
    except (json.JSONDecodeError, TypeError, AttributeError) as exc:
        logger.warning("Corrupt config at %s: %s, using defaults", path, exc)
        return Config()

    logger.debug("Loaded config from %s", path)
    return config
