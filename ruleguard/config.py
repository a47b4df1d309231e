"""Settings provider for RuleGuard.

Settings are read from ``~/.config/ruleguard/config.toml``; every key is
optional and falls back to the defaults below::

    [progress]
    starting_portfolio_value = 100
    target_completions = 50
    growth_per_completion = 1

    [storage]
    data_dir = "~/.config/ruleguard"
    activity_log_limit = 500
"""

import logging
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "ruleguard"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"


class Settings(BaseModel):
    """Read-only application settings."""

    starting_portfolio_value: float = Field(
        default=100.0, gt=0, description="Portfolio value progress is measured against"
    )
    target_completions: int = Field(
        default=50, gt=0, description="Completion counter saturation point"
    )
    growth_per_completion: float = Field(
        default=1.0, gt=0, description="Percent gain that makes one progress unit"
    )
    activity_log_limit: int = Field(
        default=500, gt=0, description="Maximum retained activity log entries"
    )
    data_dir: Path = Field(
        default=DEFAULT_CONFIG_DIR, description="Directory holding the databases"
    )

    model_config = {"frozen": True}

    @property
    def db_path(self) -> Path:
        """Path of the document store database."""
        return self.data_dir / "ruleguard.db"

    @property
    def attachments_path(self) -> Path:
        """Path of the attachment store database."""
        return self.data_dir / "attachments.db"


def load_settings(
    config_path: Optional[Path] = None, data_dir: Optional[Path] = None
) -> Settings:
    """Load settings from a toml file.

    Args:
        config_path: Path to the config file. Uses the default if not provided.
        data_dir: Optional override for the storage directory.

    Returns:
        Settings with defaults for anything missing. An unreadable file
        yields the defaults.
    """
    config_path = config_path or DEFAULT_CONFIG_PATH
    raw: dict = {}

    if config_path.exists():
        try:
            raw = toml.load(config_path)
        except (toml.TomlDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable config %s: %s", config_path, e)

    progress = raw.get("progress", {})
    storage = raw.get("storage", {})

    values = {
        key: progress[key]
        for key in (
            "starting_portfolio_value",
            "target_completions",
            "growth_per_completion",
        )
        if key in progress
    }
    if "activity_log_limit" in storage:
        values["activity_log_limit"] = storage["activity_log_limit"]
    if data_dir is not None:
        values["data_dir"] = data_dir
    elif "data_dir" in storage:
        values["data_dir"] = Path(storage["data_dir"]).expanduser()

    return Settings(**values)
