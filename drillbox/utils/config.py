"""Configuration management for drillbox."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from ..engine.scheduler import SchedulerParams
from ..engine.session import AnswerControls

logger = logging.getLogger(__name__)

HOME_ENV = "DRILLBOX_HOME"

DEFAULTS: Dict[str, Any] = {
    "database_path": None,          # None means <config dir>/drillbox.sqlite
    "minimum_interval_days": 1,
    "require_reveal": False,
    "requeue_lapsed": False,
    "answer_controls": AnswerControls.FULL.value,
    "busy_attempts": 5,
    "busy_backoff_ms": 20,
    "log_level": "WARNING",
}


def default_config_dir() -> Path:
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".drillbox"


class ConfigManager:
    """Manages application configuration with persistent storage."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.config_file = self.config_dir / "config.json"
        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file, falling back to defaults."""
        config = dict(DEFAULTS)
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    stored = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Ignoring unreadable config %s: %s", self.config_file, e)
            else:
                if isinstance(stored, dict):
                    config.update(stored)
                else:
                    logger.warning("Ignoring config %s: expected a JSON object", self.config_file)
        return config

    def _save_config(self) -> None:
        """Save configuration to file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, 'w') as f:
            json.dump(self._config, f, indent=2)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self._config.get(key, DEFAULTS.get(key, default))

    def set(self, key: str, value: Any) -> None:
        """Set configuration value and save."""
        if key not in DEFAULTS:
            raise KeyError(f"Unknown configuration key: {key}")
        self._config[key] = value
        self._save_config()

    def override(self, key: str, value: Any) -> None:
        """Set a value for this process only, without saving it."""
        if key not in DEFAULTS:
            raise KeyError(f"Unknown configuration key: {key}")
        self._config[key] = value

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._config)

    def database_path(self) -> str:
        path = self.get("database_path")
        if path:
            return str(Path(path).expanduser())
        return str(self.config_dir / "drillbox.sqlite")

    def scheduler_params(self) -> SchedulerParams:
        return SchedulerParams(minimum_interval_days=int(self.get("minimum_interval_days")))

    def answer_controls(self) -> AnswerControls:
        return AnswerControls(self.get("answer_controls"))
