"""Agent configuration: dataclass defaults, config.json, env overrides."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from memorypilot.decay import DECAY_INTERVAL

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"
DB_FILENAME = "memories.db"
PID_FILENAME = "daemon.pid"


def default_home() -> Path:
    env = os.getenv("MEMORYPILOT_HOME", "").strip()
    if env:
        return Path(env).expanduser()
    return Path.home() / ".memorypilot"


def _default_roots() -> list[str]:
    home = Path.home()
    return [
        str(home / "Documents" / "source-code"),
        str(home / "Projects"),
        str(home / "code"),
        str(home / "dev"),
    ]


def _default_history() -> list[str]:
    home = Path.home()
    return [str(home / ".zsh_history"), str(home / ".bash_history")]


@dataclass
class AgentConfig:
    home: Path = field(default_factory=default_home)

    # batching
    batch_size: int = 10
    batch_wait: float = 5.0
    queue_capacity: int = 10_000
    decay_interval: float = DECAY_INTERVAL

    # watchers
    git_enabled: bool = True
    git_interval: float = 30.0
    file_enabled: bool = True
    file_debounce: float = 0.5
    file_interval: float = 1.0
    terminal_enabled: bool = True
    terminal_interval: float = 5.0
    watch_roots: list[str] = field(default_factory=_default_roots)
    history_files: list[str] = field(default_factory=_default_history)

    # gateways
    extraction_provider: str = "ollama"   # ollama | anthropic | none
    extraction_model: str = "llama3.2"
    extraction_timeout: float = 120.0
    ollama_url: str = "http://localhost:11434"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-haiku-latest"
    embedding_provider: str = "ollama"    # ollama | hashing | none
    embedding_model: str = "nomic-embed-text"

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.home = Path(self.home).expanduser()

    @property
    def data_dir(self) -> Path:
        return self.home / "data"

    @property
    def logs_dir(self) -> Path:
        return self.home / "logs"

    @property
    def db_path(self) -> Path:
        return self.data_dir / DB_FILENAME

    @property
    def config_path(self) -> Path:
        return self.home / CONFIG_FILENAME

    @property
    def pid_path(self) -> Path:
        return self.data_dir / PID_FILENAME

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data.pop("home")
        return data


_ENV_OVERRIDES = {
    "MEMORYPILOT_OLLAMA_URL": "ollama_url",
    "MEMORYPILOT_EXTRACTION_PROVIDER": "extraction_provider",
    "MEMORYPILOT_MODEL": "extraction_model",
    "MEMORYPILOT_EMBEDDING_PROVIDER": "embedding_provider",
    "MEMORYPILOT_EMBEDDING_MODEL": "embedding_model",
    "MEMORYPILOT_LOG_LEVEL": "log_level",
    "ANTHROPIC_API_KEY": "anthropic_api_key",
}


def load_config(home: str | Path | None = None) -> AgentConfig:
    """Defaults, then ``<home>/config.json``, then environment variables."""
    config = AgentConfig(home=Path(home) if home else default_home())
    known = {f.name for f in dataclasses.fields(AgentConfig)} - {"home"}

    if config.config_path.exists():
        try:
            raw = json.loads(config.config_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable config %s: %s",
                           config.config_path, exc)
            raw = {}
        for key, value in raw.items():
            if key in known:
                setattr(config, key, value)
            else:
                logger.warning("Unknown config key %r in %s", key,
                               config.config_path)

    for env_name, attr in _ENV_OVERRIDES.items():
        value = os.getenv(env_name, "").strip()
        if value:
            setattr(config, attr, value)
    return config


def write_default_config(config: AgentConfig) -> bool:
    """Write config.json unless one exists. Returns True if written."""
    if config.config_path.exists():
        return False
    data = config.to_dict()
    data.pop("anthropic_api_key")  # read from the environment instead
    config.config_path.parent.mkdir(parents=True, exist_ok=True)
    config.config_path.write_text(json.dumps(data, indent=2) + "\n",
                                  encoding="utf-8")
    return True
