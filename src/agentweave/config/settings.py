"""
Runtime configuration with environment variable support.

Values come from (highest priority first) constructor arguments, AGENTWEAVE_*
environment variables, a .env file, and the defaults below. load_from_file()
reads the same fields from YAML.
"""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings

from agentweave.core.domain.session import SessionConfiguration


class AgentweaveSettings(BaseSettings):
    """Settings for the event bus, storages, sessions, memory and logging."""

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["console", "json"] = Field(
        default="console", description="Log renderer"
    )

    # LLM
    llm_model: str = Field(default="gpt-4o-mini", description="litellm model name")

    # Event bus
    stream_buffer_size: int = Field(
        default=100, ge=1, description="Default streaming subscription buffer"
    )
    replay_history_size: int = Field(
        default=1000, ge=1, description="Events kept by the replay recorder"
    )

    # Sessions
    session_storage: Literal["memory", "file"] = Field(
        default="file", description="Session storage backend"
    )
    session_storage_dir: str = Field(
        default=".agentweave/sessions", description="Directory for session files"
    )
    session_max_messages: int = Field(default=100, ge=1)
    session_idle_timeout_minutes: int = Field(default=30, ge=1)
    session_autosave_interval_seconds: int = Field(default=60, ge=1)
    session_maintenance_enabled: bool = Field(
        default=False, description="Run periodic autosave and expiry sweeps"
    )

    # Memory
    memory_storage: Literal["memory", "file"] = Field(
        default="file", description="Memory storage backend"
    )
    memory_storage_dir: str = Field(
        default=".agentweave/memory", description="Directory for memories.json"
    )
    memory_consolidation_threshold: float = Field(default=0.1, ge=0.0, le=1.0)

    model_config = {
        "env_file": ".env",
        "env_prefix": "AGENTWEAVE_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @classmethod
    def load_from_file(cls, config_path: str | Path) -> "AgentweaveSettings":
        """Load settings from a YAML file; defaults if the file does not exist."""
        config_path = Path(config_path)
        if not config_path.exists():
            return cls()

        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def save_to_file(self, config_path: str | Path) -> None:
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.model_dump(), f, default_flow_style=False, indent=2)

    def session_configuration(self) -> SessionConfiguration:
        return SessionConfiguration(
            max_messages=self.session_max_messages,
            idle_timeout_minutes=self.session_idle_timeout_minutes,
            autosave_interval_seconds=self.session_autosave_interval_seconds,
        )
