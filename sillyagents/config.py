"""SillyAgents — Daemon configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. Environment variables prefixed with SILLYAGENTS_
    3. System config: /etc/sillyagents/config.yaml
    4. User config:   ~/.sillyagents/config.yaml
    5. Explicit file passed to ``Settings.load()``

Top-level blocks read from files replace the whole block, so a file that
sets ``runtime:`` shadows any SILLYAGENTS_RUNTIME__* variables.

Call ``Settings.load()`` once at daemon startup and inject the instance
into the runtime and the API.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=40100, ge=1024, le=65535)
    log_level: Literal["debug", "info", "warning", "error"] = "info"
    api_token: str | None = Field(
        default=None,
        description="Required in the X-SillyAgents-Token header when set.",
    )


class RuntimeConfig(BaseModel):
    """Knobs for the loop registry, trigger evaluation and reconciliation."""

    min_interval_seconds: Annotated[float, Field(ge=5.0, le=86_400.0)] = Field(
        default=5.0,
        description="Floor applied to every subroutine's intervalSeconds.",
    )
    trigger_timeout_seconds: Annotated[float, Field(gt=0, le=300)] = Field(
        default=10.0,
        description="Upper bound for one Tool or Api trigger evaluation.",
    )
    settle_delay_seconds: Annotated[float, Field(ge=0, le=30)] = Field(
        default=0.1,
        description="Delay before reading the config of a freshly created session.",
    )
    settle_attempts: Annotated[int, Field(ge=1, le=10)] = Field(
        default=3,
        description="Reads (with doubling delay) while a new session's config is not visible yet.",
    )
    resync_interval_seconds: Annotated[float, Field(ge=0, le=3600)] = Field(
        default=30.0,
        description=(
            "Period of the full reconciliation sweep that picks up edits made by "
            "other processes. 0 disables it."
        ),
    )
    shutdown_grace_seconds: Annotated[float, Field(ge=0, le=600)] = Field(
        default=30.0,
        description="How long shutdown waits for in-flight cycles before cancelling them.",
    )
    finish_tool_name: str = Field(
        default="finish",
        description="Tool whose call marks a subroutine as done (running=false). Empty disables.",
    )
    user_name: str = Field(
        default="User",
        description="Sender name recorded on heartbeat and continuation turns.",
    )


class StoreConfig(BaseModel):
    db_path: Path = Path("~/.sillyagents/sessions.db")


class GenerationConfig(BaseModel):
    base_url: str | None = Field(
        default=None,
        description="Base URL of the generation service (POST {base_url}/generate).",
    )
    timeout_seconds: Annotated[float, Field(gt=0, le=3600)] = 120.0


class ToolsConfig(BaseModel):
    base_url: str | None = Field(
        default=None,
        description="Base URL of the tool service (POST {base_url}/tools/{name}/invoke).",
    )
    timeout_seconds: Annotated[float, Field(gt=0, le=3600)] = 60.0


class EventsConfig(BaseModel):
    log_file: Path | None = Field(
        default=Path("~/.sillyagents/events.ndjson"),
        description="NDJSON file receiving loop-state and cycle events. None disables.",
    )


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SILLYAGENTS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("store", mode="before")
    @classmethod
    def expand_store_path(cls, v: object) -> object:
        if isinstance(v, dict) and isinstance(v.get("db_path"), str):
            v["db_path"] = Path(v["db_path"]).expanduser()
        return v

    @classmethod
    def load(cls, config_file: Path | None = None) -> "Settings":
        """Load settings from file + environment variables."""
        data: dict[str, object] = {}

        candidates = [
            Path("/etc/sillyagents/config.yaml"),
            Path.home() / ".sillyagents" / "config.yaml",
        ]
        if config_file:
            candidates.append(config_file)

        for path in candidates:
            if path.exists():
                import yaml  # lazy import, only needed when a file exists

                with path.open() as f:
                    loaded = yaml.safe_load(f) or {}
                    data.update(loaded)

        return cls(**data)


# Module-level singleton, replaced by ``Settings.load()`` at daemon startup.
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def override_settings(settings: Settings) -> None:
    """Replace the module-level singleton. Used in tests."""
    global _settings
    _settings = settings
