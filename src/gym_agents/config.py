"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from gym_agents.core.types import AutonomyMode

BUILTIN_ROLES_DIR = str(Path(__file__).parent / "roles")


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 0  # the runtime owns retry policy for model calls
    timeout: int = 120


class ModelConfig(BaseModel):
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: float = 0.3


class PricingConfig(BaseModel):
    """USD per million tokens; billed cost is multiplied by markup."""

    input_per_million: float = 3.0
    output_per_million: float = 15.0
    markup: float = 1.3


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_timeout_seconds: float = 120.0
    model_retries: int = 1
    retry_backoff_seconds: float = 2.0
    store_retries: int = 2
    tool_timeout_seconds: float = 30.0
    approval_confidence_threshold: float = 0.8
    session_timeout_seconds: float = 600.0
    event_buffer_size: int = 64
    event_emit_timeout_seconds: float = 5.0
    default_max_turns: int = 10
    default_budget_cents: float = 50.0


class RolesConfig(BaseModel):
    roles_dir: str = BUILTIN_ROLES_DIR
    cache_ttl_seconds: float = 300.0
    fallback_tool_groups: list[str] = Field(default_factory=lambda: ["data", "conversation"])
    fallback_autonomy: AutonomyMode = AutonomyMode.SEMI_AUTO


class RoutingConfig(BaseModel):
    default_role: str = "front_desk"
    channel_roles: dict[str, str] = Field(default_factory=dict)
    history_limit: int = 20


class HandoffConfig(BaseModel):
    history_limit: int = 50
    tool_groups: list[str] = Field(
        default_factory=lambda: ["data", "conversation", "action", "learning"]
    )
    autonomy_mode: AutonomyMode = AutonomyMode.SEMI_AUTO
    max_turns: int = 15
    budget_cents: float = 75.0


class DeliveryConfig(BaseModel):
    timeout_seconds: float = 10.0
    daily_send_limit: int = 10
    from_address: str = "front-desk@example.com"


class ScheduleConfig(BaseModel):
    id: str
    cron: str
    account_id: str
    role: str = "gm"
    goal: str


class StorageConfig(BaseModel):
    db_path: str = "./data/gym_agents.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    timezone: str = "UTC"
    anthropic: Optional[AnthropicConfig] = None
    model: ModelConfig = Field(default_factory=ModelConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    roles: RolesConfig = Field(default_factory=RolesConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    handoff: HandoffConfig = Field(default_factory=HandoffConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    schedules: list[ScheduleConfig] = Field(default_factory=list)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    members_file: Optional[str] = None


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(raw_data.get("data_dir", "./data"))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
