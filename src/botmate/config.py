"""botmate settings: pydantic models filled from a YAML file and the environment."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class ChatConfig(BaseModel):
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    temperature: float = 0.7
    provider_name: str = "Anthropic"
    system_prompt: Optional[str] = None  # overrides the built-in default prompt


class TitleConfig(BaseModel):
    enabled: bool = True
    model: str = "claude-3-5-haiku-20241022"
    max_tokens: int = 64
    temperature: float = 0.2
    max_length: int = Field(default=80, gt=0)


class StorageConfig(BaseModel):
    db_path: str = "./data/botmate.db"


class MediaConfig(BaseModel):
    provider_name: str = "local"
    root_dir: str = "./data/media"
    base_url: str = "http://localhost:8000/media"
    signing_key: str = "change-me"
    url_ttl_seconds: int = Field(default=3600, gt=0)


class BotCacheConfig(BaseModel):
    ttl_seconds: float = Field(default=300.0, ge=0)


class BotPromptConfig(BaseModel):
    system_prompt: str = ""


class AppConfig(BaseModel):
    log_level: str = "INFO"
    data_dir: str = "./data"
    account: str = "default"
    actor: str = "system"
    anthropic: Optional[AnthropicConfig] = None
    chat: ChatConfig = Field(default_factory=ChatConfig)
    title: TitleConfig = Field(default_factory=TitleConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    bot_cache: BotCacheConfig = Field(default_factory=BotCacheConfig)
    bots: dict[str, BotPromptConfig] = Field(default_factory=dict)

    def bot_prompts(self) -> dict[str, str]:
        """Configured system prompts keyed by bot name (empty prompts omitted)."""
        return {name: cfg.system_prompt for name, cfg in self.bots.items() if cfg.system_prompt}


# ${NAME} or ${NAME:-fallback}
_PLACEHOLDER = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def expand_placeholders(text: str, variables: Mapping[str, str] | None = None) -> str:
    """Substitute ${NAME} from ``variables`` first, then the process environment.

    Unknown names without a fallback are left as written so validation can
    point at them.
    """
    variables = variables or {}

    def _lookup(match: re.Match) -> str:
        name, fallback = match.group(1), match.group(2)
        if name in variables:
            return variables[name]
        if name in os.environ:
            return os.environ[name]
        return fallback if fallback is not None else match.group(0)

    return _PLACEHOLDER.sub(_lookup, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Read ``config_path`` into an AppConfig.

    ``env_path`` is loaded into the environment first when it exists. Values
    may reference ``${data_dir}`` as well as environment variables.
    """
    if Path(env_path).is_file():
        load_dotenv(env_path)

    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file {path} does not exist")
    text = path.read_text(encoding="utf-8")

    # data_dir may itself use env placeholders, so resolve it before the rest.
    data_dir = expand_placeholders(str((yaml.safe_load(text) or {}).get("data_dir", "./data")))
    data = yaml.safe_load(expand_placeholders(text, {"data_dir": data_dir})) or {}
    return AppConfig.model_validate(data)
