#!/usr/bin/env python3
"""MetroTex Configuration - immutable settings loaded from the environment"""

import os
from enum import Enum
from functools import lru_cache
from typing import Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


# Provider enums
class ChatProvider(str, Enum):
    ECHO = "echo"
    OPENROUTER = "openrouter"
    GEMINI = "gemini"


DEFAULT_MODEL_GROUPS: Tuple[Tuple[str, ...], ...] = (
    ("stable_diffusion",),
    ("Deliberate", "Dreamshaper"),
    ("AlbedoBase XL (SDXL)",),
)


# Config models
class HordeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str = "0000000000"
    base_url: str = "https://stablehorde.net/api/v2"
    client_agent: str = "metrotex:0.1.0:unknown"
    model_groups: Tuple[Tuple[str, ...], ...] = DEFAULT_MODEL_GROUPS
    submit_timeout: float = 15.0
    status_timeout: float = 10.0
    poll_interval: float = 2.0
    max_attempts: int = Field(default=60, ge=1)
    poll_backoff: float = Field(default=1.0, ge=1.0)
    max_poll_interval: float = 10.0
    poll_jitter: float = Field(default=0.0, ge=0.0)
    nsfw: bool = False
    wait_for_result: bool = False
    # Request defaults
    width: int = 512
    height: int = 512
    steps: int = 20
    sampler_name: str = "k_euler"
    cfg_scale: float = 7.0


class ChatConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: ChatProvider = ChatProvider.ECHO
    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_models: Tuple[str, ...] = ("mistralai/mistral-7b-instruct",)
    gemini_api_key: Optional[str] = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-1.5-flash"
    temperature: float = 0.7
    timeout: float = 30.0
    system_prompt: Optional[str] = None
    http_referer: Optional[str] = None
    x_title: Optional[str] = None


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    app_name: str = "MetroTex AI Backend"
    database_url: Optional[str] = None
    cors_origins: Tuple[str, ...] = (
        "https://metrotexonline.vercel.app",
        "http://localhost:3000",
    )
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    horde: HordeConfig = Field(default_factory=HordeConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> Tuple[str, ...]:
    value = os.getenv(name, "")
    return tuple(item.strip() for item in value.split(",") if item.strip())


def parse_model_groups(raw: str) -> Tuple[Tuple[str, ...], ...]:
    """Parse ``"a,b;c"`` into ``(("a", "b"), ("c",))``.

    Groups are separated by semicolons and models inside a group by commas.
    Blank groups are dropped.
    """
    groups = []
    for chunk in raw.split(";"):
        models = tuple(m.strip() for m in chunk.split(",") if m.strip())
        if models:
            groups.append(models)
    return tuple(groups)


def _default_chat_provider(openrouter_key: Optional[str], gemini_key: Optional[str]) -> ChatProvider:
    explicit = os.getenv("CHAT_PROVIDER")
    if explicit:
        return ChatProvider(explicit.strip().lower())
    if openrouter_key:
        return ChatProvider.OPENROUTER
    if gemini_key:
        return ChatProvider.GEMINI
    return ChatProvider.ECHO


def load_settings() -> Settings:
    """Build the settings struct from environment variables."""
    horde_kwargs = {}
    if os.getenv("STABLE_HORDE_API_KEY"):
        horde_kwargs["api_key"] = os.getenv("STABLE_HORDE_API_KEY").strip()
    if os.getenv("STABLE_HORDE_BASE_URL"):
        horde_kwargs["base_url"] = os.getenv("STABLE_HORDE_BASE_URL").rstrip("/")
    if os.getenv("STABLE_HORDE_CLIENT_AGENT"):
        horde_kwargs["client_agent"] = os.getenv("STABLE_HORDE_CLIENT_AGENT")
    if os.getenv("HORDE_MODEL_GROUPS"):
        horde_kwargs["model_groups"] = parse_model_groups(os.getenv("HORDE_MODEL_GROUPS"))
    for env_name, field, cast in (
        ("HORDE_SUBMIT_TIMEOUT", "submit_timeout", float),
        ("HORDE_STATUS_TIMEOUT", "status_timeout", float),
        ("HORDE_POLL_INTERVAL", "poll_interval", float),
        ("HORDE_MAX_ATTEMPTS", "max_attempts", int),
        ("HORDE_POLL_BACKOFF", "poll_backoff", float),
        ("HORDE_MAX_POLL_INTERVAL", "max_poll_interval", float),
        ("HORDE_POLL_JITTER", "poll_jitter", float),
    ):
        if os.getenv(env_name):
            horde_kwargs[field] = cast(os.getenv(env_name))
    horde_kwargs["nsfw"] = _env_bool("HORDE_NSFW", False)
    horde_kwargs["wait_for_result"] = _env_bool("IMAGE_WAIT_FOR_RESULT", False)

    openrouter_key = (os.getenv("OPENROUTER_API_KEY") or "").strip() or None
    gemini_key = (os.getenv("GEMINI_API_KEY") or "").strip() or None
    chat_kwargs = {
        "provider": _default_chat_provider(openrouter_key, gemini_key),
        "openrouter_api_key": openrouter_key,
        "gemini_api_key": gemini_key,
        "system_prompt": os.getenv("CHAT_SYSTEM_PROMPT") or None,
        "http_referer": os.getenv("HTTP_REFERER") or None,
        "x_title": os.getenv("X_TITLE") or None,
    }
    if os.getenv("OPENROUTER_BASE_URL"):
        chat_kwargs["openrouter_base_url"] = os.getenv("OPENROUTER_BASE_URL").rstrip("/")
    if _env_list("OPENROUTER_MODELS"):
        chat_kwargs["openrouter_models"] = _env_list("OPENROUTER_MODELS")
    if os.getenv("GEMINI_BASE_URL"):
        chat_kwargs["gemini_base_url"] = os.getenv("GEMINI_BASE_URL").rstrip("/")
    if os.getenv("GEMINI_MODEL"):
        chat_kwargs["gemini_model"] = os.getenv("GEMINI_MODEL")
    if os.getenv("CHAT_TEMPERATURE"):
        chat_kwargs["temperature"] = float(os.getenv("CHAT_TEMPERATURE"))
    if os.getenv("CHAT_TIMEOUT"):
        chat_kwargs["timeout"] = float(os.getenv("CHAT_TIMEOUT"))

    settings_kwargs = {
        "database_url": os.getenv("DATABASE_URL") or None,
        "host": os.getenv("HOST", "0.0.0.0"),
        "port": int(os.getenv("PORT", "3000")),
        "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
        "horde": HordeConfig(**horde_kwargs),
        "chat": ChatConfig(**chat_kwargs),
    }
    if _env_list("CORS_ORIGINS"):
        settings_kwargs["cors_origins"] = _env_list("CORS_ORIGINS")
    return Settings(**settings_kwargs)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()


def mask_secret(value: Optional[str]) -> Optional[str]:
    """Mask sensitive values"""
    if not value:
        return None
    if len(value) <= 4:
        return "*" * len(value)
    return value[:2] + "*" * (len(value) - 4) + value[-2:]
