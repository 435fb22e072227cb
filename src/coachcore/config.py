import os
from dataclasses import dataclass

from coachcore.models import Tier
from coachcore.provider.chat_completions import OPENAI_BASE_URL, XAI_BASE_URL

_TRUTHY = {"1", "true", "yes", "on"}


def _env_int(name: "str", default: "int") -> "int":
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: "str", default: "float") -> "float":
    raw = os.environ.get(name, "").strip()
    return float(raw) if raw else default


def _env_bool(name: "str", default: "bool") -> "bool":
    raw = os.environ.get(name, "").strip()
    return raw.lower() in _TRUTHY if raw else default


@dataclass
class Config:
    log_level: "str" = "info"

    # primary provider
    xai_api_key: "str" = ""
    xai_base_url: "str" = XAI_BASE_URL
    xai_model: "str" = "grok-beta"

    # secondary provider
    openai_api_key: "str" = ""
    openai_base_url: "str" = OPENAI_BASE_URL
    openai_model: "str" = "gpt-4"

    # seconds before a provider attempt counts as failed
    provider_timeout: "float" = 30.0
    # upper bound on max_tokens sent for any artifact kind
    max_tokens: "int" = 4096

    # daily ceilings, zero or negative means unlimited
    free_daily_limit: "int" = 5
    pro_daily_limit: "int" = -1
    max_requests_per_minute: "int" = 60
    rate_window_seconds: "float" = 60.0

    cache_capacity: "int" = 1024
    single_flight: "bool" = False
    # seconds between cache/quota sweeps
    sweep_interval: "float" = 300.0

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            log_level=os.environ.get("COACHCORE_LOG_LEVEL", "info"),
            xai_api_key=os.environ.get("XAI_API_KEY", ""),
            xai_base_url=os.environ.get("XAI_BASE_URL", XAI_BASE_URL),
            xai_model=os.environ.get("XAI_MODEL", "grok-beta"),
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            openai_base_url=os.environ.get("OPENAI_BASE_URL", OPENAI_BASE_URL),
            openai_model=os.environ.get("OPENAI_MODEL", "gpt-4"),
            provider_timeout=_env_float("AI_TIMEOUT", 30.0),
            max_tokens=_env_int("AI_MAX_TOKENS", 4096),
            free_daily_limit=_env_int("AI_FREE_DAILY_LIMIT", 5),
            pro_daily_limit=_env_int("AI_PRO_DAILY_LIMIT", -1),
            max_requests_per_minute=_env_int("AI_MAX_REQUESTS_PER_MINUTE", 60),
            rate_window_seconds=_env_float("AI_RATE_WINDOW_SECONDS", 60.0),
            cache_capacity=_env_int("AI_CACHE_CAPACITY", 1024),
            single_flight=_env_bool("AI_SINGLE_FLIGHT", False),
            sweep_interval=_env_float("AI_SWEEP_INTERVAL", 300.0),
        )

    @property
    def xai_enabled(self) -> "bool":
        return bool(self.xai_api_key)

    @property
    def openai_enabled(self) -> "bool":
        return bool(self.openai_api_key)

    @property
    def daily_limits(self) -> "dict[Tier, int | None]":
        return {
            Tier.FREE: self.free_daily_limit if self.free_daily_limit > 0 else None,
            Tier.PRO: self.pro_daily_limit if self.pro_daily_limit > 0 else None,
        }
