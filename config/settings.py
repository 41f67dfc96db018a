"""
config/settings.py — Canonical configuration contract for node-doctor.

Uses pydantic-settings to load, validate, and type-check the thresholds,
timeouts and data-source knobs used by the diagnostics engine.

Two usage modes:
  Operator console / scripts:
      cfg = load_settings()              # reads from .env + os.environ
      cfg = load_settings("env/lab.env") # override env file path

  Tests (isolated — no env file, no os.environ bleed):
      cfg = Settings(MEMORY_WARN_PERCENT=70, REFRESH_TIMEOUT_SECONDS=1)
      # All values come exclusively from kwargs → clean, reproducible.
"""
from __future__ import annotations

import os
import re

from pydantic import field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class Settings(BaseSettings):
    # env_file=None disables dotenv reading, and settings_customise_sources
    # below drops env_settings too, so Settings() reads purely from kwargs.
    # load_settings() is the explicit entry point that reads both.
    model_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Only kwargs. load_settings() supplies env vars explicitly as kwargs.
        return (init_settings,)

    # -------------------------------------------------------------------------
    # Refresh lifecycle
    # -------------------------------------------------------------------------
    REFRESH_TIMEOUT_SECONDS: float = 15
    AUTO_REFRESH: bool = True
    AUTO_REFRESH_INTERVAL_SECONDS: float = 10

    # -------------------------------------------------------------------------
    # System resource thresholds
    # -------------------------------------------------------------------------
    MEMORY_WARN_PERCENT: float = 80.0
    MEMORY_FAIL_PERCENT: float = 90.0
    CPU_LOAD_WARN: float = 4.0
    # Off by default: the load heuristic ignores core count unless asked to.
    CPU_LOAD_SCALE_BY_CORES: bool = False
    CERT_WARN_DAYS: int = 30

    # -------------------------------------------------------------------------
    # Log text signal source
    # -------------------------------------------------------------------------
    NODE_LOG_SERVICE: str = "kubelet"
    DETECTION_LOG_LINES: int = 200
    HEALTH_LOG_LINES: int = 100
    RECENT_LOG_WINDOW: int = 20

    # -------------------------------------------------------------------------
    # Management API (workload orchestration)
    # -------------------------------------------------------------------------
    NETWORK_PLUGIN_NAMESPACE: str = "kube-system"
    POD_HEALTH_NAMESPACES: list[str] = ["kube-system"]

    # -------------------------------------------------------------------------
    # Convenience properties
    # -------------------------------------------------------------------------

    def load_warn_threshold(self, cpu_count: int) -> float:
        """1-minute load threshold, scaled by cores only when opted in."""
        if self.CPU_LOAD_SCALE_BY_CORES:
            return self.CPU_LOAD_WARN * max(1, cpu_count)
        return self.CPU_LOAD_WARN

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------

    @field_validator("NODE_LOG_SERVICE", "NETWORK_PLUGIN_NAMESPACE", mode="before")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        """Strip trailing whitespace that GNU make leaves after include .env."""
        return v.strip()

    @field_validator("POD_HEALTH_NAMESPACES", mode="before")
    @classmethod
    def split_namespaces(cls, v: object) -> object:
        """Accept "kube-system, monitoring" as well as a real list."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @model_validator(mode="after")
    def validate_ranges(self) -> Settings:
        """Reject thresholds and windows that would make checks meaningless."""
        for name in ("REFRESH_TIMEOUT_SECONDS", "AUTO_REFRESH_INTERVAL_SECONDS"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        for name in ("DETECTION_LOG_LINES", "HEALTH_LOG_LINES", "RECENT_LOG_WINDOW", "CERT_WARN_DAYS"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.RECENT_LOG_WINDOW > self.HEALTH_LOG_LINES:
            raise ValueError(
                f"RECENT_LOG_WINDOW ({self.RECENT_LOG_WINDOW}) must not exceed "
                f"HEALTH_LOG_LINES ({self.HEALTH_LOG_LINES})"
            )
        if not 0 < self.MEMORY_WARN_PERCENT <= 100 or not 0 < self.MEMORY_FAIL_PERCENT <= 100:
            raise ValueError("MEMORY_WARN_PERCENT and MEMORY_FAIL_PERCENT must be in (0, 100]")
        if self.MEMORY_WARN_PERCENT >= self.MEMORY_FAIL_PERCENT:
            raise ValueError("MEMORY_WARN_PERCENT must be less than MEMORY_FAIL_PERCENT")
        if self.CPU_LOAD_WARN <= 0:
            raise ValueError("CPU_LOAD_WARN must be > 0")
        if not self.NODE_LOG_SERVICE:
            raise ValueError("NODE_LOG_SERVICE must be a non-empty string")
        if not self.NETWORK_PLUGIN_NAMESPACE:
            raise ValueError("NETWORK_PLUGIN_NAMESPACE must be a non-empty string")
        return self


def load_settings(env_file: str = ".env") -> Settings:
    """Load and validate settings from an env file + os.environ.

    Manually parses the env file and merges with os.environ (os.environ wins),
    then passes only known Settings fields as explicit kwargs. The
    pydantic-settings dotenv and env source chain is disabled so that
    Settings() stays a pure validation contract (no implicit env reads).

    Raises:
        ValidationError: if a value has the wrong type or violates a range.
    """
    file_vals: dict[str, str] = {}
    try:
        with open(env_file, encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                k, _, v = line.partition("=")
                k = k.strip()
                # Strip inline comments: "15   # seconds" → "15"
                v = re.sub(r"\s+#.*$", "", v.strip())
                if k:
                    file_vals[k] = v
    except FileNotFoundError:
        pass
    merged = {**file_vals, **os.environ}  # os.environ wins
    known = {k: v for k, v in merged.items() if k in Settings.model_fields}
    return Settings(**known)
