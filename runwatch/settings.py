from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import orjson
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator


_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_CONFIG_PATH = _PROJECT_ROOT / "config" / "config.json"


class _GitHubCfg(BaseModel):
    api_url: str = "https://api.github.com"
    api_version: str = "2022-11-28"
    request_timeout_s: int = 30
    page_size: int = 100
    max_pages: int = 10

    @field_validator("page_size", "max_pages")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v


class _RetriesCfg(BaseModel):
    max_attempts: int
    reset_margin_s: float = 1.0
    fallback_wait_s: float = 60.0


class _MonitorCfg(BaseModel):
    poll_interval_s: float = 10.0
    shutdown_grace_s: float = 5.0
    retention_days: int = 7
    stale_after_s: float = 3600.0


class _StateCfg(BaseModel):
    base_dir: str


class _RawConfig(BaseModel):
    github: _GitHubCfg
    retries: _RetriesCfg
    state: _StateCfg
    monitor: Optional[Dict[str, Any]] = None
    journal: Optional[Dict[str, Any]] = None


class Settings(BaseModel):
    state_base_dir: str = Field(..., description="Directory holding persisted monitor state")
    github: Dict[str, Any]
    retries: Dict[str, Any]
    monitor: Dict[str, Any]
    journal: Dict[str, Any]

    @classmethod
    def load(cls) -> "Settings":
        # Load environment variables
        load_dotenv(dotenv_path=_PROJECT_ROOT / ".env", override=False)

        # Load and validate config
        try:
            raw_bytes = _CONFIG_PATH.read_bytes()
        except FileNotFoundError as e:
            raise FileNotFoundError(f"Missing config file at {_CONFIG_PATH}") from e
        try:
            raw_obj = orjson.loads(raw_bytes)
        except orjson.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file: {_CONFIG_PATH}") from e
        try:
            validated = _RawConfig.model_validate(raw_obj)
        except ValidationError as e:
            raise ValueError(f"Invalid config structure: {e}") from e

        # Defaults for optional sections
        monitor_cfg = _MonitorCfg().model_dump()
        if validated.monitor:
            monitor_cfg.update(validated.monitor)
        try:
            monitor_cfg = _MonitorCfg.model_validate(monitor_cfg).model_dump()
        except ValidationError as e:
            raise ValueError(f"Invalid monitor config: {e}") from e

        journal_cfg = {"path": None}
        if validated.journal:
            journal_cfg.update(validated.journal)

        return cls(
            state_base_dir=validated.state.base_dir,
            github=validated.github.model_dump(),
            retries=validated.retries.model_dump(),
            monitor=monitor_cfg,
            journal=journal_cfg,
        )

    def state_dir(self) -> Path:
        p = Path(self.state_base_dir)
        # Resolve relative to project root if relative path provided
        if not p.is_absolute():
            p = _PROJECT_ROOT / p
        p.mkdir(parents=True, exist_ok=True)
        return p

    def github_token(self) -> Optional[str]:
        return os.getenv("GITHUB_TOKEN") or None


# Singleton settings instance for convenience
settings = Settings.load()
