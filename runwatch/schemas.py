from __future__ import annotations

import datetime as _dt
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .status import NormalizedStatus, normalize


def utc_now() -> _dt.datetime:
    return _dt.datetime.now(tz=_dt.timezone.utc)


def as_utc(value: Optional[_dt.datetime]) -> Optional[_dt.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=_dt.timezone.utc)
    return value.astimezone(_dt.timezone.utc)


def iso_z(value: _dt.datetime) -> str:
    """UTC ISO 8601 with a 'Z' suffix, e.g. 2024-05-01T10:00:00Z."""
    return as_utc(value).isoformat().replace("+00:00", "Z")


class _ProviderModel(BaseModel):
    # GitHub payloads carry many fields we do not use
    model_config = ConfigDict(extra="ignore", frozen=True)

    @field_validator("*", mode="after")
    @classmethod
    def _utc_timestamps(cls, v):
        if isinstance(v, _dt.datetime):
            return as_utc(v)
        return v


class Step(_ProviderModel):
    name: str = ""
    status: Optional[str] = None
    conclusion: Optional[str] = None
    number: int
    started_at: Optional[_dt.datetime] = None
    completed_at: Optional[_dt.datetime] = None

    @property
    def normalized_status(self) -> NormalizedStatus:
        return normalize(self.status, self.conclusion)


class Job(_ProviderModel):
    id: int
    name: str = ""
    status: Optional[str] = None
    conclusion: Optional[str] = None
    started_at: Optional[_dt.datetime] = None
    completed_at: Optional[_dt.datetime] = None
    steps: List[Step] = Field(default_factory=list)

    @field_validator("steps", mode="before")
    @classmethod
    def _steps_default(cls, v):
        return [] if v is None else v

    @property
    def normalized_status(self) -> NormalizedStatus:
        return normalize(self.status, self.conclusion)


class Run(_ProviderModel):
    id: int
    name: Optional[str] = None
    status: Optional[str] = None
    conclusion: Optional[str] = None
    head_branch: Optional[str] = None
    head_sha: Optional[str] = None
    created_at: _dt.datetime
    updated_at: _dt.datetime
    run_started_at: Optional[_dt.datetime] = None

    @property
    def normalized_status(self) -> NormalizedStatus:
        return normalize(self.status, self.conclusion)


class Level(str, Enum):
    RUN = "RUN"
    JOB = "JOB"
    STEP = "STEP"


class WorkflowEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    time: _dt.datetime
    level: Level
    status: NormalizedStatus
    branch: Optional[str] = None
    sha: Optional[str] = None
    name: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.entity_id}_{iso_z(self.time)}_{self.level.value}_{self.status.value}"

    @property
    def short_sha(self) -> Optional[str]:
        if self.sha is None or len(self.sha) < 7:
            return self.sha
        return self.sha[:7]


class MonitorState(BaseModel):
    last_run_time: _dt.datetime = Field(default_factory=utc_now)
    already_seen_keys: Dict[str, _dt.datetime] = Field(default_factory=dict)

    @field_validator("last_run_time", mode="before")
    @classmethod
    def _watermark_default(cls, v):
        return utc_now() if v is None else v

    @field_validator("already_seen_keys", mode="before")
    @classmethod
    def _ledger_default(cls, v):
        return {} if v is None else v

    @field_validator("last_run_time", mode="after")
    @classmethod
    def _watermark_utc(cls, v: _dt.datetime) -> _dt.datetime:
        return as_utc(v)

    @field_validator("already_seen_keys", mode="after")
    @classmethod
    def _ledger_utc(cls, v: Dict[str, _dt.datetime]) -> Dict[str, _dt.datetime]:
        return {k: as_utc(t) for k, t in v.items()}


class TickOutcome(BaseModel):
    status: Literal["completed", "faulted"]
    runs_scanned: int = 0
    runs_backfilled: int = 0
    events_emitted: int = 0
    watermark: _dt.datetime
    error: Optional[str] = None
    persisted: bool = False

    @property
    def ok(self) -> bool:
        return self.status == "completed"
