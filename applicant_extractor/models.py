"""Domain models for applicant extraction runs."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from orchestration.errors import ValidationError


class Phase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_PHASES


TERMINAL_PHASES = frozenset({Phase.COMPLETED, Phase.ERROR, Phase.CANCELLED})
ACTIVE_PHASES = frozenset({Phase.CONNECTING, Phase.RUNNING, Phase.PAUSED})


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NAVIGATION = "navigation"
    RETRYABLE = "retryable"
    TIMEOUT = "timeout"
    FATAL = "fatal"
    DOWNLOAD = "download"
    CANCELLED = "cancelled"


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ApplicantRef:
    profile_id: str
    name: str = ""
    profile_url: str = ""
    headline: str = ""
    location: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ApplicantRef":
        """Build a ref from an applicant card, accepting camelCase or snake_case keys."""
        profile_url = data.get("profileUrl") or data.get("profile_url") or ""
        profile_id = data.get("profileId") or data.get("profile_id") or ""
        if not profile_id and "/in/" in profile_url:
            profile_id = profile_url.split("/in/", 1)[1].strip("/")
        known = {
            "profileId",
            "profile_id",
            "profileUrl",
            "profile_url",
            "name",
            "headline",
            "location",
        }
        return cls(
            profile_id=str(profile_id),
            name=str(data.get("name", "")),
            profile_url=str(profile_url),
            headline=str(data.get("headline", "")),
            location=str(data.get("location", "")),
            extra={k: v for k, v in data.items() if k not in known},
        )

    @property
    def label(self) -> str:
        return self.name or self.profile_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profileId": self.profile_id,
            "name": self.name,
            "profileUrl": self.profile_url,
            "headline": self.headline,
            "location": self.location,
            **dict(self.extra),
        }


@dataclass(frozen=True)
class ProfileData:
    profile_id: str
    name: str = ""
    headline: str = ""
    location: str = ""
    about: str = ""
    experience: Tuple[Mapping[str, Any], ...] = ()
    education: Tuple[Mapping[str, Any], ...] = ()
    skills: Tuple[str, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProfileData":
        return cls(
            profile_id=str(data.get("profileId") or data.get("profile_id") or ""),
            name=str(data.get("name", "")),
            headline=str(data.get("headline", "")),
            location=str(data.get("location", "")),
            about=str(data.get("about", "")),
            experience=tuple(data.get("experience") or ()),
            education=tuple(data.get("education") or ()),
            skills=tuple(str(s) for s in data.get("skills") or ()),
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profileId": self.profile_id,
            "name": self.name,
            "headline": self.headline,
            "location": self.location,
            "about": self.about,
            "experience": [dict(e) for e in self.experience],
            "education": [dict(e) for e in self.education],
            "skills": list(self.skills),
        }


@dataclass(frozen=True)
class DownloadResult:
    success: bool
    file_path: Optional[str] = None
    message: Optional[str] = None
    file_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "filePath": self.file_path,
            "message": self.message,
            "fileSize": self.file_size,
        }


@dataclass(frozen=True)
class ItemResult:
    source_ref: ApplicantRef
    success: bool
    attempts: int
    profile: Optional[ProfileData] = None
    cv_download: Optional[DownloadResult] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceRef": self.source_ref.to_dict(),
            "success": self.success,
            "profile": self.profile.to_dict() if self.profile else None,
            "cvDownload": self.cv_download.to_dict() if self.cv_download else None,
            "attempts": self.attempts,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ErrorRecord:
    item_ref: Optional[ApplicantRef]
    error_kind: ErrorKind
    message: str
    recoverable: bool
    error_code: str = "GENERAL_ERROR"
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "itemRef": self.item_ref.to_dict() if self.item_ref else None,
            "errorKind": self.error_kind.value,
            "errorCode": self.error_code,
            "message": self.message,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ExtractionTarget:
    """Immutable configuration for one run."""

    job_id: str
    max_items: int = 100
    batch_size: int = 5
    cooldown_ms: int = 3000
    applicant_view_id: Optional[str] = None
    fetch_profiles: bool = True
    download_cvs: bool = False
    item_timeout_seconds: Optional[float] = None

    _ALIASES = {
        "jobId": "job_id",
        "applicantViewId": "applicant_view_id",
        "maxItems": "max_items",
        "maxApplicants": "max_items",
        "batchSize": "batch_size",
        "cooldownMs": "cooldown_ms",
        "pauseBetweenBatches": "cooldown_ms",
        "fetchProfiles": "fetch_profiles",
        "getDetailedProfiles": "fetch_profiles",
        "downloadCVs": "download_cvs",
        "itemTimeoutSeconds": "item_timeout_seconds",
    }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExtractionTarget":
        kwargs = {cls._ALIASES.get(key, key): value for key, value in data.items()}
        try:
            return cls(**kwargs)
        except TypeError as exc:
            raise ValidationError(f"Invalid extraction target: {exc}") from exc

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "applicantViewId": self.applicant_view_id,
            "maxItems": self.max_items,
            "batchSize": self.batch_size,
            "cooldownMs": self.cooldown_ms,
            "fetchProfiles": self.fetch_profiles,
            "downloadCVs": self.download_cvs,
            "itemTimeoutSeconds": self.item_timeout_seconds,
        }


@dataclass(frozen=True)
class BatchPlan:
    batch_index: int
    total_batches: int
    items: Tuple[ApplicantRef, ...]
    start_offset: int = 0

    @property
    def is_last(self) -> bool:
        return self.batch_index == self.total_batches - 1


@dataclass
class BatchCounters:
    current: int = 0
    total: int = 0
    completed: int = 0


@dataclass
class OperationState:
    """Mutable state of one run. Only the state machine touches it."""

    id: str
    phase: Phase = Phase.IDLE
    target: Optional[ExtractionTarget] = None
    cursor: int = 0
    total_items: int = 0
    processed_items: List[ItemResult] = field(default_factory=list)
    errors: List[ErrorRecord] = field(default_factory=list)
    batches: BatchCounters = field(default_factory=BatchCounters)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    pause_requested: bool = False
    cancel_requested: bool = False
    fatal_error: Optional[ErrorRecord] = None


@dataclass(frozen=True)
class OperationSnapshot:
    """Point-in-time copy of an OperationState handed to callers."""

    id: str
    phase: Phase
    target: Optional[ExtractionTarget]
    cursor: int
    total_items: int
    processed_items: Tuple[ItemResult, ...]
    errors: Tuple[ErrorRecord, ...]
    batch_current: int
    batch_total: int
    batch_completed: int
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    pause_requested: bool
    cancel_requested: bool
    fatal_error: Optional[ErrorRecord]

    @property
    def percentage(self) -> int:
        if self.total_items <= 0:
            return 100 if self.phase is Phase.COMPLETED else 0
        return math.floor(self.cursor * 100 / self.total_items)

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.processed_items if item.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for item in self.processed_items if not item.success)

    def running_time_seconds(self, now: Optional[datetime] = None) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time or now or utc_now()
        return (end - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "phase": self.phase.value,
            "target": self.target.to_dict() if self.target else None,
            "cursor": self.cursor,
            "total": self.total_items,
            "percentage": self.percentage,
            "processedItems": [item.to_dict() for item in self.processed_items],
            "errors": [err.to_dict() for err in self.errors],
            "batches": {
                "current": self.batch_current,
                "total": self.batch_total,
                "completed": self.batch_completed,
            },
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "pauseRequested": self.pause_requested,
            "cancelRequested": self.cancel_requested,
        }
