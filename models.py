from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol

from errors import ValidationError


class CheckStatus(str, enum.Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Conclusion(str, enum.Enum):
    SUCCESS = "success"
    NEUTRAL = "neutral"
    FAILURE = "failure"
    TIMED_OUT = "timed_out"


class AnalysisMode(str, enum.Enum):
    REPORT = "report"
    AUTOCORRECT = "autocorrect"


class FixOutcome(str, enum.Enum):
    """Result of the "apply automatic fixes" requested action."""

    PUSHED = "pushed"
    NO_CHANGES = "no_changes"
    PUSH_FAILED = "push_failed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class WebhookEvent:
    event_type: str
    action: Optional[str]
    raw_body: bytes
    payload: Mapping[str, Any]
    delivery_id: str = ""

    @property
    def repository(self) -> Mapping[str, Any]:
        return self.payload.get("repository") or {}

    @property
    def installation_id(self) -> Optional[int]:
        inst = self.payload.get("installation") or {}
        if not isinstance(inst, Mapping):
            raise ValidationError(f"installation must be an object, got {type(inst).__name__}")
        raw = inst.get("id")
        if raw is None:
            return None
        if isinstance(raw, bool):
            raise ValidationError(f"installation id must be an integer, got {raw!r}")
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"installation id must be an integer, got {raw!r}")

    @property
    def sender_app_id(self) -> Optional[str]:
        """App id embedded in the event's own object, e.g. payload["check_run"]["app"]["id"]."""
        obj = self.payload.get(self.event_type)
        if not isinstance(obj, Mapping):
            return None
        app = obj.get("app") or {}
        return str(app["id"]) if app.get("id") is not None else None


@dataclass(frozen=True)
class AppAssertion:
    token: str
    issued_at: int
    expires_at: int
    issuer: str

    def __repr__(self) -> str:
        return f"AppAssertion(issuer={self.issuer!r}, issued_at={self.issued_at}, expires_at={self.expires_at})"


@dataclass(frozen=True)
class InstallationToken:
    token: str
    installation_id: int
    expires_at: Optional[str] = None

    def __repr__(self) -> str:
        return f"InstallationToken(installation_id={self.installation_id}, expires_at={self.expires_at!r})"


@dataclass(frozen=True)
class CheckRun:
    id: int
    repository_full_name: str
    head_sha: str
    head_branch: Optional[str] = None
    status: CheckStatus = CheckStatus.QUEUED
    conclusion: Optional[Conclusion] = None

    @classmethod
    def from_event(cls, event: WebhookEvent) -> "CheckRun":
        cr = event.payload["check_run"]
        suite = cr.get("check_suite") or {}
        return cls(
            id=int(cr["id"]),
            repository_full_name=event.repository["full_name"],
            head_sha=cr["head_sha"],
            head_branch=suite.get("head_branch"),
            status=_known(CheckStatus, cr.get("status"), CheckStatus.QUEUED),
            conclusion=_known(Conclusion, cr.get("conclusion"), None),
        )


@dataclass(frozen=True)
class Offense:
    start_line: int
    end_line: int
    start_column: int
    end_column: int
    message: str
    cop_name: Optional[str] = None


@dataclass(frozen=True)
class FileOffenses:
    path: str
    offenses: List[Offense] = field(default_factory=list)


@dataclass(frozen=True)
class AnalysisReport:
    offense_count: int
    target_file_count: int
    inspected_file_count: int
    tool_version: str
    files: List[FileOffenses] = field(default_factory=list)


@dataclass(frozen=True)
class Annotation:
    path: str
    start_line: int
    end_line: int
    start_column: int
    end_column: int
    message: str
    level: str = "notice"
    title: Optional[str] = None

    def to_github(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "path": self.path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "annotation_level": self.level,
            "message": self.message,
        }
        if self.title:
            out["title"] = self.title
        # GitHub rejects column ranges on multi-line annotations
        if self.start_line == self.end_line:
            out["start_column"] = self.start_column
            out["end_column"] = self.end_column
        return out


class AnalysisRunner(Protocol):
    def run(self, target_path: str, mode: AnalysisMode = AnalysisMode.REPORT) -> AnalysisReport: ...


def _known(kind, value, default):
    try:
        return kind(value)
    except ValueError:
        return default
