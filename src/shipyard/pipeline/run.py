"""Run state for the release pipeline.

A ``PipelineRun`` is owned by the orchestrator and is the only mutable
state of a run. The presentation layer polls ``snapshot()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from shipyard.constants import FAILURE_MARKER


class Stage(Enum):
    """Pipeline stages in execution order."""

    VALIDATE = "validate"
    ASSIGN_VERSION = "assign_version"
    BUILD = "build"
    SIGN = "sign"
    PACKAGE = "package"
    INSTALLER = "installer"
    PUBLISH = "publish"


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


class StageOutcome(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class RunStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class PipelineRun:
    """Mutable state of one pipeline run."""

    current_stage: Stage | None = None
    cancel_requested: bool = False
    status_message: str = "Idle"
    version: str | None = None
    outcomes: dict[Stage, StageOutcome] = field(default_factory=dict)
    started_at: str = field(default_factory=_now_iso)
    completed_at: str | None = None

    def enter(self, stage: Stage, message: str) -> None:
        self.current_stage = stage
        self.status_message = message

    def record(self, stage: Stage, outcome: StageOutcome) -> None:
        self.outcomes[stage] = outcome

    def fail(self, stage: Stage, message: str) -> None:
        self.record(stage, StageOutcome.FAILED)
        self.status_message = f"{FAILURE_MARKER}{message}"

    @property
    def failed(self) -> bool:
        return self.status_message.startswith(FAILURE_MARKER)

    def snapshot(self) -> dict[str, Any]:
        return {
            "current_stage": self.current_stage.value if self.current_stage else None,
            "cancel_requested": self.cancel_requested,
            "status": self.status_message,
            "failed": self.failed,
            "version": self.version,
            "outcomes": {stage.value: outcome.value for stage, outcome in self.outcomes.items()},
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass
class RunOutcome:
    """Result of a pipeline run."""

    status: RunStatus
    message: str
    version: str | None = None
    outcomes: dict[Stage, StageOutcome] = field(default_factory=dict)
    release_files: list[Path] = field(default_factory=list)
    release_url: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "version": self.version,
            "outcomes": {stage.value: outcome.value for stage, outcome in self.outcomes.items()},
            "release_files": [str(path) for path in self.release_files],
            "release_url": self.release_url,
        }
