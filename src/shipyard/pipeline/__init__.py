"""Release pipeline: build, sign, package, installer, publish."""

from shipyard.pipeline.orchestrator import PipelineOrchestrator
from shipyard.pipeline.run import PipelineRun, RunOutcome, RunStatus, Stage, StageOutcome

__all__ = [
    "PipelineOrchestrator",
    "PipelineRun",
    "RunOutcome",
    "RunStatus",
    "Stage",
    "StageOutcome",
]
