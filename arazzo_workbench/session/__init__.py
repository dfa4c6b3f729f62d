"""Per-document sessions with supersedable rebuilds."""

from arazzo_workbench.session.registry import DiagnosticsSink, InMemoryDiagnosticsSink, SessionRegistry
from arazzo_workbench.session.session import AnalysisSnapshot, DocumentSession, RebuildJob, WorkflowAnalysis
from arazzo_workbench.session.state_machine import (
    BuildState,
    BuildStateMachine,
    InvalidStateTransitionError,
)

__all__ = [
    "DiagnosticsSink",
    "InMemoryDiagnosticsSink",
    "SessionRegistry",
    "AnalysisSnapshot",
    "DocumentSession",
    "RebuildJob",
    "WorkflowAnalysis",
    "BuildState",
    "BuildStateMachine",
    "InvalidStateTransitionError",
]
