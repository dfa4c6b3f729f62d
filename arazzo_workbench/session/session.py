"""
Per-document analysis sessions.

A DocumentSession owns the latest published AnalysisSnapshot of one document.
Every change schedules a RebuildJob that runs the pipeline one stage at a time
(parse, build, validate, graph, symbols). Scheduling a new job supersedes the
unfinished one, and a superseded job never publishes, so consumers only ever
see the most recent completed build. Snapshots are swapped in by a single
assignment and never mutated afterwards.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from arazzo_workbench.config.settings import AnalysisSettings
from arazzo_workbench.core.builder import DocumentModelBuilder
from arazzo_workbench.core.diagnostics import Diagnostic, DiagnosticKind, Severity, dedupe_diagnostics
from arazzo_workbench.core.graph import TransitionGraph, build_graph
from arazzo_workbench.core.ir import GraphIR, to_ir
from arazzo_workbench.core.models import DocumentModel
from arazzo_workbench.core.symbols import SymbolNode, build_symbols
from arazzo_workbench.core.validator import validate
from arazzo_workbench.parsing.yaml_loader import load_document
from arazzo_workbench.session.state_machine import BuildState, BuildStateMachine

logger = logging.getLogger(__name__)

SnapshotListener = Callable[["AnalysisSnapshot"], None]


@dataclass(frozen=True)
class WorkflowAnalysis:
    """Derived graph artifacts of one workflow."""

    workflow_id: str
    graph: TransitionGraph
    ir: GraphIR


@dataclass(frozen=True)
class AnalysisSnapshot:
    """Immutable result of one completed rebuild."""

    document_id: str
    version: int
    model: Optional[DocumentModel]
    diagnostics: tuple[Diagnostic, ...] = ()
    workflows: tuple[WorkflowAnalysis, ...] = ()
    symbols: tuple[SymbolNode, ...] = ()

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowAnalysis]:
        for analysis in self.workflows:
            if analysis.workflow_id == workflow_id:
                return analysis
        return None

    @property
    def workflow_ids(self) -> list[str]:
        return [analysis.workflow_id for analysis in self.workflows]

    @property
    def has_errors(self) -> bool:
        return any(d.is_error for d in self.diagnostics)


@dataclass
class _PipelineState:
    """Intermediate results carried between stages."""

    diagnostics: list[Diagnostic] = field(default_factory=list)
    model: Optional[DocumentModel] = None
    workflows: list[WorkflowAnalysis] = field(default_factory=list)
    symbols: list[SymbolNode] = field(default_factory=list)


class RebuildJob:
    """
    One supersedable rebuild of a document.

    advance() runs a single stage; run() drives the job to a terminal state.
    The owning session is checked before every stage and before publishing.
    """

    def __init__(
        self,
        session: "DocumentSession",
        text: str,
        version: int,
        settings: AnalysisSettings,
    ):
        self.session = session
        self.text = text
        self.version = version
        self.settings = settings
        self.snapshot: Optional[AnalysisSnapshot] = None
        self.error: Optional[Exception] = None

        self._state_machine = BuildStateMachine()
        self._pipeline = _PipelineState()
        self._stages = self._run_stages()

    @property
    def state(self) -> BuildState:
        return self._state_machine.state

    @property
    def is_finished(self) -> bool:
        return self._state_machine.is_terminal

    @property
    def history(self):
        return self._state_machine.history

    def supersede(self, reason: str = "newer change scheduled") -> None:
        """Discard this job; a no-op once it has finished."""
        if not self.is_finished:
            self._state_machine.transition(BuildState.SUPERSEDED, reason=reason)
            logger.debug(f"Rebuild v{self.version} of {self.session.document_id} superseded: {reason}")

    def advance(self) -> bool:
        """
        Run the next pipeline stage.

        Returns:
            True while more work remains, False once the job is terminal
        """
        if self.is_finished:
            return False
        if self.session.current_job is not self:
            self.supersede("no longer the session's current job")
            return False

        if self.state == BuildState.PENDING:
            self._state_machine.transition(BuildState.RUNNING)

        try:
            stage = next(self._stages)
        except StopIteration:
            self._publish()
            return False
        except Exception as e:
            self.error = e
            logger.error(
                f"Rebuild v{self.version} of {self.session.document_id} failed: {e}",
                exc_info=True,
            )
            self._state_machine.transition(BuildState.FAILED, reason=str(e))
            return False

        logger.debug(f"Rebuild v{self.version} of {self.session.document_id}: {stage} done")
        return True

    def run(self) -> BuildState:
        """Run all remaining stages."""
        while self.advance():
            pass
        return self.state

    def _publish(self) -> None:
        published = self.session.snapshot
        if published is not None and published.version > self.version:
            self.supersede(f"older than published v{published.version}")
            return

        self.snapshot = AnalysisSnapshot(
            document_id=self.session.document_id,
            version=self.version,
            model=self._pipeline.model,
            diagnostics=tuple(dedupe_diagnostics(self._pipeline.diagnostics)),
            workflows=tuple(self._pipeline.workflows),
            symbols=tuple(self._pipeline.symbols),
        )
        self._state_machine.transition(BuildState.PUBLISHED)
        self.session._publish(self.snapshot)

    def _run_stages(self) -> Iterator[str]:
        state = self._pipeline

        if len(self.text) > self.settings.max_document_chars:
            state.diagnostics.append(Diagnostic(
                severity=Severity.ERROR,
                message=f"Document exceeds {self.settings.max_document_chars} characters",
                range=(0, 0),
                kind=DiagnosticKind.STRUCTURAL,
                code="DOCUMENT_TOO_LARGE",
            ))
            yield "parse"
            return

        parsed = load_document(self.text, max_nodes=self.settings.max_nodes)
        state.diagnostics.extend(parsed.diagnostics)
        yield "parse"

        built = DocumentModelBuilder(default_retry_limit=self.settings.default_retry_limit).build(parsed.tree)
        state.model = built.model
        yield "build"

        state.diagnostics.extend(validate(built.model, partial=parsed.partial))
        yield "validate"

        seen: set[str] = set()
        for workflow in built.model.workflows:
            if workflow.workflow_id is None or workflow.workflow_id in seen:
                continue
            seen.add(workflow.workflow_id)
            result = build_graph(
                workflow,
                built.model,
                warn_unreachable_steps=self.settings.warn_unreachable_steps,
                warn_redundant_goto=self.settings.warn_redundant_goto,
            )
            state.diagnostics.extend(result.diagnostics)
            state.workflows.append(WorkflowAnalysis(
                workflow_id=workflow.workflow_id,
                graph=result.graph,
                ir=to_ir(result.graph),
            ))
        yield "graph"

        state.symbols = build_symbols(built.model)
        yield "symbols"


class DocumentSession:
    """
    Analysis state of one open document.

    Created on open, rebuilt on every change, disposed on close.
    """

    def __init__(self, document_id: str, settings: Optional[AnalysisSettings] = None):
        self.document_id = document_id
        self.settings = settings or AnalysisSettings()
        self.snapshot: Optional[AnalysisSnapshot] = None
        self.current_job: Optional[RebuildJob] = None
        self.disposed = False
        self._last_version = 0
        self._listeners: list[SnapshotListener] = []

    def subscribe(self, listener: SnapshotListener) -> None:
        """Call listener with every published snapshot."""
        self._listeners.append(listener)

    def schedule(self, text: str, version: Optional[int] = None) -> RebuildJob:
        """
        Schedule a rebuild for new document text.

        Any unfinished job is superseded first.

        Args:
            text: Full document text
            version: Document version; defaults to one past the last scheduled

        Returns:
            The new job, not yet started
        """
        if self.disposed:
            raise RuntimeError(f"Session {self.document_id} is disposed")

        if version is None:
            version = self._last_version + 1
        self._last_version = max(self._last_version, version)

        if self.current_job is not None:
            self.current_job.supersede()

        job = RebuildJob(self, text, version, self.settings)
        self.current_job = job
        return job

    def rebuild(self, text: str, version: Optional[int] = None) -> Optional[AnalysisSnapshot]:
        """Schedule and run a rebuild; returns the latest published snapshot."""
        job = self.schedule(text, version)
        job.run()
        return self.snapshot

    def dispose(self) -> None:
        if self.current_job is not None:
            self.current_job.supersede("session disposed")
        self.current_job = None
        self._listeners.clear()
        self.disposed = True
        logger.debug(f"Session {self.document_id} disposed")

    def _publish(self, snapshot: AnalysisSnapshot) -> None:
        self.snapshot = snapshot
        logger.debug(
            f"Published v{snapshot.version} of {self.document_id} "
            f"with {len(snapshot.diagnostics)} diagnostics"
        )
        for listener in self._listeners:
            listener(snapshot)
