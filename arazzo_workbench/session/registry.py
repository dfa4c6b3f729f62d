"""
Session registry keyed by document identity.

Replaces module-level per-document state: every open document has exactly one
DocumentSession, and published diagnostics are forwarded to a sink.
"""

import logging
from typing import Optional, Protocol, Sequence

from arazzo_workbench.config.settings import AnalysisSettings
from arazzo_workbench.core.diagnostics import Diagnostic
from arazzo_workbench.session.session import AnalysisSnapshot, DocumentSession

logger = logging.getLogger(__name__)


class DiagnosticsSink(Protocol):
    """Consumer of published diagnostics, e.g. an editor marker service."""

    def publish(self, document_id: str, diagnostics: Sequence[Diagnostic]) -> None:
        ...

    def clear(self, document_id: str) -> None:
        ...


class InMemoryDiagnosticsSink:
    """Keeps the latest diagnostics per document in memory."""

    def __init__(self) -> None:
        self.diagnostics: dict[str, tuple[Diagnostic, ...]] = {}

    def publish(self, document_id: str, diagnostics: Sequence[Diagnostic]) -> None:
        self.diagnostics[document_id] = tuple(diagnostics)

    def clear(self, document_id: str) -> None:
        self.diagnostics.pop(document_id, None)

    def get(self, document_id: str) -> tuple[Diagnostic, ...]:
        return self.diagnostics.get(document_id, ())


class SessionRegistry:
    """
    Table of open document sessions.

    Unknown document ids raise KeyError.
    """

    def __init__(
        self,
        sink: Optional[DiagnosticsSink] = None,
        settings: Optional[AnalysisSettings] = None,
    ):
        self.sink = sink or InMemoryDiagnosticsSink()
        self.settings = settings or AnalysisSettings()
        self._sessions: dict[str, DocumentSession] = {}

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def document_ids(self) -> list[str]:
        return list(self._sessions)

    def open(self, document_id: str, text: str, version: Optional[int] = None) -> Optional[AnalysisSnapshot]:
        """
        Open a document, or treat the call as a change if it is already open.

        Returns:
            The latest published snapshot
        """
        if document_id in self._sessions:
            return self.change(document_id, text, version)

        session = DocumentSession(document_id, settings=self.settings)
        session.subscribe(self._forward)
        self._sessions[document_id] = session
        logger.info(f"Opened document {document_id}")
        return session.rebuild(text, version)

    def change(self, document_id: str, text: str, version: Optional[int] = None) -> Optional[AnalysisSnapshot]:
        """
        Rebuild an open document from new text.

        Raises:
            KeyError: If the document is not open
        """
        return self.get(document_id).rebuild(text, version)

    def get(self, document_id: str) -> DocumentSession:
        """
        Get the session of an open document.

        Raises:
            KeyError: If the document is not open
        """
        try:
            return self._sessions[document_id]
        except KeyError:
            raise KeyError(f"Document {document_id} is not open") from None

    def close(self, document_id: str) -> None:
        """
        Dispose a document's session and clear its diagnostics.

        Raises:
            KeyError: If the document is not open
        """
        session = self.get(document_id)
        session.dispose()
        del self._sessions[document_id]
        self.sink.clear(document_id)
        logger.info(f"Closed document {document_id}")

    def close_all(self) -> None:
        for document_id in list(self._sessions):
            self.close(document_id)

    def _forward(self, snapshot: AnalysisSnapshot) -> None:
        self.sink.publish(snapshot.document_id, snapshot.diagnostics)
