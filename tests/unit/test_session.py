"""
Unit tests for document sessions and the session registry.
"""

import pytest

from arazzo_workbench.config.settings import AnalysisSettings
from arazzo_workbench.session import (
    BuildState,
    DocumentSession,
    InMemoryDiagnosticsSink,
    SessionRegistry,
)


class TestDocumentSession:
    """Tests for rebuild scheduling and publishing."""

    def test_rebuild_publishes_snapshot(self, pet_purchase_document):
        """Test that a completed rebuild publishes every artifact."""
        session = DocumentSession("pet.yaml")

        snapshot = session.rebuild(pet_purchase_document)

        assert snapshot is session.snapshot
        assert snapshot.version == 1
        assert snapshot.diagnostics == ()
        assert snapshot.workflow_ids == ["purchasePet"]
        assert [n.id for n in snapshot.get_workflow("purchasePet").ir.nodes] == [
            "input", "loginStep", "getPetStep", "output",
        ]
        assert [s.name for s in snapshot.symbols] == ["info", "sourceDescriptions", "workflows"]

    def test_job_runs_stage_by_stage(self, minimal_document):
        """Test that advance() runs one stage at a time."""
        session = DocumentSession("doc")
        job = session.schedule(minimal_document)

        assert job.state == BuildState.PENDING
        assert job.advance()
        assert job.state == BuildState.RUNNING
        assert session.snapshot is None

        assert job.run() == BuildState.PUBLISHED
        assert session.snapshot.version == 1

    def test_newer_change_supersedes_running_job(self, minimal_document, pet_purchase_document):
        """Test that a superseded job never publishes."""
        session = DocumentSession("doc")
        old = session.schedule(minimal_document)
        old.advance()

        new = session.schedule(pet_purchase_document)

        assert old.state == BuildState.SUPERSEDED
        assert not old.advance()
        assert new.run() == BuildState.PUBLISHED
        assert session.snapshot.workflow_ids == ["purchasePet"]

    def test_job_checks_it_is_still_current(self, minimal_document):
        """Test that a job replaced behind its back stops at the next stage."""
        session = DocumentSession("doc")
        job = session.schedule(minimal_document)
        session.current_job = None

        assert job.run() == BuildState.SUPERSEDED
        assert session.snapshot is None

    def test_older_version_does_not_replace_newer(self, minimal_document, pet_purchase_document):
        """Test that snapshots only move forward in version."""
        session = DocumentSession("doc")
        session.rebuild(pet_purchase_document, version=5)

        job = session.schedule(minimal_document, version=3)
        assert job.run() == BuildState.SUPERSEDED
        assert session.snapshot.version == 5

    def test_versions_default_to_increasing(self, minimal_document):
        """Test implicit version numbering."""
        session = DocumentSession("doc")

        assert session.rebuild(minimal_document).version == 1
        assert session.rebuild(minimal_document).version == 2

    def test_failure_keeps_previous_snapshot(self, minimal_document, monkeypatch):
        """Test that an exception inside a stage marks the job FAILED."""
        session = DocumentSession("doc")
        previous = session.rebuild(minimal_document)

        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr("arazzo_workbench.session.session.build_symbols", explode)
        job = session.schedule(minimal_document)

        assert job.run() == BuildState.FAILED
        assert str(job.error) == "boom"
        assert session.snapshot is previous

    def test_subscribers_receive_snapshots(self, minimal_document):
        """Test that listeners are called on publish."""
        session = DocumentSession("doc")
        received = []
        session.subscribe(received.append)

        session.rebuild(minimal_document)

        assert [s.version for s in received] == [1]

    def test_syntax_error_still_publishes(self):
        """Test that broken YAML yields diagnostics rather than an exception."""
        session = DocumentSession("doc")

        snapshot = session.rebuild("arazzo: [unclosed\n")

        assert snapshot.has_errors
        assert [d.code for d in snapshot.diagnostics] == ["YAML_SYNTAX"]
        assert snapshot.workflows == ()

    def test_syntax_error_keeps_earlier_sections(self, pet_purchase_document):
        """Test that a broken last line leaves workflows and outline intact."""
        text = pet_purchase_document + '    description: "unterminated\n'
        session = DocumentSession("doc")

        snapshot = session.rebuild(text)

        assert [(d.kind.value, d.code) for d in snapshot.diagnostics] == [("syntax", "YAML_SYNTAX")]
        assert snapshot.workflow_ids == ["purchasePet"]
        assert [s.name for s in snapshot.symbols] == ["info", "sourceDescriptions", "workflows"]

    def test_document_too_large(self, minimal_document):
        """Test the document size limit."""
        session = DocumentSession("doc", settings=AnalysisSettings(max_document_chars=10))

        snapshot = session.rebuild(minimal_document)

        assert [d.code for d in snapshot.diagnostics] == ["DOCUMENT_TOO_LARGE"]
        assert snapshot.model is None

    def test_alias_limit_from_settings(self, minimal_document):
        """Test that the node budget comes from the analysis settings."""
        text = minimal_document + "x-shared: &big [a, b, c, d]\nx-copies: [*big, *big, *big]\n"
        session = DocumentSession("doc", settings=AnalysisSettings(max_nodes=30))

        snapshot = session.rebuild(text)

        assert "YAML_ALIAS_LIMIT" in [d.code for d in snapshot.diagnostics]
        assert snapshot.workflow_ids == ["minimal"]

    def test_disposed_session_rejects_changes(self, minimal_document):
        """Test that a disposed session cannot be rebuilt."""
        session = DocumentSession("doc")
        job = session.schedule(minimal_document)

        session.dispose()

        assert job.state == BuildState.SUPERSEDED
        with pytest.raises(RuntimeError):
            session.schedule(minimal_document)


class TestSessionRegistry:
    """Tests for the table of open documents."""

    def test_open_change_close(self, minimal_document, pet_purchase_document):
        """Test the open/change/close lifecycle."""
        sink = InMemoryDiagnosticsSink()
        registry = SessionRegistry(sink=sink)

        registry.open("doc", minimal_document)
        assert "doc" in registry
        assert registry.get("doc").snapshot.workflow_ids == ["minimal"]

        registry.change("doc", pet_purchase_document)
        assert registry.get("doc").snapshot.version == 2

        registry.close("doc")
        assert "doc" not in registry
        assert len(registry) == 0

    def test_diagnostics_forwarded_to_sink(self, minimal_document):
        """Test that published diagnostics reach the sink and are cleared on close."""
        sink = InMemoryDiagnosticsSink()
        registry = SessionRegistry(sink=sink)

        registry.open("doc", minimal_document.replace("arazzo: 1.0.1", "arazzo: 9.9.9"))
        assert [d.code for d in sink.get("doc")] == ["UNSUPPORTED_VERSION"]

        registry.close("doc")
        assert sink.get("doc") == ()

    def test_open_twice_acts_as_change(self, minimal_document):
        """Test that reopening an open document rebuilds it."""
        registry = SessionRegistry()
        registry.open("doc", minimal_document)

        snapshot = registry.open("doc", minimal_document)

        assert snapshot.version == 2
        assert registry.document_ids == ["doc"]

    def test_unknown_document(self):
        """Test that unknown ids raise KeyError."""
        registry = SessionRegistry()

        with pytest.raises(KeyError):
            registry.get("missing")
        with pytest.raises(KeyError):
            registry.change("missing", "")
        with pytest.raises(KeyError):
            registry.close("missing")

    def test_close_all(self, minimal_document):
        """Test that every session is disposed."""
        registry = SessionRegistry()
        for name in ("a", "b"):
            registry.open(name, minimal_document)
        sessions = [registry.get(name) for name in registry.document_ids]

        registry.close_all()

        assert len(registry) == 0
        assert all(session.disposed for session in sessions)
