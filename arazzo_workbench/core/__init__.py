"""Core semantic model: tree, entities, builder, graph and outline."""

from arazzo_workbench.core.builder import DocumentModelBuilder, build_document_model
from arazzo_workbench.core.diagnostics import Diagnostic, DiagnosticKind, Severity
from arazzo_workbench.core.graph import (
    EdgeKind,
    GraphBuildResult,
    NodeKind,
    TransitionGraph,
    TransitionGraphBuilder,
    build_graph,
)
from arazzo_workbench.core.ir import GraphIR, to_ir
from arazzo_workbench.core.models import DocumentModel, Step, Workflow
from arazzo_workbench.core.symbols import SymbolKind, SymbolNode, build_symbols

# The structural validator depends on arazzo_workbench.expression and is
# imported from arazzo_workbench.core.validator directly.

__all__ = [
    "DocumentModelBuilder",
    "build_document_model",
    "Diagnostic",
    "DiagnosticKind",
    "Severity",
    "EdgeKind",
    "GraphBuildResult",
    "NodeKind",
    "TransitionGraph",
    "TransitionGraphBuilder",
    "build_graph",
    "GraphIR",
    "to_ir",
    "DocumentModel",
    "Step",
    "Workflow",
    "SymbolKind",
    "SymbolNode",
    "build_symbols",
]
