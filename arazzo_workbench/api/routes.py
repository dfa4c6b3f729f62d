"""
FastAPI routes for the workbench API.

Implements the document analysis endpoints:
- PUT /documents/:id - Open or change a document
- GET /documents/:id/diagnostics - Latest diagnostics
- GET /documents/:id/symbols - Outline
- GET /documents/:id/workflows/:workflow_id/graph - Graph IR
- GET /documents/:id/workflows/:workflow_id/mermaid - Mermaid flowchart
- POST /documents/:id/expressions/resolve - On-demand expression check
- DELETE /documents/:id - Close a document
- GET /health - Health check
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from arazzo_workbench import __version__
from arazzo_workbench.config import get_settings
from arazzo_workbench.core.diagnostics import Diagnostic
from arazzo_workbench.core.ir import GraphIR, to_ir
from arazzo_workbench.core.models import DocumentModel
from arazzo_workbench.core.symbols import SymbolNode
from arazzo_workbench.expression.resolver import ExpressionKind, ResolutionContext, resolve
from arazzo_workbench.render.mermaid import ir_to_mermaid
from arazzo_workbench.session.registry import SessionRegistry
from arazzo_workbench.session.session import AnalysisSnapshot, WorkflowAnalysis

router = APIRouter(prefix="/v1", tags=["documents"])


# ==================== Request/Response Models ====================

class DocumentUpdateRequest(BaseModel):
    """Request body for opening or changing a document."""

    text: str = Field(..., description="Full Arazzo document text (YAML or JSON)")
    version: Optional[int] = Field(default=None, ge=0, description="Editor document version")

    model_config = {
        "json_schema_extra": {
            "example": {
                "text": "arazzo: 1.0.1\ninfo:\n  title: Pet purchase\n  version: 1.0.0\n",
                "version": 1,
            }
        }
    }


class DocumentResponse(BaseModel):
    """Summary of the latest analysis of a document."""

    document_id: str
    version: int
    workflow_ids: list[str]
    error_count: int
    warning_count: int
    diagnostics: list[Diagnostic]


class DiagnosticsResponse(BaseModel):
    document_id: str
    version: int
    diagnostics: list[Diagnostic]


class ResolveRequest(BaseModel):
    """Request body for resolving a runtime expression."""

    expression: str = Field(..., min_length=1)
    workflow_id: Optional[str] = Field(default=None, description="Workflow scope")
    step_id: Optional[str] = Field(default=None, description="Step scope within the workflow")


class ResolveResponse(BaseModel):
    expression: str
    valid: bool
    kind: ExpressionKind
    diagnostics: list[Diagnostic]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    services: dict[str, str]


# ==================== Dependency Injection ====================

async def get_registry(request: Request) -> SessionRegistry:
    """Get the session registry from app state."""
    return request.app.state.registry


def _snapshot(registry: SessionRegistry, document_id: str) -> AnalysisSnapshot:
    try:
        session = registry.get(document_id)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document not found: {document_id}",
        )
    if session.snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Document {document_id} has no completed analysis",
        )
    return session.snapshot


def _workflow(snapshot: AnalysisSnapshot, workflow_id: str) -> WorkflowAnalysis:
    analysis = snapshot.get_workflow(workflow_id)
    if analysis is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Workflow not found: {workflow_id}",
        )
    return analysis


# ==================== Routes ====================

@router.put(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    summary="Open or change a document",
    description="Rebuild the model, diagnostics, graphs and outline from the full document text.",
)
async def put_document(
    document_id: str,
    request: DocumentUpdateRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> DocumentResponse:
    """Open a document, or rebuild it if already open."""
    snapshot = registry.open(document_id, request.text, request.version)
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to analyze document {document_id}",
        )

    errors = sum(1 for d in snapshot.diagnostics if d.is_error)
    return DocumentResponse(
        document_id=document_id,
        version=snapshot.version,
        workflow_ids=snapshot.workflow_ids,
        error_count=errors,
        warning_count=len(snapshot.diagnostics) - errors,
        diagnostics=list(snapshot.diagnostics),
    )


@router.get(
    "/documents/{document_id}/diagnostics",
    response_model=DiagnosticsResponse,
    summary="Get diagnostics",
)
async def get_diagnostics(
    document_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> DiagnosticsResponse:
    snapshot = _snapshot(registry, document_id)
    return DiagnosticsResponse(
        document_id=document_id,
        version=snapshot.version,
        diagnostics=list(snapshot.diagnostics),
    )


@router.get(
    "/documents/{document_id}/symbols",
    response_model=list[SymbolNode],
    summary="Get document outline",
)
async def get_symbols(
    document_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> list[SymbolNode]:
    return list(_snapshot(registry, document_id).symbols)


@router.get(
    "/documents/{document_id}/workflows/{workflow_id}/graph",
    response_model=GraphIR,
    summary="Get workflow graph IR",
    description="Neutral node/edge structure of the workflow's control flow.",
)
async def get_graph(
    document_id: str,
    workflow_id: str,
    include_failure_edges: bool = True,
    registry: SessionRegistry = Depends(get_registry),
) -> GraphIR:
    analysis = _workflow(_snapshot(registry, document_id), workflow_id)
    if include_failure_edges:
        return analysis.ir
    return to_ir(analysis.graph, include_failure_edges=False)


@router.get(
    "/documents/{document_id}/workflows/{workflow_id}/mermaid",
    response_class=PlainTextResponse,
    summary="Render workflow as Mermaid",
)
async def get_mermaid(
    document_id: str,
    workflow_id: str,
    direction: Optional[Literal["TB", "LR", "BT", "RL"]] = None,
    hide_error_flows: Optional[bool] = None,
    registry: SessionRegistry = Depends(get_registry),
) -> PlainTextResponse:
    render = get_settings().render
    analysis = _workflow(_snapshot(registry, document_id), workflow_id)
    text = ir_to_mermaid(
        analysis.ir,
        direction=direction or render.direction,
        hide_error_flows=render.hide_error_flows if hide_error_flows is None else hide_error_flows,
    )
    return PlainTextResponse(text)


@router.post(
    "/documents/{document_id}/expressions/resolve",
    response_model=ResolveResponse,
    summary="Resolve a runtime expression",
    description="Check an expression against the document's latest model without a rebuild.",
)
async def resolve_expression(
    document_id: str,
    request: ResolveRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> ResolveResponse:
    snapshot = _snapshot(registry, document_id)
    model = snapshot.model or DocumentModel()

    workflow = None
    step = None
    if request.workflow_id is not None:
        workflow = model.get_workflow(request.workflow_id)
        if workflow is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Workflow not found: {request.workflow_id}",
            )
    if request.step_id is not None:
        step = workflow.get_step(request.step_id) if workflow is not None else None
        if step is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Step not found: {request.step_id}",
            )

    result = resolve(request.expression, ResolutionContext(model=model, workflow=workflow, step=step))
    return ResolveResponse(
        expression=result.expression,
        valid=result.valid,
        kind=result.kind,
        diagnostics=result.diagnostics,
    )


@router.delete(
    "/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close a document",
)
async def close_document(
    document_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> Response:
    try:
        registry.close(document_id)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document not found: {document_id}",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ==================== Health Check Routes ====================

@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check(registry: SessionRegistry = Depends(get_registry)) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=__version__,
        services={"sessions": f"{len(registry)} open"},
    )
