"""Command line entry point: lint documents, print workflow graphs, serve the API."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from arazzo_workbench.config import get_settings
from arazzo_workbench.core.diagnostics import Diagnostic
from arazzo_workbench.parsing.yaml_loader import offset_to_position
from arazzo_workbench.render.mermaid import DIRECTIONS, ir_to_mermaid
from arazzo_workbench.session.session import AnalysisSnapshot, DocumentSession

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_FINDINGS = 2


def _analyze(path: Path) -> tuple[str, AnalysisSnapshot]:
    text = path.read_text(encoding="utf-8")
    session = DocumentSession(str(path), settings=get_settings().analysis)
    snapshot = session.rebuild(text)
    if snapshot is None:
        raise RuntimeError(f"Analysis of {path} failed")
    return text, snapshot


def _diagnostic_record(text: str, diagnostic: Diagnostic) -> dict:
    start_line, start_col = offset_to_position(text, diagnostic.range[0])
    end_line, end_col = offset_to_position(text, diagnostic.range[1])
    return {
        "severity": diagnostic.severity.value,
        "kind": diagnostic.kind.value,
        "code": diagnostic.code,
        "message": diagnostic.message,
        "start": {"line": start_line + 1, "column": start_col + 1},
        "end": {"line": end_line + 1, "column": end_col + 1},
    }


def _cmd_lint(args: argparse.Namespace) -> int:
    text, snapshot = _analyze(args.file)
    records = [_diagnostic_record(text, d) for d in snapshot.diagnostics]

    if args.format == "json":
        print(json.dumps({"file": str(args.file), "diagnostics": records}, indent=2))
    else:
        for record in records:
            start = record["start"]
            print(
                f"{args.file}:{start['line']}:{start['column']}: "
                f"{record['severity']}: {record['message']} [{record['code']}]"
            )
        errors = sum(1 for d in snapshot.diagnostics if d.is_error)
        warnings = len(snapshot.diagnostics) - errors
        print(f"{errors} error(s), {warnings} warning(s)", file=sys.stderr)

    if snapshot.has_errors or (args.strict and snapshot.diagnostics):
        return EXIT_FINDINGS
    return EXIT_OK


def _cmd_graph(args: argparse.Namespace) -> int:
    _, snapshot = _analyze(args.file)
    analysis = snapshot.get_workflow(args.workflow)
    if analysis is None:
        known = ", ".join(snapshot.workflow_ids) or "none"
        print(f"error: unknown workflow {args.workflow!r} (known: {known})", file=sys.stderr)
        return EXIT_USAGE

    if args.format == "mermaid":
        render = get_settings().render
        sys.stdout.write(ir_to_mermaid(
            analysis.ir,
            direction=args.direction or render.direction,
            hide_error_flows=args.hide_error_flows or render.hide_error_flows,
        ))
    else:
        print(analysis.ir.to_json(indent=2))
    return EXIT_OK


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "arazzo_workbench.api.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=get_settings().log_level.lower(),
    )
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="arazzo-workbench",
        description="Analyze Arazzo workflow documents.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    lint = subparsers.add_parser("lint", help="Report diagnostics for a document")
    lint.add_argument("file", type=Path, help="Arazzo document (YAML or JSON)")
    lint.add_argument(
        "--format",
        choices=("text", "json"),
        default="text",
        help="Output format (default: text)",
    )
    lint.add_argument(
        "--strict",
        action="store_true",
        help="Exit non-zero on warnings as well as errors.",
    )
    lint.set_defaults(handler=_cmd_lint)

    graph = subparsers.add_parser("graph", help="Print the control-flow graph of a workflow")
    graph.add_argument("file", type=Path, help="Arazzo document (YAML or JSON)")
    graph.add_argument("--workflow", required=True, help="Workflow id to render")
    graph.add_argument(
        "--format",
        choices=("ir", "mermaid"),
        default="ir",
        help="Graph IR as JSON, or a Mermaid flowchart (default: ir)",
    )
    graph.add_argument(
        "--direction",
        choices=DIRECTIONS,
        default=None,
        help="Mermaid flow direction (default: from RENDER_DIRECTION)",
    )
    graph.add_argument(
        "--hide-error-flows",
        action="store_true",
        help="Omit failure edges from the Mermaid output.",
    )
    graph.set_defaults(handler=_cmd_graph)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(handler=_cmd_serve)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return args.handler(args)
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main())
