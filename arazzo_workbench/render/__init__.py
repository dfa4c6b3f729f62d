"""Diagram renderers consuming graph IR."""

from arazzo_workbench.render.mermaid import MermaidRenderer, ir_to_mermaid

__all__ = ["MermaidRenderer", "ir_to_mermaid"]
