"""
Arazzo Workbench

Semantic model, structural validation, runtime-expression resolution and
transition-graph derivation for Arazzo workflow descriptions.
"""

__version__ = "1.0.0"
