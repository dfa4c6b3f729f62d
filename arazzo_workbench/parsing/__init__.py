"""Parser adapters producing range-annotated trees."""

from arazzo_workbench.parsing.yaml_loader import ParseResult, load_document, offset_to_position

__all__ = ["ParseResult", "load_document", "offset_to_position"]
