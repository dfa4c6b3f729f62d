"""Runtime expression parsing and resolution."""

from arazzo_workbench.expression.resolver import (
    EmbeddedExpression,
    ExpressionKind,
    ExpressionResolver,
    ExpressionSyntaxError,
    ParsedExpression,
    ResolutionContext,
    ResolutionResult,
    find_embedded_expressions,
    is_expression,
    parse_expression,
    resolve,
)

__all__ = [
    "EmbeddedExpression",
    "ExpressionKind",
    "ExpressionResolver",
    "ExpressionSyntaxError",
    "ParsedExpression",
    "ResolutionContext",
    "ResolutionResult",
    "find_embedded_expressions",
    "is_expression",
    "parse_expression",
    "resolve",
]
