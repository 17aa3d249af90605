"""Shapes upstream response bodies before they reach the agent."""

import logging
from typing import Any, Optional

from app.infra.error_handler import MappingError
from app.models.tool import ResponseMapping
from app.services.transform_expression import (
    compile_transform,
    get_value_by_path,
    TransformExpressionError,
)

logger = logging.getLogger(__name__)

__all__ = ["apply_response_mapping", "get_value_by_path", "run_transform"]


def run_transform(expression: str, body: Any, success: bool) -> Any:
    """
    Raises:
        MappingError: If the expression cannot be compiled or applied
    """
    try:
        return compile_transform(expression).evaluate(body, success)
    except (TransformExpressionError, TypeError) as e:
        raise MappingError(f"Transform failed: {e}")


def apply_response_mapping(
    mapping: Optional[ResponseMapping],
    body: Any,
    success: bool,
    tool_name: Optional[str] = None,
) -> Any:
    """
    Map a response body.

    Order: transform expression, then ``success_path``/``error_path``, then the
    raw body. A failing transform is logged and mapping falls back to the path.
    """
    if mapping is None:
        return body

    if mapping.transform_expression:
        try:
            return run_transform(mapping.transform_expression, body, success)
        except MappingError as e:
            logger.warning(
                f"Transform expression failed for tool {tool_name}, falling back to path mapping: {e}",
                extra={"tool_name": tool_name},
            )

    path = mapping.success_path if success else mapping.error_path
    if path:
        return get_value_by_path(body, path)
    return body
