"""Render-function synthesis and validation."""

import ast
import logging
from typing import Any, Callable, Optional, Tuple

from jitwire.compiler.annotations import AstAnnotation
from jitwire.compiler.ast_utils import render_function_name

logger = logging.getLogger(__name__)

STATIC_RENDER_NAME = "render"


def static_render_source(literal: str) -> str:
    """Source of a render function returning ``literal`` byte-for-byte."""
    return f"def {STATIC_RENDER_NAME}(_vm, _c):\n    return {literal!r}\n"


def synthesize_render(annotation: AstAnnotation) -> Optional[Tuple[str, str]]:
    """Generate ``(source, function_name)`` for a component's final AST state.

    Returns None when the component has no render-function AST to generate
    from; its original render function is then used as-is.
    """
    if annotation.ssr_static and annotation.ssr_string is not None:
        return static_render_source(annotation.ssr_string), STATIC_RENDER_NAME

    module = annotation.ssr_render_ast
    name = render_function_name(module)
    if module is None or name is None:
        return None
    ast.fix_missing_locations(module)
    return ast.unparse(module) + "\n", name


def validate_render(instance: Any, render: Callable[..., Any]) -> bool:
    """Invoke ``render`` once as ``instance``'s render function.

    The instance's own render function is restored afterwards whatever the
    outcome.
    """
    original = instance.render_fn
    instance.render_fn = render
    try:
        instance._render()
    except Exception:
        logger.debug(
            "Synthesized render function failed for %r", instance, exc_info=True
        )
        return False
    finally:
        instance.render_fn = original
    return True
