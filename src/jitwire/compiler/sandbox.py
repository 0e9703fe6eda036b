"""Isolated compilation of generated render functions."""

import ast
import builtins
from typing import Any, Callable, Dict, Optional

from jitwire.compiler.exceptions import RenderCompileError

# Builtins a render function may reasonably need. Anything touching the
# interpreter, the filesystem, imports or dynamic attribute access is left out.
_SAFE_BUILTIN_NAMES = (
    "abs",
    "all",
    "any",
    "bool",
    "dict",
    "enumerate",
    "filter",
    "float",
    "format",
    "int",
    "isinstance",
    "len",
    "list",
    "map",
    "max",
    "min",
    "range",
    "repr",
    "reversed",
    "round",
    "set",
    "sorted",
    "str",
    "sum",
    "tuple",
    "zip",
    "Exception",
    "ValueError",
    "TypeError",
    "KeyError",
    "IndexError",
    "AttributeError",
)

SAFE_BUILTINS: Dict[str, Any] = {
    name: getattr(builtins, name)
    for name in _SAFE_BUILTIN_NAMES
    if hasattr(builtins, name)
}


def _isolated_globals() -> Dict[str, Any]:
    return {"__builtins__": dict(SAFE_BUILTINS), "__name__": "jitwire_render"}


def _is_dunder(name: str) -> bool:
    return name.startswith("__") and name.endswith("__")


def check_isolation(tree: ast.AST, source: Optional[str] = None) -> None:
    """Reject dunder names and attributes.

    Through them any object leads back to module globals, e.g.
    ``_vm.__class__.__init__.__globals__``.
    """
    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute) and _is_dunder(node.attr):
            name = node.attr
        elif isinstance(node, ast.Name) and _is_dunder(node.id):
            name = node.id
        else:
            continue
        raise RenderCompileError(f"Render source may not use '{name}'", source)


def compile_render(
    source: str, name: Optional[str] = None, filename: str = "<jitwire-render>"
) -> Callable[..., Any]:
    """Compile render-function source and return the function called ``name``.

    Without ``name`` the first function defined at module level is used. The
    source runs in a fresh namespace with a restricted builtins table and
    may not use dunder names, so it cannot reach application globals. The
    returned function remembers its source in ``__jit_source__``.
    """
    try:
        tree = ast.parse(source, filename)
    except SyntaxError as e:
        raise RenderCompileError(f"Invalid render source: {e}", source) from e
    check_isolation(tree, source)
    code = compile(tree, filename, "exec")

    if name is None:
        name = next(
            (s.name for s in tree.body if isinstance(s, ast.FunctionDef)), "render"
        )

    namespace = _isolated_globals()
    exec(code, namespace)

    fn = namespace.get(name)
    if not callable(fn):
        raise RenderCompileError(f"Render source does not define '{name}'", source)
    fn.__jit_source__ = source
    return fn


def evaluate_expression(node: ast.expr, scope: Optional[Dict[str, Any]] = None) -> Any:
    """Evaluate a single expression node with ``scope`` as its locals."""
    check_isolation(node)
    expression = ast.Expression(body=node)
    ast.fix_missing_locations(expression)
    code = compile(expression, "<jitwire-expr>", "eval")
    return eval(code, _isolated_globals(), dict(scope or {}))
