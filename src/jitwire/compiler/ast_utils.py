"""Structural queries and rewrites over render-function ASTs.

Render functions follow one convention::

    def render(_vm, _c):
        return _c("div", {"attrs": {"id": "app"}}, [
            _vm._ssr_node("<h1>", "</h1>", [_vm._v(_vm._s(_vm.title))]),
            _c("child"),
        ])

Everything outside this module treats AST nodes as opaque and goes through
the helpers below.
"""

import ast
import inspect
import logging
import textwrap
from typing import Any, Callable, List, Optional

from jitwire.compiler.annotations import AnnotationTable

logger = logging.getLogger(__name__)

VM_NAME = "_vm"
NODE_CONSTRUCT = "_c"
TEXT_CONSTRUCT = "_ssr_node"
LIST_RENDER = "_l"


def _is_vm_method_call(node: Any, method: str) -> bool:
    return (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and node.func.attr == method
        and isinstance(node.func.value, ast.Name)
        and node.func.value.id == VM_NAME
    )


def is_node_construct_call(node: Any) -> bool:
    """``_c("div", ...)``"""
    return (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id == NODE_CONSTRUCT
    )


def is_text_construct_call(node: Any) -> bool:
    """``_vm._ssr_node("<div>static</div>")``"""
    return (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and node.func.attr == TEXT_CONSTRUCT
    )


def is_list_call(node: Any) -> bool:
    """``_vm._l(items, lambda item: ...)``"""
    return _is_vm_method_call(node, LIST_RENDER)


def is_str_literal(node: Any) -> bool:
    return isinstance(node, ast.Constant) and isinstance(node.value, str)


def child_array_of(node: Any) -> Optional[ast.List]:
    """Return the list argument holding a call's child expressions.

    ``_c("div", [_c("router-view")], 1)`` -> ``[_c("router-view")]``
    """
    if not isinstance(node, ast.Call):
        return None
    for arg in node.args:
        if isinstance(arg, ast.List):
            return arg
    return None


def text_construct(literal: str) -> ast.Call:
    return ast.Call(
        func=ast.Attribute(
            value=ast.Name(id=VM_NAME, ctx=ast.Load()),
            attr=TEXT_CONSTRUCT,
            ctx=ast.Load(),
        ),
        args=[ast.Constant(value=literal)],
        keywords=[],
    )


def rewrite_as_text_construct(node: ast.AST, literal: str) -> bool:
    """Turn a call node into ``_vm._ssr_node(literal)`` in place.

    Only call expressions can be rewritten without touching their parent;
    returns False for anything else.
    """
    if not isinstance(node, ast.Call):
        return False
    replacement = text_construct(literal)
    node.func = replacement.func
    node.args = replacement.args
    node.keywords = []
    return True


def leftmost_operand(node: ast.AST) -> ast.AST:
    while isinstance(node, ast.BinOp) and isinstance(node.op, ast.Add):
        node = node.left
    return node


def rightmost_operand(node: ast.AST) -> ast.AST:
    while isinstance(node, ast.BinOp) and isinstance(node.op, ast.Add):
        node = node.right
    return node


def _is_concat(node: ast.AST) -> bool:
    return isinstance(node, ast.BinOp) and isinstance(node.op, ast.Add)


def fold_plus(left: ast.expr, right: ast.expr) -> ast.expr:
    """Concatenate two string expressions, merging adjacent literals.

    'a' + 'b'      -> 'ab'
    'a' + ('b' + c) -> 'ab' + c
    (a + 'b') + 'c' -> a + 'bc'

    Anything else becomes a plain ``+`` without further simplification.
    """
    if is_str_literal(left) and is_str_literal(right):
        return ast.Constant(value=left.value + right.value)
    if is_str_literal(left) and _is_concat(right):
        most_left = leftmost_operand(right)
        if is_str_literal(most_left):
            most_left.value = left.value + most_left.value
            return right
    if _is_concat(left) and is_str_literal(right):
        most_right = rightmost_operand(left)
        if is_str_literal(most_right):
            most_right.value = most_right.value + right.value
            return left
    return ast.BinOp(left=left, op=ast.Add(), right=right)


def static_component_value(node: ast.AST, annotations: AnnotationTable) -> str:
    """Literal text of a component root proven static, or ``""``."""
    annotation = annotations.peek(node)
    if annotation is None or annotation.ssr_string is None:
        return ""
    if is_text_construct_call(node):
        if len(node.args) == 1 and is_str_literal(node.args[0]):
            return node.args[0].value
        return ""
    if annotation.ssr_static:
        return annotation.ssr_string
    return ""


def render_source(fn: Callable[..., Any]) -> Optional[str]:
    source = getattr(fn, "__jit_source__", None)
    if source:
        return source
    try:
        return textwrap.dedent(inspect.getsource(fn))
    except (OSError, TypeError):
        return None


def parse_render(fn: Callable[..., Any]) -> Optional[ast.Module]:
    """Parse a render function into a module holding only its definition."""
    source = render_source(fn)
    if source is None:
        logger.debug("No source available for render function %r", fn)
        return None
    try:
        module = ast.parse(source)
    except SyntaxError:
        logger.debug("Could not parse render function %r", fn)
        return None
    defs = [stmt for stmt in module.body if isinstance(stmt, ast.FunctionDef)]
    if len(defs) != 1:
        return None
    func = defs[0]
    func.decorator_list = []
    module.body = [func]
    return module


def render_function_name(module: ast.AST) -> Optional[str]:
    if isinstance(module, ast.Module):
        for stmt in module.body:
            if isinstance(stmt, ast.FunctionDef):
                return stmt.name
    return None


def _collect_returns(stmts: List[ast.stmt]) -> List[ast.Return]:
    found = []
    stack = list(stmts)
    while stack:
        node = stack.pop()
        if isinstance(node, ast.Return):
            found.append(node)
            continue
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)):
            continue
        stack.extend(ast.iter_child_nodes(node))
    return found


def vnode_render_ast(module: Optional[ast.AST]) -> Optional[ast.Call]:
    """Return the expression a render function returns as its root node.

    Only a single, unconditional ``return _c(...)`` or
    ``return _vm._ssr_node(...)`` is recognized.
    """
    if not isinstance(module, ast.Module):
        return None
    func = next((s for s in module.body if isinstance(s, ast.FunctionDef)), None)
    if func is None:
        return None
    returns = _collect_returns(func.body)
    if len(returns) != 1 or returns[0] not in func.body:
        return None
    value = returns[0].value
    if is_node_construct_call(value) or is_text_construct_call(value):
        return value
    return None
