"""Optimizer metadata kept beside render-function ASTs.

AST nodes and virtual nodes belong to the compiler and the rendering engine.
The optimizer never stores its own fields on them; it records them here,
keyed by object identity.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

if TYPE_CHECKING:
    from jitwire.runtime.vnode import VNode


@dataclass
class AstAnnotation:
    # Literal text this node renders to, when known. For containers whose
    # children are still being compared it holds the start tag only.
    ssr_string: Optional[str] = None
    # Node and all of its children are independent of request data.
    ssr_static: bool = False
    # Node could not be correlated with the rendered tree.
    unmatched: bool = False
    # Render-function module of the component created at this node.
    ssr_render_ast: Optional[ast.Module] = None
    ssr_styles: Optional[Dict[str, Any]] = None
    # Original render function of that component.
    render: Optional[Callable[..., Any]] = None

    @property
    def is_folded(self) -> bool:
        return self.ssr_string is not None and self.ssr_static


class AnnotationTable:
    """Identity-keyed side table for one optimization pass."""

    def __init__(self) -> None:
        # id -> (node, annotation); holding the node keeps its id stable.
        self._annotations: Dict[int, Tuple[ast.AST, AstAnnotation]] = {}
        self._bindings: Dict[int, Tuple["VNode", ast.AST]] = {}

    def of(self, node: ast.AST) -> AstAnnotation:
        entry = self._annotations.get(id(node))
        if entry is None:
            entry = (node, AstAnnotation())
            self._annotations[id(node)] = entry
        return entry[1]

    def peek(self, node: ast.AST) -> Optional[AstAnnotation]:
        entry = self._annotations.get(id(node))
        return entry[1] if entry else None

    def placeholder(self, unmatched: bool = True) -> ast.AST:
        """A detached node standing in for an uncorrelated child."""
        node = ast.Constant(value=None)
        self.of(node).unmatched = unmatched
        return node

    def bind(self, vnode: "VNode", node: ast.AST) -> None:
        self._bindings[id(vnode)] = (vnode, node)

    def ast_for(self, vnode: "VNode") -> ast.AST:
        entry = self._bindings.get(id(vnode))
        if entry is None:
            # Nodes reached without correlation are treated as unmatched.
            node = self.placeholder()
            self.bind(vnode, node)
            return node
        return entry[1]

    def __len__(self) -> int:
        return len(self._annotations)
