"""Traversal state and AST folding for one optimization pass.

A PatchContext walks the static and dynamic trees in lock-step using an
explicit stack of frames. Classification of a node pair either finishes
synchronously or suspends on an asyncio task whose continuation re-enters
the loop, so neither deep trees nor async boundaries need recursion.
"""

from __future__ import annotations

import ast
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    Tuple,
    Union,
)

from jitwire.compiler.annotations import AnnotationTable
from jitwire.compiler.ast_utils import (
    child_array_of,
    fold_plus,
    is_text_construct_call,
    rewrite_as_text_construct,
    static_component_value,
    text_construct,
    vnode_render_ast,
)
from jitwire.compiler.codegen import synthesize_render, validate_render
from jitwire.compiler.exceptions import RenderCompileError
from jitwire.compiler.sandbox import compile_render
from jitwire.runtime.options import RenderOptions
from jitwire.runtime.vnode import VNode

if TYPE_CHECKING:
    from jitwire.runtime.component import ComponentInstance

logger = logging.getLogger(__name__)


class Step(enum.Enum):
    CONTINUE = "continue"
    SUSPEND = "suspend"


@dataclass(eq=False)
class ElementFrame:
    static_children: List[VNode]
    dynamic_children: List[VNode]
    ast: ast.AST
    total: int
    end_tag: str
    rendered: int = 0


@dataclass(eq=False)
class FragmentFrame:
    static_children: List[VNode]
    dynamic_children: List[VNode]
    ast: ast.AST
    total: int
    rendered: int = 0


@dataclass(eq=False)
class ComponentFrame:
    prev_ast: ast.AST
    prev_static_active: Optional["ComponentInstance"]
    prev_dynamic_active: Optional["ComponentInstance"]


PatchFrame = Union[ElementFrame, FragmentFrame, ComponentFrame]


@dataclass(eq=False)
class RenderTree:
    """How to render one component on subsequent requests."""

    render: Optional[Callable[..., Any]] = None
    static: bool = False
    styles: Optional[Dict[str, Any]] = None
    children: Optional[List["RenderTree"]] = None
    name: Optional[str] = None
    source: Optional[str] = None


@dataclass
class PatchResult:
    success: bool
    render_tree: Optional[RenderTree] = None
    static_ast: Optional[ast.AST] = None
    error: Optional[BaseException] = None


PatchNode = Callable[[VNode, VNode, "PatchContext", bool], Step]


class PatchContext:
    def __init__(
        self,
        options: RenderOptions,
        static_active_instance: "ComponentInstance",
        dynamic_active_instance: "ComponentInstance",
        patch_node: PatchNode,
        done: Callable[[PatchResult], None],
        user_context: Optional[Dict[str, Any]] = None,
        static_context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.options = options
        self.static_active_instance: Optional["ComponentInstance"] = static_active_instance
        self.dynamic_active_instance: Optional["ComponentInstance"] = dynamic_active_instance
        self.patch_node = patch_node
        self.done = done
        self.user_context: Dict[str, Any] = user_context if user_context is not None else {}
        self.static_context: Dict[str, Any] = (
            static_context if static_context is not None else {}
        )

        self.annotations = AnnotationTable()
        self.frames: List[PatchFrame] = []
        self.render_tree = RenderTree()
        self.static_ast: Optional[ast.AST] = None
        self.finished = False
        # RenderTree slot id -> (slot, AST node of the component call creating it)
        self._slot_calls: Dict[int, Tuple[RenderTree, ast.AST]] = {}

        self._pending: Optional[Tuple[VNode, VNode, bool]] = None
        self._suspended = False
        self._tasks: Set["asyncio.Task[Any]"] = set()

    # --- Traversal ---------------------------------------------------------

    def push(self, frame: PatchFrame) -> None:
        self.frames.append(frame)

    def descend(self, static_node: VNode, dynamic_node: VNode, is_root: bool = False) -> None:
        """Make ``(static_node, dynamic_node)`` the next pair to classify."""
        self._pending = (static_node, dynamic_node, is_root)

    def advance(self) -> None:
        while not self.finished:
            try:
                if self._pending is not None:
                    static_node, dynamic_node, is_root = self._pending
                    self._pending = None
                    step = self.patch_node(static_node, dynamic_node, self, is_root)
                    if step is Step.SUSPEND:
                        return
                    continue

                if not self.frames:
                    self._complete()
                    return

                frame = self.frames[-1]
                if isinstance(frame, ComponentFrame):
                    self.frames.pop()
                    self.fold_component(frame)
                    self.static_active_instance = frame.prev_static_active
                    self.dynamic_active_instance = frame.prev_dynamic_active
                    continue

                if frame.rendered < frame.total:
                    index = frame.rendered
                    frame.rendered += 1
                    self.descend(
                        frame.static_children[index], frame.dynamic_children[index]
                    )
                    continue

                self.frames.pop()
                if isinstance(frame, ElementFrame):
                    self.fold_element(frame)
            except Exception as e:
                self.fail(e)
                return

    def start(self, enter: Callable[[], Step]) -> None:
        """Classify the root with ``enter`` and run the loop unless it suspended."""
        try:
            step = enter()
        except Exception as e:
            self.fail(e)
            return
        if step is Step.CONTINUE:
            self.advance()

    def wait_then(
        self,
        wait: Optional[Callable[[], Awaitable[Any]]],
        continuation: Callable[[Any], None],
    ) -> Step:
        if wait is None:
            continuation(None)
            return Step.CONTINUE
        return self.suspend(wait, continuation)

    def suspend(
        self,
        wait: Callable[[], Awaitable[Any]],
        continuation: Callable[[Any], None],
    ) -> Step:
        """Stop the loop until ``wait()`` settles, then run ``continuation``."""
        if self._suspended:
            raise RuntimeError("PatchContext is already waiting on a continuation")
        loop = asyncio.get_running_loop()
        self._suspended = True

        async def _resume() -> None:
            try:
                value = await wait()
            except Exception as e:
                self._suspended = False
                self.fail(e)
                return
            self._suspended = False
            if self.finished:
                return
            try:
                continuation(value)
            except Exception as e:
                self.fail(e)
                return
            self.advance()

        task = loop.create_task(_resume())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return Step.SUSPEND

    def fail(self, error: BaseException) -> None:
        if self.finished:
            return
        self.finished = True
        self.frames.clear()
        self._pending = None
        logger.debug("Optimization aborted: %s", error)
        self.done(PatchResult(success=False, error=error))

    def _complete(self) -> None:
        self.finished = True
        self.done(
            PatchResult(
                success=True,
                render_tree=self.render_tree,
                static_ast=self.static_ast,
            )
        )

    def take_styles(self) -> Optional[Dict[str, Any]]:
        """Pop the styles registered by static instances created so far."""
        return self.static_context.pop("_styles", None)

    # --- Folding -----------------------------------------------------------

    def fold_element(self, frame: ElementFrame) -> None:
        """Fold an element whose children have all been compared.

        Adjacent static children merge into one literal. When every child is
        static and the element's own start tag is known, the whole element
        becomes a single ``_vm._ssr_node(literal)`` call.
        """
        annotations = self.annotations
        node = frame.ast
        node_annotation = annotations.of(node)
        if node_annotation.is_folded:
            return

        children = child_array_of(node)
        aligned = (
            list(children.elts)
            if children is not None and len(children.elts) == frame.total
            else None
        )

        elements: List[Union[str, ast.AST]] = []
        for index, child in enumerate(frame.static_children):
            child_ast = annotations.ast_for(child)
            child_annotation = annotations.peek(child_ast)
            if child_annotation is not None and child_annotation.is_folded:
                if elements and isinstance(elements[-1], str):
                    elements[-1] += child_annotation.ssr_string
                else:
                    elements.append(child_annotation.ssr_string)
            else:
                # Keep the original expression, e.g. the whole conditional
                elements.append(aligned[index] if aligned is not None else child_ast)

        child_static = len(elements) == 0 or (
            len(elements) == 1 and isinstance(elements[0], str)
        )
        child_literal = elements[0] if elements and isinstance(elements[0], str) else ""

        if node_annotation.unmatched:
            if node_annotation.ssr_string is not None and child_static:
                node_annotation.ssr_string = (
                    node_annotation.ssr_string + child_literal + frame.end_tag
                )
                node_annotation.ssr_static = True
            return

        if children is not None and not child_static:
            children.elts = [
                text_construct(e) if isinstance(e, str) else e for e in elements
            ]

        if node_annotation.ssr_string is not None and child_static:
            literal = node_annotation.ssr_string + child_literal + frame.end_tag
            rewrite_as_text_construct(node, literal)
            node_annotation.ssr_string = literal
            node_annotation.ssr_static = True
            if self.options.debug:
                logger.debug("Folded element to %r", literal)

        self.reduce_children(frame)

    def reduce_children(self, frame: ElementFrame) -> None:
        """Inline a lone literal child into a string-fragment container.

        ``_vm._ssr_node("<p>", "</p>", [_vm._ssr_node("x")])`` becomes
        ``_vm._ssr_node("<p>x</p>")``.
        """
        node = frame.ast
        children = child_array_of(node)
        if (
            children is None
            or len(children.elts) != 1
            or not is_text_construct_call(node)
            or not is_text_construct_call(children.elts[0])
            or len(children.elts[0].args) != 1
            or len(node.args) < 3
        ):
            return
        close = node.args[1]
        if isinstance(close, ast.Constant) and close.value is None:
            close = ast.Constant(value="")
        grandchild = children.elts[0].args[0]
        node.args = [fold_plus(fold_plus(node.args[0], grandchild), close)]

    def fold_component(self, frame: ComponentFrame) -> None:
        """Finish a component: propagate a static root upward, record its render."""
        prev_ast = frame.prev_ast
        prev_annotation = self.annotations.of(prev_ast)
        render_ast = prev_annotation.ssr_render_ast
        render_annotation = (
            self.annotations.peek(render_ast) if render_ast is not None else None
        )
        unmatched = render_ast is None or (
            render_annotation is not None and render_annotation.unmatched
        )

        if unmatched and not (render_annotation and render_annotation.ssr_static):
            self.set_render_tree(prev_ast, synthesize=False)
            return

        if unmatched:
            root = render_ast
        else:
            root = vnode_render_ast(render_ast)

        value = static_component_value(root, self.annotations) if root is not None else ""
        if value:
            prev_annotation.ssr_string = value
            prev_annotation.ssr_static = True
        elif unmatched:
            # Without a literal there is nothing to generate from
            self.set_render_tree(prev_ast, synthesize=False)
            return

        self.set_render_tree(prev_ast)

    def _synthesize(self, prev_ast: ast.AST) -> Tuple[Optional[Callable[..., Any]], Optional[str]]:
        annotation = self.annotations.of(prev_ast)
        synthesized = synthesize_render(annotation)
        if synthesized is None:
            return None, None
        source, name = synthesized
        try:
            render = compile_render(source, name)
        except RenderCompileError as e:
            logger.warning("Could not compile optimized render function: %s", e)
            return None, source
        return render, source

    def set_render_tree(self, prev_ast: ast.AST, synthesize: bool = True) -> None:
        """Attach the finished component's render function to the RenderTree.

        The tree mirrors the currently open component frames. Static child
        slots whose markup was inlined into the render function in use are
        pruned and their styles hoisted.
        """
        annotation = self.annotations.of(prev_ast)
        instance = self.static_active_instance
        original = annotation.render or (instance.render_fn if instance else None)

        render = original
        source = None
        validated = True
        if synthesize:
            candidate, source = self._synthesize(prev_ast)
            validated = candidate is not None and (
                not self.options.validate
                or instance is None
                or validate_render(instance, candidate)
            )
            if validated:
                render = candidate
            elif source is not None:
                logger.info(
                    "Falling back to the original render function of %r", instance
                )

        depth = sum(1 for f in self.frames if isinstance(f, ComponentFrame))
        current = self.render_tree
        for _ in range(depth):
            tree = RenderTree()
            if current.children is None:
                current.children = [tree]
            else:
                last = current.children[-1]
                if last.render is not None:
                    current.children.append(tree)
                else:
                    tree = last
            current = tree

        current.render = render
        current.name = instance.name if instance is not None else None
        current.source = source if validated else None
        if annotation.ssr_static and validated:
            current.static = True
            current.styles = annotation.ssr_styles

        self._slot_calls[id(current)] = (current, prev_ast)

        inlines_children = current.static or render is not original
        if current.children is not None and inlines_children:
            live = self._live_nodes(annotation.ssr_render_ast)
            kept = []
            for child in current.children:
                if child.static and (current.static or self._inlined(child, live)):
                    if child.styles:
                        current.styles = {**(current.styles or {}), **child.styles}
                else:
                    kept.append(child)
            current.children = kept or None

    @staticmethod
    def _live_nodes(module: Optional[ast.AST]) -> Set[int]:
        return {id(node) for node in ast.walk(module)} if module is not None else set()

    def _inlined(self, child: RenderTree, live: Set[int]) -> bool:
        """Whether the call creating ``child`` was replaced by its literal.

        Calls under uncorrelated containers are bound to placeholders; the
        parent's render still creates those components, so their slots stay.
        """
        entry = self._slot_calls.get(id(child))
        if entry is None:
            return False
        call = entry[1]
        annotation = self.annotations.peek(call)
        if annotation is None or annotation.unmatched:
            return False
        return id(call) not in live
