"""Node classification for the dual-pass optimizer.

Each pair of nodes at the same position in the static and dynamic trees is
classified by kind. Equal serializations are folded into literal text on the
static render-function AST; containers push a frame so their children are
compared next; everything else is left to render dynamically.
"""

import ast
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from jitwire.compiler.ast_utils import (
    NODE_CONSTRUCT,
    VM_NAME,
    child_array_of,
    is_list_call,
    parse_render,
    rewrite_as_text_construct,
    vnode_render_ast,
)
from jitwire.compiler.sandbox import evaluate_expression
from jitwire.runtime.component import (
    ComponentInstance,
    create_component_instance_for_vnode,
    discard_awaitables,
    materialize_async,
    normalize_render,
    resolve_async_factory,
    start_server_prefetch,
)
from jitwire.runtime.escape import escape_html
from jitwire.runtime.options import RenderOptions
from jitwire.runtime.patch_context import (
    ComponentFrame,
    ElementFrame,
    FragmentFrame,
    PatchContext,
    PatchResult,
    Step,
)
from jitwire.runtime.render import mark_root, render_start_tag
from jitwire.runtime.vnode import NodeKind, VNode

logger = logging.getLogger(__name__)

EMPTY_COMMENT = "<!---->"


def _fold(context: PatchContext, node: VNode, literal: str) -> Step:
    annotation = context.annotations.of(context.annotations.ast_for(node))
    annotation.ssr_string = literal
    annotation.ssr_static = True
    return Step.CONTINUE


def _resolve_conditional(
    context: PatchContext, element: ast.expr
) -> Optional[ast.expr]:
    vm = context.static_active_instance
    scope = {VM_NAME: vm, NODE_CONSTRUCT: vm._c if vm is not None else None}
    while isinstance(element, ast.IfExp):
        try:
            test = evaluate_expression(element.test, scope)
        except Exception as e:
            logger.debug("Could not evaluate conditional child: %s", e)
            return None
        element = element.body if test else element.orelse
    return element


def set_children_ast(
    context: PatchContext, node_ast: ast.AST, children: List[VNode]
) -> None:
    """Bind each static child node to its expression in ``node_ast``'s child array.

    Children that cannot be correlated are bound to unmatched placeholders and
    the container itself is marked unmatched.
    """
    annotations = context.annotations
    array = child_array_of(node_ast)

    correlated = (
        array is not None
        and len(array.elts) == len(children)
        and not any(is_list_call(element) for element in array.elts)
    )
    if not correlated:
        if array is None and not annotations.of(node_ast).unmatched:
            logger.debug("No child array found in %s", type(node_ast).__name__)
        annotations.of(node_ast).unmatched = True
        for child in children:
            annotations.bind(child, annotations.placeholder())
        return

    for child, element in zip(children, array.elts):
        resolved = _resolve_conditional(context, element)
        annotations.bind(
            child, resolved if resolved is not None else annotations.placeholder()
        )


def patch_text(
    static: VNode, dynamic: VNode, context: PatchContext, is_root: bool = False
) -> Step:
    static_text = static.text or ""
    dynamic_text = dynamic.text or ""
    if static.raw != dynamic.raw:
        return Step.CONTINUE
    if not static.raw:
        static_text = escape_html(static_text)
        dynamic_text = escape_html(dynamic_text)
    if static_text != dynamic_text:
        return Step.CONTINUE
    return _fold(context, static, static_text)


def patch_comment(
    static: VNode, dynamic: VNode, context: PatchContext, is_root: bool = False
) -> Step:
    if (static.text or "") != (dynamic.text or ""):
        return Step.CONTINUE
    return _fold(context, static, f"<!--{static.text or ''}-->")


def patch_string_node(
    static: VNode, dynamic: VNode, context: PatchContext, is_root: bool = False
) -> Step:
    static_children = static.children or []
    dynamic_children = dynamic.children or []
    static_open, static_close = static.open or "", static.close or ""
    dynamic_open, dynamic_close = dynamic.open or "", dynamic.close or ""

    if not static_children and not dynamic_children:
        literal = static_open + static_close
        if literal.strip() != (dynamic_open + dynamic_close).strip():
            return Step.CONTINUE
        node_ast = context.annotations.ast_for(static)
        if not context.annotations.of(node_ast).unmatched:
            rewrite_as_text_construct(node_ast, literal)
        return _fold(context, static, literal)

    if (
        len(static_children) != len(dynamic_children)
        or static_open != dynamic_open
        or static_close != dynamic_close
    ):
        return Step.CONTINUE

    node_ast = context.annotations.ast_for(static)
    context.annotations.of(node_ast).ssr_string = static_open
    set_children_ast(context, node_ast, static_children)
    context.push(
        ElementFrame(
            static_children=static_children,
            dynamic_children=dynamic_children,
            ast=node_ast,
            total=len(static_children),
            end_tag=static_close,
        )
    )
    return Step.CONTINUE


def patch_element(
    static: VNode, dynamic: VNode, context: PatchContext, is_root: bool = False
) -> Step:
    options = context.options
    if is_root:
        mark_root(static)
        mark_root(dynamic)

    static_start = render_start_tag(static, options, context.static_active_instance)
    dynamic_start = render_start_tag(dynamic, options, context.dynamic_active_instance)
    if static_start != dynamic_start:
        return Step.CONTINUE

    if options.is_unary_tag(static.tag):
        return _fold(context, static, static_start)

    static_end = f"</{static.tag}>"
    if static_end != f"</{dynamic.tag}>":
        return Step.CONTINUE

    static_children = static.children or []
    dynamic_children = dynamic.children or []
    if not static_children and not dynamic_children:
        return _fold(context, static, static_start + static_end)

    if len(static_children) != len(dynamic_children):
        logger.debug(
            "Child count differs for <%s>: %d vs %d",
            static.tag,
            len(static_children),
            len(dynamic_children),
        )
        return Step.CONTINUE

    node_ast = context.annotations.ast_for(static)
    context.annotations.of(node_ast).ssr_string = static_start
    set_children_ast(context, node_ast, static_children)
    context.push(
        ElementFrame(
            static_children=static_children,
            dynamic_children=dynamic_children,
            ast=node_ast,
            total=len(static_children),
            end_tag=static_end,
        )
    )
    return Step.CONTINUE


def enter_component(
    context: PatchContext,
    node_ast: ast.AST,
    static_vm: ComponentInstance,
    dynamic_vm: ComponentInstance,
    is_root: bool = False,
) -> Step:
    """Prepare both instances of a component and descend into their roots.

    Prefetch hooks of both instances run concurrently; rendering happens in
    the continuation once they settled.
    """
    annotations = context.annotations
    compile_template = context.options.compile_template
    normalize_render(static_vm, compile_template)
    normalize_render(dynamic_vm, compile_template)

    module = parse_render(static_vm.render_fn)
    if module is None:
        module = ast.Module(body=[], type_ignores=[])
    if context.static_ast is None:
        context.static_ast = module

    annotation = annotations.of(node_ast)
    annotation.ssr_render_ast = module
    annotation.render = static_vm.render_fn
    annotation.ssr_styles = context.take_styles()

    pending = start_server_prefetch(static_vm)
    try:
        pending += start_server_prefetch(dynamic_vm)
    except Exception:
        discard_awaitables(pending)
        raise

    def render_roots(_: Any = None) -> None:
        static_root = static_vm._render()
        dynamic_root = dynamic_vm._render()
        static_root.parent = static_vm.vnode
        dynamic_root.parent = dynamic_vm.vnode

        context.push(
            ComponentFrame(
                prev_ast=node_ast,
                prev_static_active=context.static_active_instance,
                prev_dynamic_active=context.dynamic_active_instance,
            )
        )
        context.static_active_instance = static_vm
        context.dynamic_active_instance = dynamic_vm

        root_call = vnode_render_ast(module)
        if root_call is None:
            annotations.of(module).unmatched = True
            annotations.bind(static_root, module)
        else:
            annotations.bind(static_root, root_call)
        context.descend(static_root, dynamic_root, is_root)

    async def prefetched() -> Any:
        tasks = [asyncio.ensure_future(awaitable) for awaitable in pending]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    return context.wait_then(prefetched if pending else None, render_roots)


def patch_component(
    static: VNode, dynamic: VNode, context: PatchContext, is_root: bool = False
) -> Step:
    static_vm = create_component_instance_for_vnode(
        static, context.static_active_instance, context.static_context
    )
    dynamic_vm = create_component_instance_for_vnode(
        dynamic, context.dynamic_active_instance, context.user_context
    )
    return enter_component(
        context, context.annotations.ast_for(static), static_vm, dynamic_vm, is_root
    )


def patch_async_component(
    static: VNode, dynamic: VNode, context: PatchContext, is_root: bool = False
) -> Step:
    annotations = context.annotations
    static_factory = static.async_factory
    dynamic_factory = dynamic.async_factory

    async def resolve_both() -> Any:
        if static_factory is dynamic_factory:
            component = await resolve_async_factory(static_factory)
            return component, component
        return await asyncio.gather(
            resolve_async_factory(static_factory),
            resolve_async_factory(dynamic_factory),
        )

    def resolved(components: Any) -> None:
        if components is None:
            components = (static_factory.resolved, dynamic_factory.resolved)
        static_component, dynamic_component = components
        static_result = materialize_async(
            static, static_component, context.static_active_instance
        )
        dynamic_result = materialize_async(
            dynamic, dynamic_component, context.dynamic_active_instance
        )

        node_ast = annotations.ast_for(static)
        if isinstance(static_result, list) and isinstance(dynamic_result, list):
            # The placeholder's expression cannot describe a fragment
            annotations.of(node_ast).unmatched = True
            if len(static_result) != len(dynamic_result):
                return
            context.push(
                FragmentFrame(
                    static_children=static_result,
                    dynamic_children=dynamic_result,
                    ast=node_ast,
                    total=len(static_result),
                )
            )
            return

        if (
            isinstance(static_result, VNode)
            and isinstance(dynamic_result, VNode)
            and (static_result.kind is NodeKind.COMPONENT)
            == (dynamic_result.kind is NodeKind.COMPONENT)
        ):
            if static_result.kind is not NodeKind.COMPONENT:
                annotations.of(node_ast).unmatched = True
            annotations.bind(static_result, node_ast)
            context.descend(static_result, dynamic_result, is_root)
            return

        logger.debug("Async component resolved asymmetrically; rendering nothing")
        _fold(context, static, EMPTY_COMMENT)

    wait = None
    if static_factory.resolved is None or dynamic_factory.resolved is None:
        wait = resolve_both
    return context.wait_then(wait, resolved)


_CLASSIFIERS: Dict[NodeKind, Callable[[VNode, VNode, PatchContext, bool], Step]] = {
    NodeKind.STRING: patch_string_node,
    NodeKind.COMPONENT: patch_component,
    NodeKind.ELEMENT: patch_element,
    NodeKind.ASYNC_COMPONENT: patch_async_component,
    NodeKind.COMMENT: patch_comment,
    NodeKind.TEXT: patch_text,
}


def patch_node(
    static: VNode, dynamic: VNode, context: PatchContext, is_root: bool = False
) -> Step:
    """Classify one node pair. Pairs of different kinds are never folded."""
    kind = static.kind
    if kind is not dynamic.kind:
        return Step.CONTINUE
    return _CLASSIFIERS[kind](static, dynamic, context, is_root)


def create_patch_function(
    options: Optional[RenderOptions] = None,
) -> Callable[[ComponentInstance, ComponentInstance, Callable[[PatchResult], None]], None]:
    """Return ``patch(static_vm, dynamic_vm, done)``.

    ``static_vm`` is the root instance rendered without request data and
    ``dynamic_vm`` the one rendered for a real request; each carries its own
    ``ssr_context``. ``done`` is called exactly once with a PatchResult.
    """
    options = options or RenderOptions()

    def patch(
        static_vm: ComponentInstance,
        dynamic_vm: ComponentInstance,
        done: Callable[[PatchResult], None],
    ) -> None:
        context = PatchContext(
            options,
            static_active_instance=None,
            dynamic_active_instance=None,
            patch_node=patch_node,
            done=done,
            user_context=dynamic_vm.ssr_context,
            static_context=static_vm.ssr_context,
        )
        root_ast = context.annotations.placeholder(unmatched=False)
        context.start(
            lambda: enter_component(context, root_ast, static_vm, dynamic_vm, True)
        )

    return patch


async def optimize(
    static_vm: ComponentInstance,
    dynamic_vm: ComponentInstance,
    options: Optional[RenderOptions] = None,
) -> PatchResult:
    """Run one optimization pass and wait for it to finish.

    Raises the error that aborted the pass, if any.
    """
    future: "asyncio.Future[PatchResult]" = asyncio.get_running_loop().create_future()

    def done(result: PatchResult) -> None:
        if not future.done():
            future.set_result(result)

    create_patch_function(options)(static_vm, dynamic_vm, done)
    result = await future
    if not result.success:
        raise result.error
    return result
