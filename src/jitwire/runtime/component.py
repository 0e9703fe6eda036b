"""Component definitions, instances and render helpers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from types import ModuleType
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Union,
)

from jitwire.compiler.exceptions import ComponentConfigError
from jitwire.compiler.sandbox import compile_render
from jitwire.runtime.vnode import (
    AsyncFactory,
    AsyncMeta,
    ComponentVNodeOptions,
    VNode,
    create_empty_vnode,
    create_string_vnode,
    create_text_vnode,
)

logger = logging.getLogger(__name__)

RenderFn = Callable[["ComponentInstance", Callable[..., Any]], Any]


@dataclass(eq=False)
class ComponentOptions:
    """A component definition.

    ``render`` receives the instance as ``_vm`` and its element factory as
    ``_c``. ``server_prefetch`` hooks receive the instance and may return
    awaitables; they run before the component renders on the server.
    """

    name: Optional[str] = None
    render: Optional[RenderFn] = None
    template: Optional[str] = None
    data: Optional[Callable[["ComponentInstance"], Dict[str, Any]]] = None
    server_prefetch: List[Callable[["ComponentInstance"], Any]] = field(
        default_factory=list
    )
    components: Dict[str, Any] = field(default_factory=dict)
    scope_id: Optional[str] = None
    styles: Optional[Dict[str, Any]] = None
    functional: bool = False
    # Default prop values
    props: Dict[str, Any] = field(default_factory=dict)


def normalize_children(children: Any) -> Optional[List[VNode]]:
    if children is None:
        return None
    if isinstance(children, (str, int, float)):
        return [create_text_vnode(children)]
    result: List[VNode] = []
    stack = [iter(children)]
    while stack:
        try:
            child = next(stack[-1])
        except StopIteration:
            stack.pop()
            continue
        if child is None or child is False:
            continue
        if isinstance(child, VNode):
            result.append(child)
        elif isinstance(child, (list, tuple)):
            stack.append(iter(child))
        else:
            result.append(create_text_vnode(child))
    return result


class ComponentInstance:
    """A live component: its state plus the helpers render functions call."""

    def __init__(
        self,
        options: ComponentOptions,
        props: Optional[Dict[str, Any]] = None,
        parent: Optional["ComponentInstance"] = None,
        vnode: Optional[VNode] = None,
        ssr_context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.options = options
        self.parent = parent
        # Placeholder node this instance was created from (None for roots).
        self.vnode = vnode
        self.ssr_context: Dict[str, Any] = ssr_context if ssr_context is not None else {}
        self.props: Dict[str, Any] = {**options.props, **(props or {})}
        self.state: Dict[str, Any] = {}
        self.render_fn: Optional[RenderFn] = options.render

        if options.data is not None:
            self.state.update(options.data(self) or {})

        if options.styles:
            self.ssr_context.setdefault("_styles", {}).update(options.styles)

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal attribute lookup fails
        state = self.__dict__.get("state", {})
        if name in state:
            return state[name]
        props = self.__dict__.get("props", {})
        if name in props:
            return props[name]
        raise AttributeError(
            f"'{self.name}' component has no attribute '{name}'"
        )

    @property
    def name(self) -> str:
        options = self.__dict__.get("options")
        if options is not None and options.name:
            return options.name
        vnode = self.__dict__.get("vnode")
        if vnode is not None and vnode.component_options is not None:
            return vnode.component_options.tag or "anonymous"
        return "anonymous"

    # --- Render helpers ----------------------------------------------------

    def _c(
        self,
        tag: Any,
        data: Any = None,
        children: Any = None,
        normalization: Optional[int] = None,
    ) -> Union[VNode, List[VNode]]:
        if isinstance(data, (list, tuple, str)):
            children, data = data, None

        ctor = tag
        if isinstance(tag, str):
            ctor = self.options.components.get(tag)
        if ctor is not None:
            node = create_component(
                ctor, data, self, normalize_children(children), tag if isinstance(tag, str) else None
            )
            return node if node is not None else create_empty_vnode()

        return VNode(
            tag=tag,
            data=data,
            children=normalize_children(children),
            context=self,
        )

    def _v(self, text: Any) -> VNode:
        return create_text_vnode(text)

    def _s(self, value: Any) -> str:
        return "" if value is None else str(value)

    def _e(self) -> VNode:
        return create_empty_vnode()

    def _l(self, items: Any, render: Callable[[Any, Any], Any]) -> List[Any]:
        if items is None:
            return []
        if isinstance(items, int):
            return [render(i + 1, i) for i in range(items)]
        if isinstance(items, dict):
            return [render(value, key) for key, value in items.items()]
        return [render(item, index) for index, item in enumerate(items)]

    def _ssr_node(
        self,
        open: str,
        close: Optional[str] = None,
        children: Any = None,
        normalization: Optional[int] = None,
    ) -> VNode:
        return create_string_vnode(open, close, normalize_children(children))

    def _render(self) -> VNode:
        if self.render_fn is None:
            raise ComponentConfigError(
                f"render function not defined in component: {self.name}", self.name
            )
        return to_root_vnode(self.render_fn(self, self._c))

    def __repr__(self) -> str:
        return f"<ComponentInstance {self.name}>"


def to_root_vnode(result: Any) -> VNode:
    if isinstance(result, VNode):
        return result
    if isinstance(result, str):
        return create_string_vnode(result)
    if isinstance(result, (list, tuple)):
        nodes = normalize_children(result) or []
        if len(nodes) == 1:
            return nodes[0]
    return create_empty_vnode()


def _unwrap_module(ctor: Any) -> Any:
    if isinstance(ctor, ModuleType) and hasattr(ctor, "default"):
        return ctor.default
    return ctor


def create_component(
    ctor: Any,
    data: Optional[Dict[str, Any]],
    context: ComponentInstance,
    children: Optional[List[VNode]],
    tag: Optional[str],
) -> Union[VNode, List[VNode], None]:
    """Build the node a registered component renders as.

    Returns a component placeholder, an async placeholder for unresolved
    factories, the rendered node(s) of a functional component, or None when
    ``ctor`` is not a component.
    """
    ctor = _unwrap_module(ctor)

    if isinstance(ctor, AsyncFactory):
        if ctor.resolved is None:
            placeholder = create_empty_vnode()
            placeholder.async_factory = ctor
            placeholder.async_meta = AsyncMeta(
                data=data, context=context, children=children, tag=tag
            )
            return placeholder
        ctor = _unwrap_module(ctor.resolved)

    if not isinstance(ctor, ComponentOptions):
        return None

    if ctor.functional:
        if ctor.render is None:
            return None
        result = ctor.render(context, context._c)
        if isinstance(result, (list, tuple)):
            return normalize_children(result)
        return to_root_vnode(result)

    data = data or {}
    name = ctor.name or tag or "anonymous"
    return VNode(
        tag=f"jit-component-{name}",
        data=data,
        context=context,
        component_options=ComponentVNodeOptions(
            ctor=ctor,
            props_data=dict(data.get("props") or {}),
            children=children,
            tag=tag,
        ),
    )


def create_component_instance_for_vnode(
    vnode: VNode,
    parent: Optional[ComponentInstance],
    ssr_context: Optional[Dict[str, Any]] = None,
) -> ComponentInstance:
    opts = vnode.component_options
    if opts is None:
        raise ValueError(f"{vnode!r} is not a component node")
    return ComponentInstance(
        opts.ctor,
        props=opts.props_data,
        parent=parent,
        vnode=vnode,
        ssr_context=ssr_context,
    )


def normalize_render(
    vm: ComponentInstance,
    compile_template: Optional[Callable[[str], str]] = None,
) -> None:
    """Make sure ``vm`` has a render function, compiling its template if needed."""
    if vm.render_fn is not None:
        return
    template = vm.options.template
    if not template:
        raise ComponentConfigError(
            f"render function or template not defined in component: {vm.name}",
            vm.name,
        )
    if compile_template is None:
        raise ComponentConfigError(
            f"component {vm.name} has a template but no template compiler is configured",
            vm.name,
        )
    vm.render_fn = compile_render(compile_template(template))


def start_server_prefetch(vm: ComponentInstance) -> List[Awaitable[Any]]:
    """Run ``vm``'s prefetch hooks and return the awaitables they produced."""
    handlers: Iterable[Callable[..., Any]] = vm.options.server_prefetch or []
    if callable(handlers):
        handlers = [handlers]
    pending: List[Awaitable[Any]] = []
    try:
        for handler in handlers:
            result = handler(vm)
            if inspect.isawaitable(result):
                pending.append(result)
    except Exception:
        discard_awaitables(pending)
        raise
    return pending


def discard_awaitables(pending: Iterable[Awaitable[Any]]) -> None:
    for awaitable in pending:
        close = getattr(awaitable, "close", None)
        if close is not None:
            close()


async def wait_for_server_prefetch(vm: ComponentInstance) -> None:
    pending = start_server_prefetch(vm)
    if pending:
        await asyncio.gather(*pending)


async def resolve_async_factory(factory: AsyncFactory) -> Any:
    """Resolve an async component factory to its component definition.

    Supports factories that call ``resolve``/``reject``, factories returning
    an awaitable, and factories returning ``{"component": awaitable}``.
    Returns None when the factory settled on nothing synchronously and gave
    nothing to await.
    """
    if factory.resolved is not None:
        return factory.resolved

    loop = asyncio.get_running_loop()
    future: "asyncio.Future[Any]" = loop.create_future()

    def resolve(component: Any) -> None:
        if not future.done():
            future.set_result(component)

    def reject(reason: Any) -> None:
        if not future.done():
            if not isinstance(reason, BaseException):
                reason = RuntimeError(f"async component failed: {reason}")
            future.set_exception(reason)

    result = factory(resolve, reject)
    if inspect.isawaitable(result):
        component = await result
    elif isinstance(result, dict) and inspect.isawaitable(result.get("component")):
        component = await result["component"]
    elif future.done():
        component = future.result()
    else:
        # Nothing to wait on: the factory neither settled nor returned a promise
        logger.debug("Async component factory %r did not resolve", factory)
        return None

    if component is not None:
        factory.resolved = component
    return component


def materialize_async(
    node: VNode, component: Any, active: Optional[ComponentInstance]
) -> Union[VNode, List[VNode], None]:
    """Build what an async placeholder stands for once its factory resolved."""
    meta = node.async_meta
    return create_component(
        component,
        meta.data if meta else None,
        (meta.context if meta else None) or active,
        meta.children if meta else None,
        meta.tag if meta else None,
    )
