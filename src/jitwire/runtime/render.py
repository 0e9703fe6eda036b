"""Serialize component trees to HTML.

This is the baseline server renderer. It optionally follows a RenderTree
produced by the optimizer, swapping in the synthesized render functions and
skipping prefetch hooks of components proven static.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from jitwire.runtime.component import (
    ComponentInstance,
    create_component_instance_for_vnode,
    materialize_async,
    normalize_render,
    resolve_async_factory,
    wait_for_server_prefetch,
)
from jitwire.runtime.escape import escape_html
from jitwire.runtime.modules import SSR_ATTR
from jitwire.runtime.options import RenderOptions
from jitwire.runtime.vnode import VNode

if TYPE_CHECKING:
    from jitwire.runtime.patch_context import RenderTree


def _has_ancestor_data(node: VNode) -> bool:
    parent = node.parent
    while parent is not None:
        if parent.data is not None:
            return True
        parent = parent.parent
    return False


def _show_directive_info(node: Optional[VNode]) -> Optional[Dict[str, Any]]:
    # The outermost ancestor carrying a show directive wins
    found = None
    while node is not None:
        if node.data and node.data.get("directives"):
            for directive in node.data["directives"]:
                if directive.get("name") == "show":
                    found = directive
                    break
        node = node.parent
    return found


def mark_root(node: VNode) -> None:
    """Tag the root element so the client knows the markup is server-rendered."""
    data = dict(node.data or {})
    attrs = dict(data.get("attrs") or {})
    attrs[SSR_ATTR] = "true"
    data["attrs"] = attrs
    node.data = data


def render_start_tag(
    node: VNode,
    options: RenderOptions,
    active_instance: Optional[ComponentInstance],
) -> str:
    """Render ``<tag ...>`` for an element node.

    Order matters: directives mutate node data first (``show`` excluded),
    then the inherited ``show`` directive is merged, then every module
    appends its text, then scope identifiers are attached.
    """
    markup = f"<{node.tag}"

    # Modules like style also read parent placeholder data
    if node.data is not None or _has_ancestor_data(node):
        for directive in (node.data or {}).get("directives") or []:
            name = directive.get("name")
            if name == "show":
                continue
            renderer = options.resolve_directive(name)
            if renderer is not None:
                renderer(node, directive)

        show_info = _show_directive_info(node)
        if show_info is not None:
            options.directives["show"](node, show_info)

        for module in options.modules:
            result = module(node)
            if result:
                markup += result

    scope_id = None
    if (
        active_instance is not None
        and active_instance is not node.context
        and active_instance.options.scope_id
    ):
        scope_id = active_instance.options.scope_id
        markup += f" {scope_id}"
    if node.fn_scope_id is not None:
        markup += f" {node.fn_scope_id}"
    else:
        current: Optional[VNode] = node
        while current is not None:
            context = current.context
            if context is not None and context.options.scope_id:
                markup += f" {context.options.scope_id}"
            current = current.parent
    return markup + ">"


def render_styles(styles: Optional[Dict[str, Any]]) -> str:
    """Serialize collected style metadata to ``<style>`` tags.

    Each entry is ``{"ids": [...], "css": "...", "media": optional}``.
    """
    css = ""
    for style in (styles or {}).values():
        ids = " ".join(style.get("ids") or [])
        media = style.get("media")
        media_attr = f' media="{media}"' if media else ""
        css += f'<style data-jit-ssr-id="{ids}"{media_attr}>{style.get("css", "")}</style>'
    return css


def collect_tree_styles(tree: Optional["RenderTree"]) -> Dict[str, Any]:
    styles: Dict[str, Any] = {}
    stack = [tree] if tree is not None else []
    while stack:
        slot = stack.pop()
        if slot.styles:
            styles.update(slot.styles)
        stack.extend(slot.children or [])
    return styles


class _SlotCursor:
    """Hands out RenderTree child slots to child components in order."""

    def __init__(self, slot: Optional["RenderTree"]) -> None:
        self.children: List["RenderTree"] = list(slot.children or []) if slot else []
        self.index = 0

    def take(self, name: str) -> Optional["RenderTree"]:
        if self.index < len(self.children) and self.children[self.index].name == name:
            child = self.children[self.index]
            self.index += 1
            return child
        return None


class _Renderer:
    def __init__(self, options: RenderOptions, ssr_context: Dict[str, Any]) -> None:
        self.options = options
        self.ssr_context = ssr_context

    async def render_component(
        self,
        instance: ComponentInstance,
        slot: Optional["RenderTree"],
        is_root: bool,
    ) -> str:
        normalize_render(instance, self.options.compile_template)

        # A static slot's output never depends on data, so prefetch is skipped
        if slot is None or not slot.static:
            await wait_for_server_prefetch(instance)

        original = instance.render_fn
        if slot is not None and slot.render is not None:
            instance.render_fn = slot.render
        try:
            vnode = instance._render()
        finally:
            instance.render_fn = original
        vnode.parent = instance.vnode
        return await self.render_node(vnode, instance, is_root, _SlotCursor(slot))

    async def render_children(
        self,
        children: Optional[Iterable[VNode]],
        active: ComponentInstance,
        cursor: _SlotCursor,
    ) -> str:
        parts = []
        for child in children or []:
            parts.append(await self.render_node(child, active, False, cursor))
        return "".join(parts)

    async def render_node(
        self,
        node: VNode,
        active: ComponentInstance,
        is_root: bool,
        cursor: _SlotCursor,
    ) -> str:
        if node.is_string:
            inner = await self.render_children(node.children, active, cursor)
            return f"{node.open}{inner}{node.close or ''}"

        if node.component_options is not None:
            child = create_component_instance_for_vnode(node, active, self.ssr_context)
            return await self.render_component(child, cursor.take(child.name), is_root)

        if node.tag is not None:
            if is_root:
                mark_root(node)
            start = render_start_tag(node, self.options, active)
            if self.options.is_unary_tag(node.tag):
                return start
            inner = await self.render_children(node.children, active, cursor)
            return f"{start}{inner}</{node.tag}>"

        if node.is_comment:
            if node.async_factory is not None:
                return await self.render_async(node, active, is_root, cursor)
            return f"<!--{node.text or ''}-->"

        text = node.text or ""
        return text if node.raw else escape_html(text)

    async def render_async(
        self,
        node: VNode,
        active: ComponentInstance,
        is_root: bool,
        cursor: _SlotCursor,
    ) -> str:
        component = await resolve_async_factory(node.async_factory)
        resolved = materialize_async(node, component, active)
        if resolved is None:
            return "<!---->"
        if isinstance(resolved, list):
            return await self.render_children(resolved, active, cursor)
        return await self.render_node(resolved, active, is_root, cursor)


async def render_to_string(
    instance: ComponentInstance,
    options: Optional[RenderOptions] = None,
    tree: Optional["RenderTree"] = None,
) -> str:
    """Render a root component instance to HTML.

    With ``tree`` the optimized render functions it holds are used for the
    root and for every child component whose slot matches by name.
    """
    renderer = _Renderer(options or RenderOptions(), instance.ssr_context)
    return await renderer.render_component(instance, tree, True)
