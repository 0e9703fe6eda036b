"""Server-side node modules and directives.

Modules turn node data into start-tag text; directives mutate node data
before modules run. Both are looked up by the renderer and by the optimizer,
which must produce byte-identical start tags.
"""

from typing import Any, Callable, Dict, List, Optional

from jitwire.runtime.escape import escape_html
from jitwire.runtime.vnode import VNode

SSR_ATTR = "data-server-rendered"

# HTML void elements that don't have closing tags
UNARY_TAGS = {
    "area",
    "base",
    "br",
    "col",
    "embed",
    "frame",
    "hr",
    "img",
    "input",
    "isindex",
    "keygen",
    "link",
    "meta",
    "param",
    "source",
    "track",
    "wbr",
}

Module = Callable[[VNode], Optional[str]]
Directive = Callable[[VNode, Dict[str, Any]], None]


def is_unary_tag(tag: str) -> bool:
    return tag.lower() in UNARY_TAGS


def _placeholder_chain(node: VNode) -> List[VNode]:
    """Component placeholders above ``node``, outermost first."""
    chain = []
    parent = node.parent
    while parent is not None:
        chain.append(parent)
        parent = parent.parent
    chain.reverse()
    return chain


def render_attrs(node: VNode) -> Optional[str]:
    attrs = (node.data or {}).get("attrs")
    if not attrs:
        return None
    parts = []
    for key, value in attrs.items():
        if value is None or value is False:
            continue
        if value is True:
            parts.append(f" {key}")
        else:
            parts.append(f' {key}="{escape_html(value)}"')
    return "".join(parts)


def _stringify_class(value: Any) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return " ".join(k for k, v in value.items() if v)
    if isinstance(value, (list, tuple)):
        return " ".join(s for s in (_stringify_class(v) for v in value) if s)
    return str(value)


def render_class(node: VNode) -> Optional[str]:
    classes = []
    for source in _placeholder_chain(node) + [node]:
        if source.data:
            cls = _stringify_class(source.data.get("class"))
            if cls:
                classes.append(cls)
    if not classes:
        return None
    return f' class="{escape_html(" ".join(classes))}"'


def _normalize_style(value: Any) -> Dict[str, str]:
    if not value:
        return {}
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items() if v is not None}
    result = {}
    for decl in str(value).split(";"):
        if ":" in decl:
            key, val = decl.split(":", 1)
            result[key.strip()] = val.strip()
    return result


def render_style(node: VNode) -> Optional[str]:
    style: Dict[str, str] = {}
    for source in _placeholder_chain(node) + [node]:
        if source.data:
            style.update(_normalize_style(source.data.get("style")))
    if not style:
        return None
    text = "".join(f"{k}:{v};" for k, v in style.items())
    return f' style="{escape_html(text)}"'


def show(node: VNode, directive: Dict[str, Any]) -> None:
    """``show`` directive: hide the element when its value is falsy."""
    if directive.get("value"):
        return
    if node.data is None:
        node.data = {}
    style = _normalize_style(node.data.get("style"))
    style["display"] = "none"
    node.data["style"] = style


DEFAULT_MODULES: List[Module] = [render_attrs, render_class, render_style]

DEFAULT_DIRECTIVES: Dict[str, Directive] = {
    "show": show,
}
