"""Virtual nodes produced by component render functions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

if TYPE_CHECKING:
    from jitwire.runtime.component import ComponentInstance, ComponentOptions


class NodeKind(enum.Enum):
    TEXT = "text"
    COMMENT = "comment"
    ELEMENT = "element"
    COMPONENT = "component"
    ASYNC_COMPONENT = "async_component"
    STRING = "string"


@dataclass(eq=False)
class ComponentVNodeOptions:
    """What a component placeholder needs to instantiate its component."""

    ctor: "ComponentOptions"
    props_data: Dict[str, Any] = field(default_factory=dict)
    children: Optional[List["VNode"]] = None
    tag: Optional[str] = None


@dataclass(eq=False)
class AsyncMeta:
    data: Optional[Dict[str, Any]]
    context: Optional["ComponentInstance"]
    children: Optional[List["VNode"]]
    tag: Optional[str]


@dataclass(eq=False)
class VNode:
    """A node of a rendered tree.

    Nodes compare by identity; two renders of the same template produce
    distinct nodes even when they are structurally equal.
    """

    tag: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    children: Optional[List["VNode"]] = None
    text: Optional[str] = None
    context: Optional["ComponentInstance"] = None
    component_options: Optional[ComponentVNodeOptions] = None
    async_factory: Optional["AsyncFactory"] = None
    async_meta: Optional[AsyncMeta] = None
    is_comment: bool = False
    is_string: bool = False
    open: Optional[str] = None
    close: Optional[str] = None
    raw: bool = False
    fn_scope_id: Optional[str] = None
    parent: Optional["VNode"] = field(default=None, repr=False)

    @property
    def kind(self) -> NodeKind:
        if self.is_string:
            return NodeKind.STRING
        if self.component_options is not None:
            return NodeKind.COMPONENT
        if self.tag is not None:
            return NodeKind.ELEMENT
        if self.is_comment:
            if self.async_factory is not None:
                return NodeKind.ASYNC_COMPONENT
            return NodeKind.COMMENT
        return NodeKind.TEXT


class AsyncFactory:
    """Wraps an async component factory and remembers its resolution.

    The wrapped factory is called as ``factory(resolve, reject)`` and may
    either invoke the callbacks, return an awaitable, or return a mapping
    with a ``"component"`` awaitable.
    """

    def __init__(self, factory: Callable[..., Any]):
        self.factory = factory
        self.resolved: Any = None

    def __call__(
        self, resolve: Callable[[Any], None], reject: Callable[[BaseException], None]
    ) -> Any:
        return self.factory(resolve, reject)

    def __repr__(self) -> str:
        name = getattr(self.factory, "__name__", repr(self.factory))
        return f"AsyncFactory({name}, resolved={self.resolved is not None})"


def async_component(factory: Callable[..., Any]) -> AsyncFactory:
    """Mark a callable as an async component factory for registration."""
    return AsyncFactory(factory)


def create_text_vnode(text: Any, raw: bool = False) -> VNode:
    return VNode(text=str(text), raw=raw)


def create_empty_vnode(text: str = "") -> VNode:
    return VNode(text=text, is_comment=True)


def create_string_vnode(
    open: str,
    close: Optional[str] = None,
    children: Optional[List[VNode]] = None,
) -> VNode:
    return VNode(is_string=True, open=open, close=close, children=children)
