from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("jitwire")
except PackageNotFoundError:
    __version__ = "unknown"

from jitwire.compiler.exceptions import (
    ComponentConfigError,
    JitError,
    RenderCompileError,
)
from jitwire.runtime.app import create_app
from jitwire.runtime.component import ComponentInstance, ComponentOptions
from jitwire.runtime.options import RenderOptions
from jitwire.runtime.patch import create_patch_function, optimize
from jitwire.runtime.patch_context import PatchResult, RenderTree
from jitwire.runtime.render import render_to_string
from jitwire.runtime.renderer import JitRenderer
from jitwire.runtime.vnode import VNode, async_component

__all__ = [
    "ComponentConfigError",
    "ComponentInstance",
    "ComponentOptions",
    "JitError",
    "JitRenderer",
    "PatchResult",
    "RenderCompileError",
    "RenderOptions",
    "RenderTree",
    "VNode",
    "async_component",
    "create_app",
    "create_patch_function",
    "optimize",
    "render_to_string",
]
