"""Request-facing renderer that optimizes a component tree on first use."""

import asyncio
import logging
from typing import Any, Dict, Optional

from starlette.responses import HTMLResponse

from jitwire.runtime.component import ComponentInstance, ComponentOptions
from jitwire.runtime.options import RenderOptions
from jitwire.runtime.patch import optimize
from jitwire.runtime.patch_context import RenderTree
from jitwire.runtime.render import collect_tree_styles, render_styles, render_to_string

logger = logging.getLogger(__name__)


class JitRenderer:
    """Renders one root component, caching its optimized RenderTree.

    The first request runs the optimizer with a static instance built from
    ``static_props`` next to a dynamic instance built from the request's
    props. Until an optimization succeeds every request is rendered through
    the unoptimized path and the optimizer is tried again on the next one.
    """

    def __init__(
        self,
        component: ComponentOptions,
        options: Optional[RenderOptions] = None,
        static_props: Optional[Dict[str, Any]] = None,
    ):
        self.component = component
        self.options = options or RenderOptions()
        self.static_props = dict(static_props or {})
        self.render_tree: Optional[RenderTree] = None
        self.last_error: Optional[BaseException] = None
        self._lock = asyncio.Lock()

    def create_instance(
        self,
        props: Optional[Dict[str, Any]] = None,
        ssr_context: Optional[Dict[str, Any]] = None,
    ) -> ComponentInstance:
        return ComponentInstance(
            self.component, props=props, ssr_context=ssr_context or {}
        )

    async def optimize(
        self, props: Optional[Dict[str, Any]] = None
    ) -> Optional[RenderTree]:
        """Optimize once and cache the result. Returns None if the pass failed."""
        async with self._lock:
            if self.render_tree is not None:
                return self.render_tree
            static_vm = self.create_instance(self.static_props)
            dynamic_vm = self.create_instance(props)
            try:
                result = await optimize(static_vm, dynamic_vm, self.options)
            except Exception as e:
                self.last_error = e
                logger.warning(
                    "Optimizing %s failed, rendering unoptimized: %s",
                    static_vm.name,
                    e,
                )
                return None
            self.last_error = None
            self.render_tree = result.render_tree
            if self.options.debug:
                logger.debug("Optimized %s: %r", static_vm.name, self.render_tree)
            return self.render_tree

    def reset(self) -> None:
        """Drop the cached RenderTree so the next request optimizes again."""
        self.render_tree = None

    async def render_to_string(
        self,
        props: Optional[Dict[str, Any]] = None,
        ssr_context: Optional[Dict[str, Any]] = None,
    ) -> str:
        tree = self.render_tree
        if tree is None:
            tree = await self.optimize(props)
        instance = self.create_instance(props, ssr_context)
        return await render_to_string(instance, self.options, tree)

    async def render_to_response(
        self,
        props: Optional[Dict[str, Any]] = None,
        status_code: int = 200,
    ) -> HTMLResponse:
        """Render to an HTMLResponse with collected styles injected."""
        ssr_context: Dict[str, Any] = {}
        html = await self.render_to_string(props, ssr_context)

        styles = collect_tree_styles(self.render_tree)
        styles.update(ssr_context.get("_styles") or {})
        css = render_styles(styles)
        if css:
            if "</head>" in html:
                html = html.replace("</head>", css + "</head>", 1)
            else:
                html = css + html
        return HTMLResponse(html, status_code=status_code)
