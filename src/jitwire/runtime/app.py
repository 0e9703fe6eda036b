"""Minimal Starlette application serving one root component."""

from typing import Any, Callable, Dict, Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from jitwire.runtime.component import ComponentOptions
from jitwire.runtime.debug import DevErrorMiddleware
from jitwire.runtime.options import RenderOptions
from jitwire.runtime.renderer import JitRenderer

PropsFactory = Callable[[Request], Dict[str, Any]]


def props_from_query(request: Request) -> Dict[str, Any]:
    """Default request-to-props mapping: the query string plus the path."""
    props: Dict[str, Any] = dict(request.query_params)
    props.setdefault("path", request.url.path)
    return props


def create_app(
    component: ComponentOptions,
    options: Optional[RenderOptions] = None,
    static_props: Optional[Dict[str, Any]] = None,
    props_factory: PropsFactory = props_from_query,
    path: str = "/{path:path}",
) -> Starlette:
    """Build an ASGI app rendering ``component`` for every matching request.

    The renderer is reachable as ``app.state.jitwire``. With
    ``options.debug`` unhandled errors are shown as a debug page.
    """
    renderer = JitRenderer(component, options, static_props)

    async def render(request: Request) -> Response:
        return await renderer.render_to_response(props_factory(request))

    middleware = []
    if renderer.options.debug:
        middleware.append(Middleware(DevErrorMiddleware))

    app = Starlette(
        debug=False,
        routes=[Route(path, render, methods=["GET"])],
        middleware=middleware,
    )
    app.state.jitwire = renderer
    return app
