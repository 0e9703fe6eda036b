import linecache
import os
import traceback
from types import FrameType
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from types import TracebackType

from starlette.responses import HTMLResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from jitwire.compiler.exceptions import ComponentConfigError, RenderCompileError
from jitwire.runtime.error_renderer import render_template

CONTEXT_LINES = 5


class DevErrorMiddleware:
    """
    Middleware to catch exceptions and render a debug page with the traceback.
    Added to the app by ``create_app`` when ``RenderOptions.debug`` is set.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            response = self.render_error_page(exc)
            await response(scope, receive, send)

    def render_error_page(self, exc: Exception) -> HTMLResponse:
        component = None
        source = None
        if isinstance(exc, ComponentConfigError):
            component = exc.component_name
        elif isinstance(exc, RenderCompileError):
            source = exc.source

        exc_type = type(exc).__name__
        html_content = render_template(
            "error/500.html",
            {
                "title": exc_type,
                "exc_type": exc_type,
                "exc_msg": str(exc),
                "component": component,
                "source_lines": numbered(source.splitlines()) if source else [],
                "frames": collect_frames(exc.__traceback__),
            },
        )
        return HTMLResponse(html_content, status_code=500)


def numbered(
    lines: List[str], first: int = 1, current: Optional[int] = None
) -> List[Dict[str, Any]]:
    return [
        {"num": num, "content": line.rstrip(), "is_current": num == current}
        for num, line in enumerate(lines, start=first)
    ]


def frame_source(frame: FrameType) -> List[str]:
    """Source lines of the file a frame runs in.

    Generated render functions have no file; their source is taken from the
    ``__jit_source__`` of the function in the frame's namespace.
    """
    filename = frame.f_code.co_filename
    if os.path.exists(filename):
        return linecache.getlines(filename)
    fn = frame.f_globals.get(frame.f_code.co_name)
    source = getattr(fn, "__jit_source__", None)
    return source.splitlines() if source else []


def frame_origin(filename: str) -> str:
    if filename.startswith("<jitwire"):
        return "generated"
    if os.sep + "jitwire" + os.sep in filename:
        return "framework"
    return "user"


def collect_frames(tb: Optional["TracebackType"]) -> List[Dict[str, Any]]:
    frames = []
    cwd = os.getcwd()
    for frame, lineno in traceback.walk_tb(tb):
        filename = frame.f_code.co_filename
        lines = frame_source(frame)
        first = max(1, lineno - CONTEXT_LINES)
        last = min(len(lines), lineno + CONTEXT_LINES)
        origin = frame_origin(filename)
        frames.append(
            {
                "filename": filename,
                "short_filename": os.path.relpath(filename, cwd)
                if filename.startswith(cwd)
                else filename,
                "func_name": frame.f_code.co_name,
                "lineno": lineno,
                "context": numbered(lines[first - 1 : last], first, lineno),
                "origin": origin,
                "is_user_code": origin != "framework",
            }
        )
    return frames
