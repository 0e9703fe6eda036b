"""HTML escaping shared by the renderer and the optimizer.

Text nodes are compared after escaping, so both sides must go through the
same table.
"""

from typing import Any

_HTML_ESCAPES = str.maketrans(
    {
        "&": "&amp;",
        "<": "&lt;",
        ">": "&gt;",
        '"': "&quot;",
        "'": "&#39;",
    }
)


def escape_html(value: Any) -> str:
    """Escape ``& < > " '`` in ``str(value)``."""
    return str(value).translate(_HTML_ESCAPES)
