"""Jinja2 rendering of the package's built-in HTML pages."""

from functools import lru_cache
from typing import Any, Dict

from jinja2 import Environment, PackageLoader, select_autoescape


def _gutter(num: int) -> str:
    return str(num).rjust(4)


@lru_cache(maxsize=None)
def get_environment() -> Environment:
    env = Environment(
        loader=PackageLoader("jitwire", "templates"),
        autoescape=select_autoescape(["html"]),
    )
    env.filters["gutter"] = _gutter
    return env


def render_template(template_name: str, context: Dict[str, Any]) -> str:
    """Render ``template_name`` (relative to ``jitwire/templates``) with ``context``."""
    return get_environment().get_template(template_name).render(**context)
