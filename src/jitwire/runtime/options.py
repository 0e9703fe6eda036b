"""Renderer configuration."""

import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from jitwire.runtime.modules import (
    DEFAULT_DIRECTIVES,
    DEFAULT_MODULES,
    Directive,
    Module,
    is_unary_tag,
)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes", "on")


@dataclass
class RenderOptions:
    """Lookup tables and hooks shared by the renderer and the optimizer.

    Args:
        modules: Per-node text generators, applied in order.
        directives: Directive renderers keyed by name. ``show`` is required.
        is_unary_tag: Predicate for self-closing tags.
        compile_template: Turns a template string into render-function
            source (``def render(_vm, _c): ...``). Components that only
            carry a template need it.
        validate: Run every synthesized render function once before
            trusting it.
        debug: Verbose optimizer logging. Defaults to ``JITWIRE_DEBUG``.
    """

    modules: List[Module] = field(default_factory=lambda: list(DEFAULT_MODULES))
    directives: Dict[str, Directive] = field(
        default_factory=lambda: dict(DEFAULT_DIRECTIVES)
    )
    is_unary_tag: Callable[[str], bool] = is_unary_tag
    compile_template: Optional[Callable[[str], str]] = None
    validate: bool = True
    debug: bool = field(default_factory=lambda: _env_flag("JITWIRE_DEBUG"))

    def __post_init__(self) -> None:
        if "show" not in self.directives:
            self.directives["show"] = DEFAULT_DIRECTIVES["show"]

    def resolve_directive(self, name: str) -> Optional[Directive]:
        return self.directives.get(name)
