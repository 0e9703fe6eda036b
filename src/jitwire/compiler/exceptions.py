from typing import Optional


class JitError(Exception):
    """Base class for errors raised by the optimizer."""

    pass


class ComponentConfigError(JitError):
    """Raised when a component cannot produce a render function."""

    def __init__(self, message: str, component_name: Optional[str] = None):
        self.message = message
        self.component_name = component_name
        super().__init__(message)


class RenderCompileError(JitError):
    """Raised when generated render source fails to compile in the sandbox."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.message = message
        self.source = source
        super().__init__(message)
