from typing import Any, Iterable, List, Optional

from fastapi import HTTPException


class SlimCoreError(Exception):
    """Base class for errors raised by the bootstrap layer."""


class ConfigurationError(SlimCoreError):
    pass


class NotFound(SlimCoreError, LookupError):
    """Raised by the registry when a name is neither registered nor autowireable."""

    def __init__(self, name: Any):
        self.name = name
        super().__init__(f"No entry or class found for '{_describe(name)}'")


class DependencyResolutionError(SlimCoreError):
    pass


class ProviderRegistrationFailure(SlimCoreError):
    def __init__(self, service_name: str, cause: Exception):
        self.service_name = service_name
        super().__init__(f"Provider for service '{service_name}' failed: {cause}")


class ValidationFailure(SlimCoreError):
    def __init__(self, message: str = "Validation failed", errors: Optional[Iterable[str]] = None):
        self.errors: List[str] = list(errors or [])
        super().__init__(message)


class RouteNotFound(HTTPException):
    def __init__(self, detail: str = "Not Found"):
        super().__init__(status_code=404, detail=detail)


class MethodNotAllowed(HTTPException):
    def __init__(self, allowed_methods: Iterable[str]):
        self.allowed_methods = sorted(set(allowed_methods))
        allow = ", ".join(self.allowed_methods)
        super().__init__(status_code=405, detail="Method Not Allowed", headers={"Allow": allow})


def _describe(name: Any) -> str:
    if isinstance(name, type):
        return f"{name.__module__}.{name.__qualname__}"
    return str(name)
