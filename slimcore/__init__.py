from .app import App
from .core.config import Config, env
from .core.container import Container
from .core.errors import (
    ConfigurationError,
    DependencyResolutionError,
    MethodNotAllowed,
    NotFound,
    ProviderRegistrationFailure,
    RouteNotFound,
    ValidationFailure,
)

__all__ = [
    "App",
    "Config",
    "ConfigurationError",
    "Container",
    "DependencyResolutionError",
    "MethodNotAllowed",
    "NotFound",
    "ProviderRegistrationFailure",
    "RouteNotFound",
    "ValidationFailure",
    "env",
]
