import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, FrozenSet, Iterable, List, Mapping, Optional

from .errors import ConfigurationError, ProviderRegistrationFailure
from .validation import parse_scope, scope_matches

if TYPE_CHECKING:
    from ..app import App


logger = logging.getLogger(__name__)

# register(app, service_name, settings) -> None
ProviderHook = Callable[["App", str, Mapping[str, Any]], None]


@dataclass(frozen=True)
class ServiceDescriptor:
    name: str
    provider: ProviderHook
    settings: Mapping[str, Any] = field(default_factory=dict)
    scope: FrozenSet[str] = frozenset()


def descriptors_from_config(
    services: Optional[Mapping[str, Mapping[str, Any]]],
    registry: Optional[Mapping[str, ProviderHook]] = None,
) -> List[ServiceDescriptor]:
    """Turn the ``services`` configuration block into descriptors.

    Each entry looks like ``{"provider": "logger", "settings": {...}, "on": "http"}``;
    ``provider`` is either a key of ``registry`` or the hook itself.
    """
    registry = registry or {}
    descriptors = []
    for name, service in (services or {}).items():
        ref = service.get("provider")
        provider = registry.get(ref) if isinstance(ref, str) else ref
        if not callable(provider):
            raise ConfigurationError(f"Service '{name}' has an unknown provider '{ref}'")
        settings = service.get("settings") or {}
        descriptors.append(
            ServiceDescriptor(
                name=name,
                provider=provider,
                settings=MappingProxyType(dict(settings)) if isinstance(settings, Mapping) else settings,
                scope=parse_scope(service.get("on")),
            )
        )
    return descriptors


def activate_providers(app: "App", descriptors: Iterable[ServiceDescriptor], scope: str) -> List[str]:
    """Call each matching provider hook in declared order.

    A hook that raises aborts activation with ProviderRegistrationFailure;
    services registered before it are left in place.
    """
    registered = []
    for descriptor in descriptors:
        if not scope_matches(descriptor.scope, scope):
            logger.debug(f"Skipping service '{descriptor.name}' outside scope {scope}")
            continue
        try:
            descriptor.provider(app, descriptor.name, descriptor.settings)
        except Exception as e:
            logger.error(f"Provider for service '{descriptor.name}' failed: {e}")
            raise ProviderRegistrationFailure(descriptor.name, e) from e
        registered.append(descriptor.name)
    return registered
