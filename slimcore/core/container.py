import inspect
import logging
import threading
import typing
from decimal import Decimal
from typing import Any, Callable, Dict, Hashable, Mapping, Optional

from .errors import DependencyResolutionError, NotFound


logger = logging.getLogger(__name__)

# Annotations the registry never tries to build
PRIMITIVE_TYPES = (
    str, bytes, bytearray, int, float, complex, bool, Decimal,
    list, dict, tuple, set, frozenset, type(None), object, type,
)

_UNSET = object()


def injectable_type(annotation: Any) -> Optional[type]:
    """Return the class to resolve for an annotation, or None for primitives.

    ``Optional[Service]`` resolves as ``Service``.
    """
    if typing.get_origin(annotation) is typing.Union:
        members = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(members) != 1:
            return None
        annotation = members[0]
    if annotation is inspect.Parameter.empty:
        return None
    if not inspect.isclass(annotation) or annotation in PRIMITIVE_TYPES:
        return None
    return annotation


def type_hints(func: Callable) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(func)
    except (NameError, TypeError):
        return getattr(func, "__annotations__", {}) or {}


class Container:
    """Name to instance/factory registry with optional class autowiring.

    Keys are strings or classes. Factories registered with :meth:`factory`
    run once, on first resolution, and the product is kept for the life of
    the container. Autowired classes are built fresh on every lookup.
    """

    def __init__(self, parent: Optional["Container"] = None):
        self._parent = parent
        self._instances: Dict[Hashable, Any] = {}
        self._factories: Dict[Hashable, Callable[..., Any]] = {}
        self._aliases: Dict[Hashable, Hashable] = {}
        self._autowiring = parent._autowiring if parent is not None else False
        self._lock = parent._lock if parent is not None else threading.RLock()

    def with_autowiring(self, enabled: bool = True) -> "Container":
        self._autowiring = enabled
        return self

    def alias(self, aliases: Mapping[Hashable, Hashable]) -> "Container":
        self._aliases.update(aliases)
        return self

    def set(self, name: Hashable, value: Any) -> None:
        name = self._target(name)
        self._factories.pop(name, None)
        self._instances[name] = value

    def factory(self, name: Hashable, factory: Callable[..., Any]) -> None:
        name = self._target(name)
        self._instances.pop(name, None)
        self._factories[name] = factory

    def has(self, name: Hashable) -> bool:
        target = self._target(name)
        if target in self._instances or target in self._factories:
            return True
        if self._parent is not None and self._parent.has(target):
            return True
        return self._autowiring and inspect.isclass(target)

    def get(self, name: Hashable) -> Any:
        target = self._target(name)
        value = self._lookup(target)
        if value is not _UNSET:
            return value
        if self._autowiring and inspect.isclass(target):
            return self.autowire(target)
        raise NotFound(name)

    def make(self, name: Hashable, *args: Any) -> Any:
        """Run a registered factory with ``args`` without caching the product.

        Callables stored with :meth:`set` are called with ``args`` too.
        """
        target = self._target(name)
        owner = self._owner_of(target)
        if owner is not None:
            return owner._factories[target](*args)
        value = self.get(name)
        if not args:
            return value
        if not callable(value):
            raise DependencyResolutionError(f"Registry entry '{name}' is not callable and takes no arguments")
        return value(*args)

    def scoped(self, entries: Optional[Mapping[Hashable, Any]] = None) -> "Container":
        """Child registry whose own entries shadow this one."""
        child = Container(parent=self)
        for name, value in (entries or {}).items():
            child._instances[name] = value
        return child

    def autowire(self, cls: type) -> Any:
        try:
            signature = inspect.signature(cls)
        except (TypeError, ValueError) as e:
            raise DependencyResolutionError(f"Cannot inspect constructor of {cls.__qualname__}: {e}") from e

        hints = type_hints(cls.__init__)
        kwargs: Dict[str, Any] = {}
        for param in signature.parameters.values():
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            if param.default is not param.empty:
                continue
            dependency = injectable_type(hints.get(param.name, param.annotation))
            if dependency is None:
                raise DependencyResolutionError(
                    f"Unable to resolve parameter '{param.name}' of {cls.__qualname__}"
                )
            kwargs[param.name] = self.get(dependency)
        return cls(**kwargs)

    def _target(self, name: Hashable) -> Hashable:
        seen = set()
        container: Optional[Container] = self
        while container is not None:
            while name in container._aliases and name not in seen:
                seen.add(name)
                name = container._aliases[name]
            container = container._parent
        return name

    def _owner_of(self, target: Hashable) -> Optional["Container"]:
        container: Optional[Container] = self
        while container is not None:
            if target in container._factories:
                return container
            container = container._parent
        return None

    def _lookup(self, target: Hashable) -> Any:
        container: Optional[Container] = self
        while container is not None:
            if target in container._instances:
                return container._instances[target]
            if target in container._factories:
                return container._build(target)
            container = container._parent
        return _UNSET

    def _build(self, target: Hashable) -> Any:
        with self._lock:
            # Another thread may have built it while we waited
            if target in self._instances:
                return self._instances[target]
            factory = self._factories[target]
            logger.debug(f"Building registry entry {target!r}")
            value = factory()
            self._instances[target] = value
            return value
