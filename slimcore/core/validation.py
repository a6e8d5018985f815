import logging
import re
from typing import Any, FrozenSet, Iterable

from .errors import ConfigurationError


logger = logging.getLogger(__name__)

HTTP = "http"
CONSOLE = "console"
SCOPES = frozenset({HTTP, CONSOLE})

_SCOPE_SEPARATORS = re.compile(r"[\s,|]+")


def validate_scope(scope: str) -> str:
    if scope not in SCOPES:
        raise ConfigurationError(f"Invalid runtime scope '{scope}'. Allowed: {', '.join(sorted(SCOPES))}")
    return scope


def parse_scope(value: Any) -> FrozenSet[str]:
    """Normalise an ``on`` declaration into a set of scopes.

    Accepts ``None`` (unrestricted), a string such as ``"http,console"`` or
    ``"http|console"``, or an iterable of scope names.
    """
    if value is None:
        return frozenset()
    if isinstance(value, str):
        tokens: Iterable[str] = [t for t in _SCOPE_SEPARATORS.split(value.strip().lower()) if t]
    else:
        tokens = [str(t).strip().lower() for t in value]
    scopes = frozenset(tokens)
    unknown = scopes - SCOPES
    if unknown:
        raise ConfigurationError(f"Unknown scope(s) {', '.join(sorted(unknown))} in '{value}'")
    return scopes


def scope_matches(declared: FrozenSet[str], scope: str) -> bool:
    return not declared or scope in declared
