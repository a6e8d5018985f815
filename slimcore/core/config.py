import logging
import os
from pathlib import Path
from typing import Any, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from dotenv import dotenv_values, load_dotenv

from .errors import ConfigurationError


logger = logging.getLogger(__name__)

DEVELOPMENT = "development"
STAGING = "staging"
PRODUCTION = "production"
ENVIRONMENTS = (DEVELOPMENT, STAGING, PRODUCTION)

_MISSING = object()


class Config:
    """Nested configuration tree addressed with dot-separated paths.

    ``get("database.url")`` walks ``tree["database"]["url"]``. A missing or
    non-mapping segment anywhere along the way yields the default.
    """

    SEPARATOR = "."

    def __init__(self, tree: Optional[MutableMapping[str, Any]] = None):
        self._tree: MutableMapping[str, Any] = tree if tree is not None else {}

    def get(self, path: str, default: Any = None) -> Any:
        if not path:
            return default
        node: Any = self._tree
        for segment in path.split(self.SEPARATOR):
            if not isinstance(node, Mapping) or segment not in node:
                return default
            node = node[segment]
        return node

    def set(self, path: str, value: Any) -> None:
        if not path:
            raise ValueError("Configuration path must not be empty")
        segments = path.split(self.SEPARATOR)
        node = self._tree
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, MutableMapping):
                child = {}
                node[segment] = child
            node = child
        node[segments[-1]] = value

    def has(self, path: str) -> bool:
        return self.get(path, _MISSING) is not _MISSING

    def all(self) -> MutableMapping[str, Any]:
        return self._tree


def env(key: str, default: Any = "", server: Optional[Mapping[str, Any]] = None) -> Any:
    """Read a setting from the process environment, then the server mapping."""
    if key in os.environ:
        return os.environ[key]
    if server is not None and key in server:
        return server[key]
    return default


def load_env(path: str, filename: str = ".env", mandatory: Sequence[str] = ()) -> dict:
    """Load a dotenv file without overriding variables that are already set.

    Raises ConfigurationError when a mandatory variable is absent from both
    the file and the process environment.
    """
    env_file = Path(path) / filename
    if not env_file.is_file():
        raise ConfigurationError(f"Environment file not found: {env_file}")

    values = dotenv_values(env_file)
    missing = [name for name in mandatory if name not in values and name not in os.environ]
    if missing:
        raise ConfigurationError(f"Missing mandatory environment variables: {', '.join(missing)}")

    load_dotenv(env_file, override=False)
    logger.debug(f"Loaded {len(values)} variables from {env_file}")
    return values


def determine_env_filename(filename: str, argv: Optional[Sequence[str]] = None, console: bool = False) -> str:
    """Pick ``<filename>.<environment>`` when a console run names an environment first."""
    if not console:
        return filename
    args = list(argv or [])
    if args and args[0] in ENVIRONMENTS:
        return f"{filename}.{args[0]}"
    return filename


def allowed_origins(extra_origins: Optional[Iterable[str]] = None) -> List[str]:
    env_origins = [o.strip() for o in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
    merged = env_origins + list(extra_origins or [])
    # Deduplicate while preserving order
    seen = set()
    result: List[str] = []
    for origin in merged:
        if origin not in seen:
            seen.add(origin)
            result.append(origin)
    return result
