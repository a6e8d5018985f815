import logging
import logging.handlers
from typing import TYPE_CHECKING, Any, Mapping, Union

if TYPE_CHECKING:
    from ..app import App


LINE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
SYSLOG_FORMAT = '%(name)s.%(levelname)s: %(message)s'


def parse_level(level: Union[str, int, None]) -> int:
    if level is None:
        return logging.DEBUG
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level '{level}'")
    return value


def build_handler(config: Mapping[str, Any]) -> logging.Handler:
    handler_type = config.get("type")
    if handler_type == "file":
        handler: logging.Handler = logging.FileHandler(config["path"], encoding="utf-8")
        handler.setFormatter(logging.Formatter(LINE_FORMAT))
    elif handler_type == "stream":
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LINE_FORMAT))
    elif handler_type in ("syslog", "papertrail"):
        handler = logging.handlers.SysLogHandler(address=(config["host"], int(config["port"])))
        handler.setFormatter(logging.Formatter(SYSLOG_FORMAT))
    else:
        raise ValueError(f"Unknown log handler type '{handler_type}'")
    handler.setLevel(parse_level(config.get("level")))
    return handler


def register(app: "App", service_name: str, settings: Mapping[str, Any]) -> None:
    """Register a logger named after the service with the enabled handlers.

    ``settings["handlers"]`` is a list of ``{"type", "enabled", "level", ...}``;
    ``file`` needs ``path``, ``syslog``/``papertrail`` need ``host`` and ``port``.
    """
    handlers = [build_handler(c) for c in settings.get("handlers", []) if c.get("enabled", True)]

    log = logging.getLogger(service_name)
    for existing in list(log.handlers):
        log.removeHandler(existing)
        existing.close()
    log.setLevel(parse_level(settings.get("level")))
    for handler in handlers:
        log.addHandler(handler)
    log.propagate = bool(settings.get("propagate", not handlers))

    app.register_in_container(service_name, log)
