import logging
import sys
from typing import TYPE_CHECKING, Any, List, Mapping, Optional

from ..core.handlers import format_trace

if TYPE_CHECKING:
    from ..app import App


logger = logging.getLogger(__name__)


class Tracer:
    """Formats exceptions into readable trace lines for debug error pages."""

    def __init__(self, limit: Optional[int] = None, include_locals: bool = False):
        self.limit = limit
        self.include_locals = include_locals

    def format(self, exc: BaseException) -> List[str]:
        return format_trace(exc, limit=self.limit, capture_locals=self.include_locals)

    def excepthook(self, exc_type, exc, tb) -> None:
        logger.critical(f"Uncaught {exc_type.__name__}: {exc}")
        sys.stderr.write("\n".join(self.format(exc)) + "\n")

    def install(self) -> None:
        sys.excepthook = self.excepthook


def register(app: "App", service_name: str, settings: Mapping[str, Any]) -> None:
    tracer = Tracer(limit=settings.get("limit"), include_locals=bool(settings.get("include_locals", False)))
    if settings.get("install", False):
        tracer.install()
    app.register_in_container(service_name, tracer)
