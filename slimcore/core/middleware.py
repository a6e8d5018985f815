import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Iterable, List, Mapping, Optional, Union

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .config import allowed_origins
from .errors import ConfigurationError
from .validation import parse_scope, scope_matches


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MiddlewareDescriptor:
    middleware: type
    scope: FrozenSet[str] = frozenset()


def descriptors_from_config(
    declared: Union[Mapping[Any, Any], Iterable[Any], None],
    registry: Optional[Mapping[str, type]] = None,
) -> List[MiddlewareDescriptor]:
    """Build descriptors from ``{key_or_class: "http,console"}`` or a list of
    ``{"middleware": key_or_class, "on": ...}`` entries, keeping declared order."""
    registry = registry or {}
    if not declared:
        return []
    if isinstance(declared, Mapping):
        entries = [(ref, on) for ref, on in declared.items()]
    else:
        entries = [(item["middleware"], item.get("on")) for item in declared]

    descriptors = []
    for ref, on in entries:
        middleware = registry.get(ref) if isinstance(ref, str) else ref
        if not isinstance(middleware, type):
            raise ConfigurationError(f"Unknown middleware '{ref}'")
        descriptors.append(MiddlewareDescriptor(middleware=middleware, scope=parse_scope(on)))
    return descriptors


def activate_middleware(app: FastAPI, descriptors: Iterable[MiddlewareDescriptor], scope: str) -> List[type]:
    """Append matching middleware to the pipeline in reverse declared order.

    The pipeline runs its first entry outermost, so the last declared
    middleware wraps every other one and the first declared sits closest
    to the route handler.
    """
    if app.middleware_stack is not None:
        raise RuntimeError("Cannot add middleware after an application has started")

    activated = []
    for descriptor in reversed(list(descriptors)):
        if not scope_matches(descriptor.scope, scope):
            continue
        app.user_middleware.append(Middleware(descriptor.middleware))
        activated.append(descriptor.middleware)
        logger.debug(f"Activated middleware {descriptor.middleware.__name__} for scope {scope}")
    return activated


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Log slow (>1s) or failing requests."""

    async def dispatch(self, request: Request, call_next: Callable):
        start_time = time.time()
        request_id = f"{int(time.time() * 1000)}-{id(request)}"

        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            if process_time > 1.0 or response.status_code >= 400:
                logger.info(f"[{request_id}] {request.method} {request.url.path} - {response.status_code} - {process_time:.2f}s")
            return response
        except Exception as e:
            process_time = time.time() - start_time
            logger.error(f"[{request_id}] {request.method} {request.url.path} - ERROR: {str(e)} - {process_time:.2f}s")
            raise


class CorsMiddleware(CORSMiddleware):
    """``CORSMiddleware`` configured from ``CORS_ALLOWED_ORIGINS``; answers preflight requests."""

    def __init__(self, app: ASGIApp):
        super().__init__(
            app,
            allow_origins=allowed_origins(),
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )


class TrailingSlashMiddleware(BaseHTTPMiddleware):
    """Strip a trailing slash: redirect GET/HEAD, rewrite the path otherwise."""

    async def dispatch(self, request: Request, call_next: Callable):
        path = request.url.path
        if path != "/" and path.endswith("/"):
            stripped = path.rstrip("/") or "/"
            if request.method in ("GET", "HEAD"):
                return RedirectResponse(url=str(request.url.replace(path=stripped)), status_code=301)
            request.scope["path"] = stripped
            request.scope["raw_path"] = stripped.encode("utf-8")
        return await call_next(request)


class MethodOverrideMiddleware(BaseHTTPMiddleware):
    """Let POST requests tunnel another verb through ``X-HTTP-Method-Override``."""

    HEADER = "x-http-method-override"

    async def dispatch(self, request: Request, call_next: Callable):
        override = request.headers.get(self.HEADER)
        if request.method == "POST" and override:
            request.scope["method"] = override.strip().upper()
        return await call_next(request)


MIDDLEWARE = {
    "request_log": RequestLogMiddleware,
    "cors": CorsMiddleware,
    "trailing_slash": TrailingSlashMiddleware,
    "method_override": MethodOverrideMiddleware,
}
