import locale
import logging
import os
import sys
import time
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import Response

from .console import run_console
from .core.config import DEVELOPMENT, PRODUCTION, STAGING, Config
from .core.config import determine_env_filename as _determine_env_filename
from .core.config import env as read_env
from .core.config import load_env as load_env_file
from .core.container import Container
from .core.dispatch import resolve_route, send_response
from .core.errors import ProviderRegistrationFailure, RouteNotFound
from .core.handlers import register_error_handlers, render_error
from .core.middleware import (
    MIDDLEWARE,
    MethodOverrideMiddleware,
    TrailingSlashMiddleware,
    activate_middleware,
)
from .core.middleware import descriptors_from_config as middleware_descriptors
from .core.providers import activate_providers
from .core.providers import descriptors_from_config as service_descriptors
from .core.validation import CONSOLE, HTTP, validate_scope
from .services import PROVIDERS


logger = logging.getLogger(__name__)

Handler = Tuple[Hashable, str]


class App:
    """Application context shared by providers, controllers and commands.

    Wraps a FastAPI instance and a service registry. One ``App`` is built
    per process at the entry point and handed to whatever needs it; the
    registry also serves it under ``"app"`` and :class:`App`.
    """

    DEVELOPMENT = DEVELOPMENT
    STAGING = STAGING
    PRODUCTION = PRODUCTION

    def __init__(self, container: Optional[Container] = None, scope: str = HTTP, **fastapi_kwargs: Any):
        self.scope = validate_scope(scope)
        self.env = DEVELOPMENT
        self.configs = Config()
        if container is None:
            container = Container().with_autowiring().alias({"request": Request})
        self.container = container
        self.fastapi = FastAPI(**fastapi_kwargs)
        self.commands: Dict[str, Handler] = {}
        self._built = False
        self._build_error: Optional[ProviderRegistrationFailure] = None

        self.register_in_container("app", self)
        self.register_in_container(App, self)
        if type(self) is not App:
            self.register_in_container(type(self), self)

    # Configuration

    def load_env(self, path: str, filename: str = ".env", mandatory: Sequence[str] = ()) -> None:
        load_env_file(path, filename, mandatory)
        self.env = read_env("APP_ENV", self.env)

    def set_configs(self, configs: Mapping[str, Any]) -> None:
        self.configs = Config(dict(configs))

    def get_config(self, path: str, default: Any = None) -> Any:
        return self.configs.get(path, default)

    def set_config(self, path: str, value: Any) -> None:
        self.configs.set(path, value)

    def is_console(self) -> bool:
        return self.scope == CONSOLE

    def is_environment(self, environment: str) -> bool:
        return str(self.env).lower() == environment.lower()

    def determine_env_filename(self, filename: str = ".env", argv: Optional[Sequence[str]] = None) -> str:
        if argv is None:
            argv = sys.argv[1:]
        return _determine_env_filename(filename, argv, console=self.is_console())

    def url(self, url: str = "", show_index: Optional[bool] = None, include_base_url: bool = True) -> str:
        """Build an absolute URL from ``base_url`` and, optionally, ``index_file``."""
        base_url = self.get_config("base_url", "") if include_base_url else ""
        index_file = self.get_config("index_file", "")
        index = f"{index_file}/" if index_file and show_index is not False else ""
        return f"{base_url}{index}{url.lstrip('/')}"

    # Registry

    def has(self, name: Hashable) -> bool:
        return self.container.has(name)

    def resolve(self, name: Hashable, *params: Any) -> Any:
        """Fetch ``name`` from the registry; with ``params``, call its factory or callable afresh."""
        if params:
            return self.container.make(name, *params)
        return self.container.get(name)

    def register_in_container(self, name: Hashable, value: Any) -> None:
        self.container.set(name, value)

    # Routing

    def route(self, path: str, handler: Handler, methods: Iterable[str] = ("GET",), name: Optional[str] = None) -> None:
        """Map ``path`` to ``(controller, method)``.

        Path captures override query parameters of the same name.
        """
        def endpoint(request: Request):
            params = dict(request.query_params)
            params.update(request.path_params)
            return self.resolve_route(handler, params, request=request)

        self.fastapi.add_api_route(
            path,
            endpoint,
            methods=[m.upper() for m in methods],
            name=name or f"{handler[1]}:{path}",
            include_in_schema=False,
        )

    def get(self, path: str, handler: Handler, name: Optional[str] = None) -> None:
        self.route(path, handler, ("GET",), name)

    def post(self, path: str, handler: Handler, name: Optional[str] = None) -> None:
        self.route(path, handler, ("POST",), name)

    def command(self, name: str, handler: Handler) -> None:
        self.commands[name] = handler

    def resolve_route(
        self,
        handler: Handler,
        route_params: Optional[Mapping[str, Any]] = None,
        request: Optional[Request] = None,
    ) -> Response:
        controller_ref, method_name = handler
        container = self.container
        if request is not None:
            container = container.scoped({Request: request})
        return resolve_route(container, controller_ref, method_name, route_params)

    # Responses

    def send_response(self, value: Any) -> Response:
        return send_response(value)

    def code(self, status: int = 200) -> Response:
        return Response(status_code=status)

    def error(
        self,
        status: int = 500,
        title: str = "",
        messages: Sequence[str] = (),
        code: Any = None,
        request: Optional[Request] = None,
        headers: Optional[dict] = None,
    ) -> Response:
        return render_error(status, title, messages, code, request=request, console=self.is_console(), headers=headers)

    def not_found(self, detail: str = "Not Found") -> None:
        raise RouteNotFound(detail)

    # Lifecycle

    def register_providers(self) -> List[str]:
        descriptors = service_descriptors(self.get_config("services"), PROVIDERS)
        return activate_providers(self, descriptors, self.scope)

    def register_middleware(self) -> List[type]:
        descriptors = middleware_descriptors(self.get_config("middleware"), MIDDLEWARE)
        return activate_middleware(self.fastapi, descriptors, self.scope)

    def build(self) -> FastAPI:
        """Apply process settings, activate providers and middleware, install error handlers."""
        if self._build_error is not None:
            raise self._build_error
        if self._built:
            return self.fastapi

        timezone = self.get_config("timezone")
        if timezone:
            os.environ["TZ"] = timezone
            if hasattr(time, "tzset"):
                time.tzset()

        locale_name = self.get_config("locale")
        if locale_name:
            try:
                locale.setlocale(locale.LC_ALL, locale_name)
            except locale.Error as e:
                logger.warning(f"Locale {locale_name} is not available: {e}")

        try:
            self.register_providers()
        except ProviderRegistrationFailure as e:
            # Providers declared before the failing one already ran
            self._build_error = e
            raise
        self.register_middleware()
        self.fastapi.add_middleware(MethodOverrideMiddleware)
        self.fastapi.add_middleware(TrailingSlashMiddleware)
        register_error_handlers(self)

        self._built = True
        return self.fastapi

    def run(self, argv: Optional[Sequence[str]] = None) -> int:
        if self.is_console():
            return run_console(self, sys.argv[1:] if argv is None else argv)

        logging.basicConfig(
            level=self.get_config("log_level", "WARNING"),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[
                logging.StreamHandler(),
            ]
        )
        uvicorn.run(
            self.build(),
            host=self.get_config("server.host", "0.0.0.0"),
            port=int(self.get_config("server.port", 8080)),
        )
        return 0

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] == "lifespan" and not self._built:
            try:
                self.build()
            except ProviderRegistrationFailure as e:
                logger.critical(f"Startup aborted: {e}")
                await receive()
                await send({"type": "lifespan.startup.failed", "message": str(e)})
                return
        await self.build()(scope, receive, send)
