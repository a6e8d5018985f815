import inspect
import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, Tuple

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response

from .container import Container, injectable_type, type_hints
from .errors import DependencyResolutionError, NotFound, RouteNotFound


logger = logging.getLogger(__name__)

# Return values sent as text instead of JSON
SCALAR_TYPES = (str, int, float, complex, bool, Decimal, Enum)


def resolve_route(
    container: Container,
    controller_ref: Hashable,
    method_name: str,
    route_params: Optional[Mapping[str, Any]] = None,
) -> Response:
    """Resolve a controller from the registry, call ``method_name`` and wrap the result.

    Args:
        container: Registry the controller and its dependencies come from
        controller_ref: Registry name or class of the controller
        method_name: Name of the public method to call
        route_params: Path captures and query values, matched to parameters by name

    Returns:
        A framework response built from whatever the method returned

    Raises:
        RouteNotFound: The controller or the method does not exist
        DependencyResolutionError: A method parameter cannot be satisfied
    """
    try:
        controller = container.get(controller_ref)
    except NotFound as e:
        if e.name == controller_ref:
            raise RouteNotFound(f"Controller {controller_ref!r} not found") from e
        raise

    method = getattr(controller, method_name, None) if not method_name.startswith("_") else None
    if method is None or not callable(method):
        raise RouteNotFound(f"Method {method_name!r} not found on {type(controller).__name__}")

    args, kwargs = resolve_method_dependencies(container, method, route_params or {})
    return send_response(method(*args, **kwargs))


def resolve_method_dependencies(
    container: Container, method: Callable, route_params: Mapping[str, Any]
) -> Tuple[List[Any], Dict[str, Any]]:
    hints = type_hints(method)
    args: List[Any] = []
    kwargs: Dict[str, Any] = {}
    for param in inspect.signature(method).parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        value = resolve_dependency(container, param, hints.get(param.name, param.annotation), route_params)
        if param.kind is param.KEYWORD_ONLY:
            kwargs[param.name] = value
        else:
            args.append(value)
    return args, kwargs


def resolve_dependency(
    container: Container, param: inspect.Parameter, annotation: Any, route_params: Mapping[str, Any]
) -> Any:
    # Route captures win and are passed through uncoerced
    if param.name in route_params:
        return route_params[param.name]

    if param.default is not param.empty:
        return param.default

    dependency = injectable_type(annotation)
    if dependency is None:
        raise DependencyResolutionError(f"Unable to resolve method param '{param.name}'")

    try:
        return container.get(dependency)
    except NotFound as e:
        raise DependencyResolutionError(f"Unable to resolve method param '{param.name}': {e}") from e


def send_response(value: Any) -> Response:
    """Normalise a controller return value into a response."""
    if isinstance(value, Response):
        return value
    if value is None:
        return Response()
    if isinstance(value, (bytes, bytearray)):
        return Response(content=bytes(value))
    if isinstance(value, SCALAR_TYPES):
        return Response(content=str(value.value if isinstance(value, Enum) else value))
    return JSONResponse(content=jsonable_encoder(value))
