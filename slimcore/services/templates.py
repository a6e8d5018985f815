from typing import TYPE_CHECKING, Any, Mapping

from jinja2 import Environment, FileSystemLoader, PrefixLoader, StrictUndefined, Undefined, select_autoescape

if TYPE_CHECKING:
    from ..app import App


NAMESPACE_DELIMITER = "::"


def build_environment(settings: Mapping[str, Any]) -> Environment:
    """Create a Jinja2 environment with one loader per template namespace.

    Templates are addressed as ``"<namespace>::<file>"``.
    """
    templates = settings.get("templates") or {}
    if not templates:
        raise ValueError("Template settings require at least one 'templates' folder")

    loader = PrefixLoader(
        {name: FileSystemLoader(path) for name, path in templates.items()},
        delimiter=NAMESPACE_DELIMITER,
    )
    environment = Environment(
        loader=loader,
        autoescape=select_autoescape(settings.get("autoescape", ["html", "htm", "xml"])),
        extensions=list(settings.get("extensions", [])),
        undefined=StrictUndefined if settings.get("strict") else Undefined,
    )
    environment.globals.update(settings.get("globals", {}))
    return environment


def register(app: "App", service_name: str, settings: Mapping[str, Any]) -> None:
    environment = build_environment(settings)
    environment.globals.setdefault("url", app.url)
    app.register_in_container(service_name, environment)
