import logging
import resource
import sys
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Sequence

from fastapi import HTTPException

from .core.config import ENVIRONMENTS
from .core.handlers import exception_messages

if TYPE_CHECKING:
    from .app import App


logger = logging.getLogger(__name__)


class Command:
    """Base class for console controllers with coloured terminal helpers."""

    def __init__(self):
        self.log_file_path: Optional[str] = None

    def ask(self, question: str, color: str = "92m") -> str:
        self.output(question, color)
        return input()

    def output(self, text: str, color: str = "95m") -> None:
        print(f"\033[{color}{text} \033[0m", flush=True)

    def log(self, text: str, add_log: bool = False, context: Optional[Mapping[str, Any]] = None) -> None:
        self.output(text)

        if self.log_file_path:
            with open(self.log_file_path, "a", encoding="utf-8") as f:
                f.write(text + "\n")

        if add_log:
            logger.error(f"{text} {dict(context)}" if context else text)

    def output_memory_usage(self) -> None:
        # ru_maxrss is in kilobytes on Linux
        peak = round(resource.getrusage(resource.RUSAGE_SELF).ru_maxrss / 1024, 2)
        self.output(f"Memory usage peak: {peak} MB", "93m")


def parse_arguments(argv: Sequence[str]):
    """Split ``[environment] command key=value ...`` into its parts."""
    args = list(argv)
    if args and args[0] in ENVIRONMENTS:
        args.pop(0)
    if not args:
        return None, {}

    params: Dict[str, str] = {}
    for token in args[1:]:
        key, sep, value = token.lstrip("-").partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid argument '{token}', expected key=value")
        params[key] = value
    return args[0], params


def run_console(app: "App", argv: Sequence[str]) -> int:
    """Dispatch a console invocation to the registered command and print the result.

    Returns the process exit status.
    """
    app.build()

    try:
        name, params = parse_arguments(argv)
    except ValueError as e:
        response = app.error(400, "Invalid Arguments", [str(e)])
        return _emit(response)

    if name is None or name not in app.commands:
        messages = [f"Unknown command '{name}'."] if name else ["No command given."]
        messages.append(f"Available commands: {', '.join(sorted(app.commands)) or 'none'}")
        return _emit(app.error(404, "Not Found", messages))

    try:
        response = app.resolve_route(app.commands[name], params)
    except HTTPException as e:
        response = app.error(e.status_code, "Not Found" if e.status_code == 404 else "Error", [str(e.detail)])
    except Exception as e:
        logger.error(f"Command '{name}' failed: {e}", exc_info=True)
        response = app.error(500, "Application Error", exception_messages(app, e))

    return _emit(response)


def _emit(response) -> int:
    body = response.body.decode("utf-8") if response.body else ""
    stream = sys.stdout if response.status_code < 400 else sys.stderr
    if body:
        stream.write(body.rstrip("\n") + "\n")
        stream.flush()
    return 0 if response.status_code < 400 else 1
