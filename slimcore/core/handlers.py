import html
import logging
import traceback
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

if TYPE_CHECKING:
    from ..app import App


logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An internal error has occurred while processing your request."

HTML_TEMPLATE = """<html>
    <body style='font-family: Arial'>
        <h2 style='margin-top: 10px'>Oops an error occurred<br/></h2>
        <b>{title}</b><br/>
        <p style='line-height: 24px; font-size: 13px'>{messages}</p>
    </body>
</html>"""


def wants_json(request: Optional[Request]) -> bool:
    if request is None:
        return False
    return "application/json" in request.headers.get("accept", "").lower()


def render_error(
    status: int,
    title: str,
    messages: Sequence[str] = (),
    code: Any = None,
    request: Optional[Request] = None,
    console: bool = False,
    headers: Optional[dict] = None,
) -> Response:
    """Render an error as plain text, JSON or HTML depending on context."""
    messages = [str(m) for m in messages]

    if console:
        body = "\n".join([title] + messages)
        return Response(content=body, status_code=status, media_type="text/plain", headers=headers)

    if wants_json(request):
        payload = {"code": code if code is not None else status, "error": title, "messages": messages}
        return JSONResponse(status_code=status, content=payload, headers=headers)

    content = HTML_TEMPLATE.format(
        title=html.escape(title),
        messages="<br/>".join(html.escape(m) for m in messages),
    )
    return Response(content=content, status_code=status, media_type="text/html", headers=headers)


def format_trace(exc: BaseException, limit: Optional[int] = None, capture_locals: bool = False) -> List[str]:
    """Format ``exc`` as one trace line per entry.

    Only explicit ``raise ... from`` causes are followed. Implicit context is
    left out so exception groups attached by middleware never lead the trace.
    """
    chain: List[BaseException] = []
    current: Optional[BaseException] = exc
    while current is not None and all(current is not seen for seen in chain):
        chain.append(current)
        current = current.__cause__

    lines: List[str] = []
    for index, error in enumerate(reversed(chain)):
        if index:
            lines.append("The above exception was the direct cause of the following exception:")
        trace = traceback.TracebackException.from_exception(error, limit=limit, capture_locals=capture_locals)
        for chunk in trace.format(chain=False):
            lines.extend(line for line in chunk.rstrip("\n").split("\n") if line.strip())
    return lines


def exception_messages(app: "App", exc: BaseException) -> List[str]:
    if not app.get_config("debug", False):
        return [GENERIC_ERROR_MESSAGE]
    if app.has("trace"):
        return app.resolve("trace").format(exc)
    return format_trace(exc)


def _logger(app: "App") -> logging.Logger:
    if app.has("logger"):
        return app.resolve("logger")
    return logger


def register_error_handlers(app: "App") -> None:
    """Route 404, 405 and uncaught exceptions through :func:`render_error`."""

    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        log = _logger(app)
        if exc.status_code == 404:
            log.info(f"Not found: {request.method} {request.url.path}")
            messages = [f"The requested resource {request.url.path} could not be found."]
            if exc.detail and exc.detail != "Not Found":
                messages.append(str(exc.detail))
            return app.error(404, "Not Found", messages, request=request)

        if exc.status_code == 405:
            allow = (exc.headers or {}).get("Allow", "")
            log.info(f"Method not allowed: {request.method} {request.url.path} (allowed: {allow})")
            return app.error(
                405,
                "Method Not Allowed",
                [f"Method {request.method} is not allowed. Allowed methods: {allow}"],
                request=request,
                headers={"Allow": allow} if allow else None,
            )

        log.warning(f"{request.method} {request.url.path} - {exc.status_code}: {exc.detail}")
        return app.error(exc.status_code, str(exc.detail), [], request=request, headers=exc.headers)

    async def _global_exception_handler(request: Request, exc: Exception):
        _logger(app).error(
            f"Unhandled exception in {request.method} {request.url.path}: {str(exc)}", exc_info=exc
        )
        status = getattr(exc, "status_code", 500)
        if not isinstance(status, int):
            status = 500
        return app.error(status, "Internal Server Error", exception_messages(app, exc), request=request)

    app.fastapi.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.fastapi.add_exception_handler(Exception, _global_exception_handler)
