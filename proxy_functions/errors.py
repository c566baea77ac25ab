import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger("errors")


class ProxyError(Exception):
    """Base for every failure a handler reports to its caller as `{"error": ...}`."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(ProxyError):
    status_code = 500


class ValidationError(ProxyError):
    status_code = 400


class AuthError(ProxyError):
    status_code = 401


class AuthorizationGapError(ProxyError):
    """A verified identity lacks the linked resource the operation needs."""

    status_code = 400


class ForbiddenError(ProxyError):
    status_code = 403


class UpstreamUnreachableError(ProxyError):
    status_code = 502


class UpstreamProtocolError(ProxyError):
    status_code = 502


class UpstreamRejectedError(ProxyError):
    """
    The provider answered with a non-success status.

    Relayed as-is: same status code, same body, so callers see the provider's
    own error detail.
    """

    def __init__(self, status_code: int, body: str, fallback: str) -> None:
        super().__init__(fallback, status_code)
        self.body = body


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _proxy_error_handler(request: Request, exc: ProxyError) -> Response:
    if isinstance(exc, UpstreamRejectedError):
        logger.warning("upstream_rejected", status_code=exc.status_code)
        if not exc.body:
            return error_response(exc.status_code, exc.message)
        return Response(
            content=exc.body,
            status_code=exc.status_code,
            media_type="application/json",
        )
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_failed",
        error_type=exc.__class__.__name__,
        status_code=exc.status_code,
        error=exc.message,
    )
    return error_response(exc.status_code, exc.message)


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    if exc.status_code == 405:
        message = "Method not allowed"
    else:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message},
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> Response:
    logger.exception("unhandled_error", error=str(exc))
    return error_response(500, "Internal server error")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProxyError, _proxy_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
