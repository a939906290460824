import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.application.services.webhook_errors import (
    InvalidSignatureError,
    MissingSignatureError,
    WebhookError,
)

logger = logging.getLogger("app")


def _error_payload(request: Request, *, error_code: str, message: str) -> dict:
    return {
        "error_code": error_code,
        "message": message,
        "trace_id": getattr(request.state, "request_id", None),
    }


async def handle_webhook_error(request: Request, exc: WebhookError) -> JSONResponse:
    # Stripe redelivers on 5xx and drops the event on 4xx.
    if isinstance(exc, MissingSignatureError):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})
    if isinstance(exc, InvalidSignatureError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "Webhook signature verification failed", "message": str(exc)},
        )

    logger.error(
        "webhook_request_failed path=%s error_code=%s",
        request.url.path,
        exc.error_code,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "Internal server error", "message": str(exc)},
    )


async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and {"error_code", "message"} <= detail.keys():
        error_code, message = str(detail["error_code"]), str(detail["message"])
    else:
        error_code = str(exc.status_code)
        message = detail if isinstance(detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(request, error_code=error_code, message=message),
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=_error_payload(request, error_code="validation_error", message="Request validation failed"),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception path=%s method=%s", request.url.path, request.method)
    return JSONResponse(
        status_code=500,
        content=_error_payload(request, error_code="internal_server_error", message="Internal server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WebhookError, handle_webhook_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
