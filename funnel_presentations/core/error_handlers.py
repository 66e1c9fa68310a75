"""Map AppError subclasses onto JSON error responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from funnel_presentations.core.exceptions import AppError, RateLimitedError
from funnel_presentations.core.logging import request_id_var

logger = logging.getLogger(__name__)


def _error_body(exc: AppError) -> dict:
    body: dict = {"detail": exc.detail, "error_code": exc.error_code}
    if exc.context:
        body.update(exc.context)
    request_id = request_id_var.get()
    if request_id:
        body["request_id"] = request_id
    return body


def register_error_handlers(app: FastAPI) -> None:
    """Register the AppError handler on ``app``.

    Every response carries ``detail`` and ``error_code`` plus the error's
    context fields. Rate limit rejections also get a ``Retry-After`` header
    so EventSource clients and proxies can back off.
    """

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        logger.info(
            "request_rejected",
            extra={
                "error_code": exc.error_code,
                "status_code": exc.status_code,
                "path": request.url.path,
            },
        )
        headers = None
        if isinstance(exc, RateLimitedError):
            retry_after = (exc.context or {}).get("retry_after", 0)
            headers = {"Retry-After": str(retry_after)}
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc), headers=headers)
