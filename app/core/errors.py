from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class AppError(Exception):
    """Failure with a short message that is safe to show to the browser."""

    status_code = 500
    message = "Unexpected error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class ValidationError(AppError):
    status_code = 400
    message = "Invalid request"


class UpstreamError(AppError):
    status_code = 500
    message = "Upstream service failed"


class ConnectTimeout(AppError):
    status_code = 408
    message = "Connection timeout - invalid PIN or game not found"


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
