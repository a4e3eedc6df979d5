import logging
import re

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from scopescan.utils.response import error_response

logger = logging.getLogger(__name__)


class AppException(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code


class PipelineError(Exception):
    """Failure inside the photo analysis pipeline.

    ``code`` is a short machine-readable prefix (e.g. ``FETCH_NOT_FOUND``) that is
    also the start of the message, so the persisted error string stays greppable.
    """

    code = "PIPELINE_ERROR"

    def __init__(self, message: str, code: str | None = None):
        if code:
            self.code = code
        self.message = message
        super().__init__(f"{self.code}: {message}")


class ProviderError(PipelineError):
    code = "PROVIDER_ERROR"


class ImageFormatError(PipelineError):
    code = "IMAGE_FORMAT_ERROR"


class ImageFetchError(PipelineError):
    code = "FETCH_ERROR"

    def __init__(self, message: str, code: str | None = None, status: int | None = None):
        self.status = status
        super().__init__(message, code)


class VisionFailedError(PipelineError):
    code = "VISION_FAILED"


def mask_secrets(message: str) -> str:
    """Strip API keys from error text before it is stored or logged."""
    message = re.sub(r"sk-[A-Za-z0-9_-]+", "sk-***", message)
    message = re.sub(r"AIza[0-9A-Za-z_-]{20,}", "AIza***", message)
    return re.sub(r"(\bkey=)[^&\s]+", r"\1***", message)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(exc.message),
        )

    @app.exception_handler(PipelineError)
    async def pipeline_exception_handler(request: Request, exc: PipelineError) -> JSONResponse:
        logger.warning("Pipeline error on %s %s: %s", request.method, request.url.path, exc.code)
        return JSONResponse(
            status_code=502,
            content=error_response(mask_secrets(str(exc)), code=exc.code),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_response("Internal server error"),
        )
