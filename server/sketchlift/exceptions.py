# ─────────────────────────────────────────────────────────────────────────────
# Error taxonomy + FastAPI Exception Handlers
# ─────────────────────────────────────────────────────────────────────────────


import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


# ── Exception hierarchy ──────────────────────────────────────────────────────


class SketchLiftError(Exception):
    """Base exception for all SketchLift core errors.

    ``kind`` is a stable machine-readable tag stored alongside job
    errors; ``user_message`` is the single line shown to clients.
    """

    kind = "internal"

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return self.message


class ConfigurationError(SketchLiftError):
    """Raised at process start when required configuration is missing."""

    kind = "configuration"

    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class InvalidArtifactError(SketchLiftError):
    """Raised when the submitted artifact cannot be decoded."""

    kind = "invalid_artifact"

    def __init__(self, message: str):
        super().__init__(message, status_code=422)


class GenerationError(SketchLiftError):
    """Base class for failures talking to the generation provider."""

    kind = "generation"


class APIError(GenerationError):
    """Transport failure, timeout, or non-2xx reply from the provider.

    Timeouts are tagged separately so retries can be logged apart from
    other transport failures while sharing the same retry policy.
    """

    def __init__(self, message: str, timeout: bool = False, http_status: int | None = None):
        self.timeout = timeout
        self.http_status = http_status
        super().__init__(message, status_code=504 if timeout else 502)

    @property
    def kind(self) -> str:  # type: ignore[override]
        if self.timeout:
            return "timeout"
        if self.http_status is not None:
            return "http_status"
        return "transport"

    @property
    def user_message(self) -> str:
        if self.timeout:
            return "The generation provider timed out. Please try again."
        return "The generation provider is unavailable. Please try again."


class InvalidResponseError(GenerationError):
    """Provider content failed schema validation. Not retried."""

    kind = "invalid_response"

    def __init__(self, message: str):
        super().__init__(message, status_code=502)


class ReconstructionError(SketchLiftError):
    """Outline parsing or geometry failure. Never surfaced to clients."""

    kind = "reconstruction"

    def __init__(self, message: str):
        super().__init__(message, status_code=422)


class DispatchError(SketchLiftError):
    """Raised when a job cannot be placed on the broker queue."""

    kind = "dispatch"

    def __init__(self, message: str = "Failed to enqueue generation job"):
        super().__init__(message, status_code=503)


class JobStateError(SketchLiftError):
    """Raised on an illegal job status transition."""

    kind = "job_state"

    def __init__(self, request_id: str, current: str, target: str):
        super().__init__(
            f"Illegal transition for job '{request_id}': {current} -> {target}",
            status_code=409,
        )


# ── Handler registration ────────────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app.

    The improvement endpoints convert core errors into their uniform
    ``errors`` payload themselves; these handlers cover anything else
    that escapes a route.
    """

    @app.exception_handler(SketchLiftError)
    async def sketchlift_error_handler(request: Request, exc: SketchLiftError) -> JSONResponse:
        logger.error("sketchlift_error", error=exc.message, error_type=type(exc).__name__, exc_info=exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.user_message, "type": type(exc).__name__},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_error", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "type": "UnhandledError"},
        )
