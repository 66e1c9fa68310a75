"""Custom exceptions for the Funnel Presentations application."""


# -----------------------------------------------------------------------------
# Application Base Error
# -----------------------------------------------------------------------------


class AppError(Exception):
    """Base application error with HTTP semantics.

    All domain exceptions that should map to HTTP responses inherit from this.
    The global error handler in error_handlers.py catches these and returns
    a consistent JSON response.
    """

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, detail: str = "An unexpected error occurred", context: dict | None = None):
        self.detail = detail
        self.context = context
        super().__init__(self.detail)


# -----------------------------------------------------------------------------
# Generic Request Exceptions
# -----------------------------------------------------------------------------


class EntityNotFound(AppError):
    """Entity not found by primary key (404)."""

    status_code = 404
    error_code = "NOT_FOUND"


class ValidationError(AppError):
    """Generic validation error (400)."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class AccessDeniedError(AppError):
    """Caller does not own the requested resource (403)."""

    status_code = 403
    error_code = "ACCESS_DENIED"


class RateLimitedError(AppError):
    """Too many generation requests in the current window (429)."""

    status_code = 429
    error_code = "RATE_LIMITED"


class PresentationLimitError(AppError):
    """Per-project presentation quota reached (429)."""

    status_code = 429
    error_code = "PRESENTATION_LIMIT_REACHED"


class InvalidStatusTransition(AppError):
    """Presentation status change not allowed from its current state (409)."""

    status_code = 409
    error_code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str | None, target: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move presentation from {current or 'new'} to {target}",
            context={"current_status": current, "target_status": target},
        )


# -----------------------------------------------------------------------------
# Generation Exceptions
# -----------------------------------------------------------------------------


class GenerationError(Exception):
    """Base exception for slide generation errors.

    All generation exceptions inherit from this class,
    allowing callers to catch all generation errors with a single handler.
    """

    pass


class TerminalProviderError(GenerationError):
    """Provider failure that retrying would not fix (non-retryable).

    Causes:
        - Content policy rejection
        - Provider returned no result
    """

    pass


class EmptyImageResultError(TerminalProviderError):
    """Image provider answered without an image URL."""

    pass


class ImageDownloadError(GenerationError):
    """Temporary image URL could not be fetched (retryable).

    Causes:
        - Non-2xx response from the provider CDN
        - Connection reset mid-transfer
    """

    pass


class TextGenerationError(GenerationError):
    """Slide text could not be generated (mandatory step failed).

    Causes:
        - Ollama unavailable or timing out on every attempt
        - Model output was not a JSON object
    """

    def __init__(self, message: str, slide_number: int | None = None, is_timeout: bool = False):
        self.slide_number = slide_number
        self.is_timeout = is_timeout
        super().__init__(message)


class SlideGenerationError(GenerationError):
    """Raised by the orchestrator when a slide cannot be produced.

    Carries the slides completed in this run before the failure so the
    caller can decide how to classify the job.
    """

    def __init__(self, slide_number: int, completed_slides: list, cause: Exception):
        self.slide_number = slide_number
        self.completed_slides = completed_slides
        self.cause = cause
        self.is_timeout = isinstance(cause, TimeoutError) or getattr(cause, "is_timeout", False)
        super().__init__(f"Slide {slide_number} generation failed: {cause}")


class StreamTimeoutError(GenerationError):
    """Overall stream deadline elapsed before generation finished."""

    is_timeout = True

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Stream generation timed out after {round(timeout_seconds)}s")
