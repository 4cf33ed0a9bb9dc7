"""Custom exceptions for the clipworks pipeline.

Validation errors are raised synchronously to the HTTP caller. Errors raised
inside background jobs are caught by the orchestrators and written onto the
work item so polling clients can read them.
"""

from clipworks.constants.error_codes import get_error_spec
from clipworks.schemas.envelope import ErrorInfo, ErrorLocation, SuggestedAction


class ClipworksError(Exception):
    """Base exception for all clipworks errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        location: ErrorLocation | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.location = location
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            suggested_actions.append(
                SuggestedAction(
                    action=spec["suggested_action"],
                    endpoint=spec.get("suggested_endpoint"),
                    parameters=spec.get("parameters", {}),
                )
            )

        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
            suggested_actions=suggested_actions,
        )


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(ClipworksError):
    """Base class for request validation errors."""

    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidTimeRangeError(ValidationError):
    """Invalid time range specified."""

    code = "INVALID_TIME_RANGE"
    message = "Invalid time range"

    def __init__(
        self,
        message: str | None = None,
        *,
        start_time: float | None = None,
        end_time: float | None = None,
    ):
        msg = message or self.message
        if message is None and start_time is not None and end_time is not None:
            msg = f"Invalid time range: {start_time}s to {end_time}s"
        super().__init__(msg, location=ErrorLocation(field="startTime"))


class DurationTooLongError(ValidationError):
    """Requested window exceeds the maximum edit duration."""

    code = "DURATION_TOO_LONG"
    message = "Requested duration is too long"

    def __init__(self, duration: float, max_duration: float):
        self.duration = duration
        self.max_duration = max_duration
        super().__init__(
            f"Edit duration {duration:g}s exceeds maximum of {max_duration:g}s",
            location=ErrorLocation(field="endTime"),
        )


class UntrustedSourceError(ValidationError):
    """Source URL host is not an accepted media CDN."""

    code = "UNTRUSTED_SOURCE"
    message = "Media URL is not from a supported host"

    def __init__(self, host: str | None = None):
        message = f"Media URL host is not supported: {host}" if host else self.message
        super().__init__(message, location=ErrorLocation(field="url"))


class UnsupportedMediaTypeError(ValidationError):
    """Source content type is not video, audio or a streaming manifest."""

    code = "UNSUPPORTED_MEDIA_TYPE"
    message = "Unsupported media type"

    def __init__(self, content_type: str | None = None):
        message = f"Unsupported media type: {content_type}" if content_type else self.message
        super().__init__(message, location=ErrorLocation(field="url"))


class SourceTooLargeError(ValidationError):
    """Source is larger than the configured maximum."""

    code = "SOURCE_TOO_LARGE"
    message = "Source file is too large"

    def __init__(self, size_bytes: int, max_bytes: int):
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
        super().__init__(
            f"Source file is too large: {size_bytes} bytes (maximum {max_bytes})",
            location=ErrorLocation(field="url"),
        )


class SourceUnavailableError(ClipworksError):
    """Metadata probe of the source failed."""

    code = "SOURCE_UNAVAILABLE"
    status_code = 422
    message = "Media URL is not accessible"


# =============================================================================
# Processing Errors (500)
# =============================================================================


class ProcessingError(ClipworksError):
    """Base class for failures while producing an asset."""

    code = "PROCESSING_ERROR"
    message = "Processing failed"


class ExtractionError(ProcessingError):
    """A single extraction strategy failed; the next one may be tried."""

    code = "EXTRACTION_ERROR"
    message = "Extraction failed"


class ExtractionFailedError(ProcessingError):
    """Every extraction strategy in the chain failed."""

    code = "EXTRACTION_FAILED"
    message = "All extraction strategies failed"

    def __init__(self, message: str | None = None, *, attempts: list[str] | None = None):
        self.attempts = attempts or []
        super().__init__(message)


class DownloadError(ProcessingError):
    code = "DOWNLOAD_FAILED"
    message = "Download failed"


class TranscodeError(ProcessingError):
    code = "TRANSCODE_ERROR"
    message = "Transcoding failed"


class TranscodeTimeoutError(TranscodeError):
    code = "TRANSCODE_TIMEOUT"
    message = "Transcoding timed out"


class RenderError(ProcessingError):
    code = "RENDER_ERROR"
    message = "Frame rendering failed"


class MemoryPressureError(ClipworksError):
    """Process memory is above the ceiling; work is refused rather than degraded."""

    code = "MEMORY_PRESSURE"
    status_code = 503
    message = "Server is under memory pressure"


# =============================================================================
# Job lifecycle
# =============================================================================


class JobNotFoundError(ClipworksError):
    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Job not found"

    def __init__(self, fingerprint: str | None = None):
        message = f"Job not found: {fingerprint}" if fingerprint else self.message
        location = ErrorLocation(fingerprint=fingerprint) if fingerprint else None
        super().__init__(message, location=location)


class InvalidStatusTransitionError(ClipworksError):
    """A work item status change would move backwards."""

    code = "INVALID_STATUS_TRANSITION"
    status_code = 409
    message = "Invalid status transition"

    def __init__(self, fingerprint: str, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move work item {fingerprint} from {current} to {target}",
            location=ErrorLocation(fingerprint=fingerprint),
        )
