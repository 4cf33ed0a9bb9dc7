"""Error codes dictionary.

Single source of truth for all error codes, their retryability and the
suggested recovery action. Used by the exception handlers to build
machine-readable error responses and by background jobs when a failure is
written onto a work item.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_endpoint: str
    suggested_fix: str
    parameters: dict[str, Any]


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Request validation (not retryable without changing the request)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Check the request body against the endpoint schema",
    },
    "INVALID_TIME_RANGE": {
        "retryable": False,
        "suggested_fix": "Use 0 <= startTime < endTime (seconds)",
    },
    "DURATION_TOO_LONG": {
        "retryable": False,
        "suggested_fix": "Request a shorter window (maximum 600 seconds)",
    },
    "UNTRUSTED_SOURCE": {
        "retryable": False,
        "suggested_fix": "Use a media URL hosted on a supported CDN",
    },
    "UNSUPPORTED_MEDIA_TYPE": {
        "retryable": False,
        "suggested_fix": "Source must be video, audio, HLS or DASH",
    },
    "SOURCE_TOO_LARGE": {
        "retryable": False,
        "suggested_fix": "Source files larger than 2GB are not supported",
    },
    # ==========================================================================
    # Upstream / source errors (retryable)
    # ==========================================================================
    "SOURCE_UNAVAILABLE": {
        "retryable": True,
        "suggested_action": "retry_later",
        "suggested_fix": "The media URL could not be reached; check it is public",
    },
    "DOWNLOAD_FAILED": {
        "retryable": True,
        "suggested_action": "retry_later",
    },
    # ==========================================================================
    # Processing errors
    # ==========================================================================
    "PROCESSING_ERROR": {"retryable": False},
    "EXTRACTION_ERROR": {"retryable": False},
    "EXTRACTION_FAILED": {
        "retryable": False,
        "suggested_fix": "Every extraction strategy failed; the source may be corrupt",
    },
    "TRANSCODE_ERROR": {"retryable": False},
    "TRANSCODE_TIMEOUT": {
        "retryable": True,
        "suggested_action": "retry_later",
    },
    "RENDER_ERROR": {"retryable": False},
    "MEMORY_PRESSURE": {
        "retryable": True,
        "suggested_action": "retry_later",
        "suggested_fix": "Server is under memory pressure; retry in a few minutes",
    },
    # ==========================================================================
    # Job lifecycle
    # ==========================================================================
    "JOB_NOT_FOUND": {
        "retryable": False,
        "suggested_action": "resubmit",
    },
    "INVALID_STATUS_TRANSITION": {"retryable": False},
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "retry_later",
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested actions
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    return get_error_spec(code).get("retryable", False)
