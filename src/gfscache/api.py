"""Status mapping for whatever HTTP layer sits in front of ``SnapshotService``."""

from __future__ import annotations

from typing import Tuple

from .models import ServeResult, ServeStatus

NO_DATA_MESSAGE = "No data available. Please try again later."
PENDING_MESSAGE = "Data is being processed. Please try again in a few moments."
SERVER_ERROR_MESSAGE = "An unexpected error occurred"

_STATUS_CODES = {
    ServeStatus.READY: 200,
    ServeStatus.PENDING: 202,
    ServeStatus.NOT_FOUND: 404,
    ServeStatus.UNAVAILABLE: 404,
}


def status_for(result: ServeResult) -> int:
    return _STATUS_CODES[result.status]


def message_for(result: ServeResult) -> str:
    if result.status is ServeStatus.READY:
        return f"Snapshot {result.key}"
    if result.status is ServeStatus.PENDING:
        return PENDING_MESSAGE
    return NO_DATA_MESSAGE


def respond(result: ServeResult) -> Tuple[int, str]:
    return status_for(result), message_for(result)


def respond_to_error(exc: Exception) -> Tuple[int, str]:
    # Transport, conversion and filesystem failures all look the same to a client.
    return 500, SERVER_ERROR_MESSAGE
