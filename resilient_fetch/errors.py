"""Fetch error taxonomy and the classifier that maps failures onto it."""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass

import httpx

from .models.fetch_state import ReasonCategory

__all__ = [
    "FetchError",
    "NetworkTransportError",
    "FetchTimeoutError",
    "ServerError",
    "ClientError",
    "NotFoundError",
    "ParseError",
    "OfflineError",
    "MaxRetriesExceededError",
    "Classification",
    "classify",
    "to_fetch_error",
]

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = "You are currently offline. Please check your internet connection."

_TRANSPORT_MARKERS = ("network request failed", "failed to fetch", "network error")
_TIMEOUT_MARKERS = ("timeout", "timed out")


class FetchError(Exception):
    """Base class for every failure the controller surfaces."""

    category: ReasonCategory = "terminal"
    retryable = False

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class NetworkTransportError(FetchError):
    category = "offline"
    retryable = True


class FetchTimeoutError(FetchError):
    category = "timeout"
    retryable = True


class ServerError(FetchError):
    category = "server-error"
    retryable = True


class ClientError(FetchError):
    pass


class NotFoundError(ClientError):
    def __init__(self, message: str = "Not found", status: int | None = 404) -> None:
        super().__init__(message, status)


class ParseError(FetchError):
    pass


class OfflineError(FetchError):
    """Raised by the controller itself when a fetch is attempted while offline."""

    category = "offline"
    retryable = True

    def __init__(self, message: str = OFFLINE_MESSAGE) -> None:
        super().__init__(message)


class MaxRetriesExceededError(FetchError):
    """Retry budget spent; `last_error` holds the cause of the final attempt."""

    def __init__(self, last_error: BaseException, retries: int) -> None:
        super().__init__(
            f"Maximum retry attempts reached after {retries} retries: {last_error}"
        )
        self.last_error = last_error
        self.retries = retries


@dataclass(frozen=True)
class Classification:
    retryable: bool
    category: ReasonCategory


_TERMINAL = Classification(retryable=False, category="terminal")


def _status_of(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _classify(error: BaseException) -> Classification:
    if isinstance(error, FetchError) and type(error) is not FetchError:
        if isinstance(error, MaxRetriesExceededError):
            return _TERMINAL
        return Classification(error.retryable, error.category)

    message = str(error).lower()
    is_timeout = isinstance(
        error, (httpx.TimeoutException, TimeoutError, asyncio.TimeoutError)
    )

    if not is_timeout and (
        isinstance(error, (httpx.TransportError, ConnectionError, socket.gaierror))
        or any(marker in message for marker in _TRANSPORT_MARKERS)
    ):
        return Classification(retryable=True, category="offline")

    if is_timeout or any(marker in message for marker in _TIMEOUT_MARKERS):
        return Classification(retryable=True, category="timeout")

    status = _status_of(error)
    if status is not None and status >= 500:
        return Classification(retryable=True, category="server-error")

    return _TERMINAL


def classify(error: BaseException) -> Classification:
    """Label a failure retryable or terminal.

    Rules, first match wins: transport failure, timeout, status >= 500.
    Everything else (4xx, not found, parse errors and shapes we do not
    recognise) is terminal so unknown failures cannot loop forever.
    """
    try:
        return _classify(error)
    except Exception:
        logger.exception("Error classification failed for %r", error)
        return _TERMINAL


def to_fetch_error(error: BaseException) -> FetchError:
    """Convert an arbitrary exception into a member of the taxonomy."""
    if isinstance(error, FetchError):
        return error
    verdict = classify(error)
    status = _status_of(error)
    text = str(error) or type(error).__name__
    if verdict.category == "offline":
        converted: FetchError = NetworkTransportError(text)
    elif verdict.category == "timeout":
        converted = FetchTimeoutError(text)
    elif verdict.category == "server-error":
        converted = ServerError(text, status)
    elif status == 404:
        converted = NotFoundError(text)
    elif status is not None and 400 <= status < 500:
        converted = ClientError(text, status)
    elif isinstance(error, ValueError):
        converted = ParseError(text)
    else:
        converted = FetchError(text, status)
    converted.__cause__ = error
    return converted
