"""
Forge error taxonomy, failure classification and the diagnostic log sink.

Every failed transport call is mapped to one of a small set of exception types:

- 422 -> ValidationError (per-field messages from the body)
- 404 -> NotFoundError
- 401 -> AuthError
- anything else -> UnknownError (raw payload untouched)

Before a classified error is surfaced it is appended to a DiagnosticLog.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from forgereview.utils.logging import get_logger

if TYPE_CHECKING:
    from forgereview.clients.transport import TransportFailure

logger = get_logger(__name__)

ErrorKind = Literal["validation", "not_found", "auth", "unknown"]

VALIDATION_JOIN = " AND "


class ForgeError(Exception):
    """Base class for classified forge failures."""

    kind: ErrorKind = "unknown"

    def __init__(
        self,
        message: str,
        *,
        origin: str,
        status_code: int | None = None,
        raw: Any = None,
    ):
        self.origin = origin
        self.status_code = status_code
        self.raw = raw
        super().__init__(message)


class ValidationError(ForgeError):
    """The forge rejected the payload (HTTP 422)."""

    kind: ErrorKind = "validation"

    def __init__(
        self, summary: str | None, messages: list[str], *, origin: str, raw: Any = None
    ):
        self.summary = summary
        self.messages = messages
        parts = [summary] if summary else []
        if messages:
            parts.append(VALIDATION_JOIN.join(messages))
        super().__init__(
            ". ".join(parts) or "Validation failed",
            origin=origin,
            status_code=422,
            raw=raw,
        )


class NotFoundError(ForgeError):
    kind: ErrorKind = "not_found"


class AuthError(ForgeError):
    kind: ErrorKind = "auth"


class UnknownError(ForgeError):
    kind: ErrorKind = "unknown"


@dataclass
class DiagnosticRecord:
    """One classified failure, as written to the diagnostic log."""

    timestamp: str
    origin: str
    kind: ErrorKind
    status_code: int | None
    raw: Any

    @classmethod
    def create(cls, error: ForgeError) -> DiagnosticRecord:
        return cls(
            timestamp=datetime.now(UTC).isoformat(),
            origin=error.origin,
            kind=error.kind,
            status_code=error.status_code,
            raw=error.raw,
        )


class DiagnosticLog(ABC):
    """Append-only sink for classified failures."""

    @abstractmethod
    def append(self, record: DiagnosticRecord) -> None:
        """Append one record. May raise; callers must not let that hide the original error."""


class StructlogDiagnosticLog(DiagnosticLog):
    """Default sink: writes each record as an error-level structured log line."""

    def __init__(self, name: str = "forgereview.diagnostics"):
        self._logger = get_logger(name)

    def append(self, record: DiagnosticRecord) -> None:
        self._logger.error(
            f"{record.origin} failed ({record.kind})",
            recorded_at=record.timestamp,
            origin=record.origin,
            status_code=record.status_code,
            raw=record.raw,
        )


class MemoryDiagnosticLog(DiagnosticLog):
    """Thread-safe in-memory sink, handy for showing recent failures and for tests."""

    def __init__(self) -> None:
        self._records: list[DiagnosticRecord] = []
        self._lock = threading.Lock()

    def append(self, record: DiagnosticRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> list[DiagnosticRecord]:
        with self._lock:
            return list(self._records)

    def as_dicts(self) -> list[dict[str, Any]]:
        with self._lock:
            return [asdict(record) for record in self._records]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


def _validation_messages(body: Any) -> tuple[str | None, list[str]]:
    """Pull the top-level message and the per-field error messages out of a 422 body."""
    if not isinstance(body, Mapping):
        return (str(body) if body else None), []

    top = body.get("message")
    field_messages: list[str] = []
    for error in body.get("errors") or []:
        if isinstance(error, Mapping):
            message = error.get("message") or error.get("code")
        else:
            message = error
        if message:
            field_messages.append(str(message))

    return (str(top) if top else None), field_messages


def classify_failure(failure: TransportFailure, origin: str) -> ForgeError:
    """Map a failed transport result onto the error taxonomy."""
    status_code = failure.status_code
    body = failure.body

    if status_code == 422:
        error: ForgeError = ValidationError(*_validation_messages(body), origin=origin, raw=body)
    elif status_code == 404:
        error = NotFoundError(
            f"{origin}: resource not found", origin=origin, status_code=404, raw=body
        )
    elif status_code == 401:
        error = AuthError(
            f"{origin}: authentication failed, check the forge token",
            origin=origin,
            status_code=401,
            raw=body,
        )
    else:
        detail = f"HTTP {status_code}" if status_code is not None else failure.reason
        error = UnknownError(
            f"{origin}: unexpected failure ({detail})",
            origin=origin,
            status_code=status_code,
            raw=body,
        )
    return error


def record_failure(error: ForgeError, diagnostics: DiagnosticLog | None) -> None:
    """Append a classified error to the diagnostic log without ever raising."""
    if diagnostics is None:
        return
    try:
        diagnostics.append(DiagnosticRecord.create(error))
    except Exception as e:
        logger.warning(f"Could not write diagnostic record for {error.origin}: {e}")


def classify_and_record(
    failure: TransportFailure, origin: str, diagnostics: DiagnosticLog | None
) -> ForgeError:
    """Classify a failure and write it to the diagnostic log before handing it back."""
    error = classify_failure(failure, origin)
    record_failure(error, diagnostics)
    return error
