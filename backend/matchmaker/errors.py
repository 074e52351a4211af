"""
Error Classification - Typed Errors for the Matching Pipeline

Every failure that crosses a component boundary is normalized into a
MatchingError carrying a machine-readable kind, a severity, a retryable flag
and a user-facing message that never leaks implementation detail.

Error Kinds:
    | Kind           | Retryable | Typical source                         |
    |----------------|-----------|----------------------------------------|
    | validation     | no        | empty text, unknown user, bad status   |
    | network        | yes       | connect/read timeouts                  |
    | ai_service     | mostly    | model warming up, 5xx, bad payloads;   |
    |                |           | misconfiguration is critical and final |
    | rate_limit     | yes       | provider throttling (429)              |
    | database       | yes       | SQLAlchemy / store failures            |
    | authentication | no        | rejected API keys                      |
    | unknown        | no        | anything else                          |

Key Classes:
    - MatchingError: the exception type raised across the package
    - ErrorClassifier: stateless classifier, instantiated per run
    - ErrorSink: append-only report sink (LoggingErrorSink, InMemoryErrorSink)
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import httpx
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NETWORK = "network"
    AI_SERVICE = "ai_service"
    RATE_LIMIT = "rate_limit"
    DATABASE = "database"
    AUTHENTICATION = "authentication"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


DEFAULT_USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "Please check your input and try again.",
    ErrorKind.NETWORK: "Connection issue. Please try again in a moment.",
    ErrorKind.AI_SERVICE: "Our AI service is temporarily unavailable. Please try again in a moment.",
    ErrorKind.RATE_LIMIT: "Too many requests. Please wait a moment and try again.",
    ErrorKind.DATABASE: "We're experiencing technical difficulties. Please try again later.",
    ErrorKind.AUTHENTICATION: "Please sign in again to continue.",
    ErrorKind.UNKNOWN: "Something went wrong. Please try again or contact support.",
}


class MatchingError(Exception):
    """
    Classified pipeline error.

    Attributes:
        message: Internal description (logged, never shown to users)
        kind: ErrorKind
        severity: Severity
        context: Free-form operation context (user_id, operation, ...)
        user_message: Message safe to show to end users
        retryable: Whether a RetryPolicy may attempt the call again
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        severity: Severity = Severity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.severity = severity
        self.context = context or {}
        self.user_message = user_message or DEFAULT_USER_MESSAGES[kind]
        self.retryable = retryable

    def __repr__(self) -> str:
        return (
            f"MatchingError(kind={self.kind.value!r}, severity={self.severity.value!r}, "
            f"retryable={self.retryable}, message={self.message!r})"
        )


def invalid_input(message: str, user_message: Optional[str] = None, **context: Any) -> MatchingError:
    """Build a non-retryable validation error."""
    return MatchingError(
        message,
        kind=ErrorKind.VALIDATION,
        severity=Severity.LOW,
        context=context,
        user_message=user_message,
        retryable=False,
    )


def validate_embedding_input(text: Any) -> str:
    """
    Validate text submitted for embedding.

    Returns:
        The text with surrounding whitespace removed

    Raises:
        MatchingError: validation kind if text is not a non-blank string
    """
    if not isinstance(text, str):
        raise invalid_input(
            "Text input is required and must be a string",
            "Please provide some text to analyze.",
            operation="validate_embedding_input",
        )

    stripped = text.strip()
    if not stripped:
        raise invalid_input(
            "Text input cannot be empty",
            "Please enter some text to continue.",
            operation="validate_embedding_input",
        )

    return stripped


def validate_user_id(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise invalid_input(
            "Valid user ID is required",
            operation="validate_user_id",
        )
    return user_id.strip()


@dataclass
class ErrorReport:
    """Immutable record of one handled error."""
    id: str
    kind: ErrorKind
    severity: Severity
    message: str
    context: Dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ErrorSink(Protocol):
    """Append-only destination for error reports."""

    def record(self, report: ErrorReport) -> None:
        ...


class LoggingErrorSink:
    """Writes each report to the standard logger."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._logger = log or logger

    def record(self, report: ErrorReport) -> None:
        level = logging.ERROR if report.severity in (Severity.HIGH, Severity.CRITICAL) else logging.WARNING
        self._logger.log(
            level,
            f"[{report.id}] {report.kind.value}/{report.severity.value}: {report.message} "
            f"context={report.context}",
        )


class InMemoryErrorSink:
    """Keeps reports in memory; used for run summaries and tests."""

    def __init__(self) -> None:
        self._reports: List[ErrorReport] = []

    def record(self, report: ErrorReport) -> None:
        self._reports.append(report)

    @property
    def reports(self) -> List[ErrorReport]:
        return list(self._reports)

    def stats(self) -> Dict[str, Any]:
        by_kind: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        for report in self._reports:
            by_kind[report.kind.value] = by_kind.get(report.kind.value, 0) + 1
            by_severity[report.severity.value] = by_severity.get(report.severity.value, 0) + 1
        return {
            "total": len(self._reports),
            "by_kind": by_kind,
            "by_severity": by_severity,
        }


AlertHook = Callable[[MatchingError, ErrorReport], None]


# Message fragments checked in order; first match wins
_MESSAGE_RULES: List[Tuple[Tuple[str, ...], ErrorKind, Severity, bool]] = [
    # Provider misconfiguration never recovers by retrying
    (("not configured", "missing api key", "model not found"),
     ErrorKind.AI_SERVICE, Severity.CRITICAL, False),
    (("fetch", "network", "timeout", "connection"), ErrorKind.NETWORK, Severity.MEDIUM, True),
    (("unauthorized", "authentication", "forbidden", "api key", "invalid token", "access token",
      "expired token"),
     ErrorKind.AUTHENTICATION, Severity.HIGH, False),
    (("rate limit", "too many requests", "429"), ErrorKind.RATE_LIMIT, Severity.MEDIUM, True),
    (("openai", "huggingface", "embedding", "model"), ErrorKind.AI_SERVICE, Severity.HIGH, True),
    (("database", "sqlite", "postgres", "chroma"), ErrorKind.DATABASE, Severity.HIGH, True),
    (("validation", "invalid", "required", "not found"), ErrorKind.VALIDATION, Severity.LOW, False),
]


class ErrorClassifier:
    """
    Stateless error classifier.

    Create one per pipeline run (or share one; it holds no mutable state of
    its own). Reports go to the injected sink; critical errors additionally
    invoke the alert hook.

    Example:
        >>> classifier = ErrorClassifier(sink=InMemoryErrorSink())
        >>> err = classifier.handle(TimeoutError("read timeout"), user_id="u1")
        >>> err.kind
        <ErrorKind.NETWORK: 'network'>
    """

    def __init__(
        self,
        sink: Optional[ErrorSink] = None,
        alert_hook: Optional[AlertHook] = None,
    ) -> None:
        self.sink = sink or LoggingErrorSink()
        self.alert_hook = alert_hook

    def classify(self, error: BaseException) -> MatchingError:
        """Normalize any exception into a MatchingError without recording it."""
        if isinstance(error, MatchingError):
            return error

        if isinstance(error, (httpx.TimeoutException, httpx.TransportError, TimeoutError, ConnectionError)):
            return MatchingError(str(error) or type(error).__name__, ErrorKind.NETWORK,
                                 Severity.MEDIUM, retryable=True)

        if isinstance(error, SQLAlchemyError):
            return MatchingError(str(error), ErrorKind.DATABASE, Severity.HIGH, retryable=True)

        message = str(error).lower()
        for fragments, kind, severity, retryable in _MESSAGE_RULES:
            if any(fragment in message for fragment in fragments):
                return MatchingError(str(error), kind, severity, retryable=retryable)

        return MatchingError(str(error) or type(error).__name__, ErrorKind.UNKNOWN,
                             Severity.MEDIUM, retryable=False)

    def handle(self, error: BaseException, **context: Any) -> MatchingError:
        """
        Classify, record and (for critical errors) alert.

        Args:
            error: Any exception
            **context: Extra context merged into the error's context

        Returns:
            The classified MatchingError
        """
        classified = self.classify(error)
        if context:
            classified.context = {**classified.context, **context}

        report = ErrorReport(
            id=f"err_{uuid.uuid4().hex[:12]}",
            kind=classified.kind,
            severity=classified.severity,
            message=classified.message,
            context=dict(classified.context),
        )
        self.sink.record(report)

        if classified.severity == Severity.CRITICAL:
            logger.critical(f"CRITICAL ERROR {report.id}: {classified.message}")
            if self.alert_hook is not None:
                self.alert_hook(classified, report)

        return classified
