"""
Tests for error classification.

Run with: pytest backend/tests/test_errors.py -v
"""
import httpx
import pytest
from sqlalchemy.exc import OperationalError

from matchmaker.errors import (
    ErrorClassifier,
    ErrorKind,
    InMemoryErrorSink,
    MatchingError,
    Severity,
    validate_embedding_input,
    validate_user_id,
)


class TestMatchingError:
    """Tests for the MatchingError exception type."""

    def test_defaults(self):
        """Unspecified fields fall back to unknown/medium with a generic message."""
        error = MatchingError("boom")

        assert error.kind == ErrorKind.UNKNOWN
        assert error.severity == Severity.MEDIUM
        assert error.retryable is False
        assert error.context == {}
        assert "Something went wrong" in error.user_message

    def test_user_message_defaults_per_kind(self):
        error = MatchingError("read timed out", kind=ErrorKind.NETWORK)
        assert error.user_message.startswith("Connection issue")

    def test_user_message_hides_internal_message(self):
        error = MatchingError("psycopg: relation matches does not exist", kind=ErrorKind.DATABASE)
        assert "psycopg" not in error.user_message


class TestInputValidation:
    """Tests for embedding input and user id validation."""

    @pytest.mark.parametrize("value", ["", "   ", "\n\t"])
    def test_blank_text_rejected(self, value):
        with pytest.raises(MatchingError) as exc_info:
            validate_embedding_input(value)

        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert exc_info.value.retryable is False

    @pytest.mark.parametrize("value", [None, 42, ["text"]])
    def test_non_string_rejected(self, value):
        with pytest.raises(MatchingError) as exc_info:
            validate_embedding_input(value)

        assert exc_info.value.kind == ErrorKind.VALIDATION

    def test_text_is_stripped(self):
        assert validate_embedding_input("  UX research \n") == "UX research"

    def test_user_id_validation(self):
        assert validate_user_id(" user-1 ") == "user-1"
        with pytest.raises(MatchingError):
            validate_user_id("")


class TestErrorClassifier:
    """Tests for exception → MatchingError classification."""

    def test_matching_error_passes_through(self):
        original = MatchingError("rate limited", kind=ErrorKind.RATE_LIMIT, retryable=True)
        assert ErrorClassifier().classify(original) is original

    def test_httpx_timeout_is_network(self):
        error = ErrorClassifier().classify(httpx.ReadTimeout("read timed out"))

        assert error.kind == ErrorKind.NETWORK
        assert error.retryable is True

    def test_builtin_connection_error_is_network(self):
        error = ErrorClassifier().classify(ConnectionRefusedError("refused"))
        assert error.kind == ErrorKind.NETWORK

    def test_sqlalchemy_error_is_database(self):
        exc = OperationalError("SELECT 1", {}, Exception("disk I/O error"))
        error = ErrorClassifier().classify(exc)

        assert error.kind == ErrorKind.DATABASE
        assert error.retryable is True

    @pytest.mark.parametrize("message,kind", [
        ("fetch failed", ErrorKind.NETWORK),
        ("Unauthorized: bad api key", ErrorKind.AUTHENTICATION),
        ("Too many requests", ErrorKind.RATE_LIMIT),
        ("HuggingFace returned garbage", ErrorKind.AI_SERVICE),
        ("sqlite is locked", ErrorKind.DATABASE),
        ("invalid status", ErrorKind.VALIDATION),
        ("something odd", ErrorKind.UNKNOWN),
    ])
    def test_message_inspection(self, message, kind):
        assert ErrorClassifier().classify(RuntimeError(message)).kind == kind

    def test_authentication_not_retryable(self):
        error = ErrorClassifier().classify(RuntimeError("forbidden"))
        assert error.retryable is False

    @pytest.mark.parametrize("message", ["Invalid token supplied", "access token expired"])
    def test_token_rejections_are_authentication(self, message):
        assert ErrorClassifier().classify(RuntimeError(message)).kind == ErrorKind.AUTHENTICATION

    def test_token_limit_is_not_authentication(self):
        error = ErrorClassifier().classify(RuntimeError("embedding input exceeds max tokens"))

        assert error.kind == ErrorKind.AI_SERVICE
        assert error.retryable is True

    @pytest.mark.parametrize("message", [
        "Embedding provider not configured",
        "Missing API key for HuggingFace",
        "Model not found: all-mpnet-base-v3",
    ])
    def test_misconfiguration_is_critical(self, message):
        error = ErrorClassifier().classify(RuntimeError(message))

        assert error.kind == ErrorKind.AI_SERVICE
        assert error.severity == Severity.CRITICAL
        assert error.retryable is False

    def test_misconfiguration_alerts(self):
        alerts = []
        classifier = ErrorClassifier(
            sink=InMemoryErrorSink(),
            alert_hook=lambda error, report: alerts.append(error),
        )

        classifier.handle(RuntimeError("openai model not found"))

        assert len(alerts) == 1

    def test_handle_records_report_with_context(self):
        sink = InMemoryErrorSink()
        classifier = ErrorClassifier(sink=sink)

        error = classifier.handle(TimeoutError("timeout"), user_id="u1", operation="embed")

        assert error.context == {"user_id": "u1", "operation": "embed"}
        assert len(sink.reports) == 1
        report = sink.reports[0]
        assert report.id.startswith("err_")
        assert report.kind == ErrorKind.NETWORK
        assert report.context["user_id"] == "u1"

    def test_critical_errors_trigger_alert_hook(self):
        alerts = []
        classifier = ErrorClassifier(
            sink=InMemoryErrorSink(),
            alert_hook=lambda error, report: alerts.append((error, report)),
        )

        classifier.handle(MatchingError("key revoked", kind=ErrorKind.AUTHENTICATION,
                                        severity=Severity.CRITICAL))
        classifier.handle(MatchingError("warming up", kind=ErrorKind.AI_SERVICE))

        assert len(alerts) == 1
        assert alerts[0][0].kind == ErrorKind.AUTHENTICATION

    def test_sink_stats(self):
        sink = InMemoryErrorSink()
        classifier = ErrorClassifier(sink=sink)

        classifier.handle(RuntimeError("timeout"))
        classifier.handle(RuntimeError("timeout again"))
        classifier.handle(RuntimeError("invalid input"))

        stats = sink.stats()
        assert stats["total"] == 3
        assert stats["by_kind"] == {"network": 2, "validation": 1}
