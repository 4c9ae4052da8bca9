"""
Application metrics and error tracking.

Metrics are recorded through the OpenTelemetry API. Without an SDK meter
provider configured by the deployment, every instrument is a no-op, so
recording is always safe. Sentry is initialised only when ``SENTRY_DSN`` is
set.

Usage:
    from assessment.observability import metrics

    metrics.record_attempt_started(test_id=3, resumed=False)
    metrics.record_violation("window_switch")
"""
import logging
from typing import Optional

from opentelemetry import metrics as otel_metrics

from assessment.core.config import settings

logger = logging.getLogger(__name__)

VALID_VIOLATION_TYPES = {
    "window_switch",
    "tab_switch",
    "screenshot_attempt",
    "phone_call",
    "copy_paste",
    "other",
}


def init_sentry() -> bool:
    """Initialise Sentry error tracking if a DSN is configured."""
    if not settings.SENTRY_DSN:
        logger.info("Sentry not configured (SENTRY_DSN empty)")
        return False

    import sentry_sdk

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        release=settings.APP_VERSION,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
    )
    logger.info("Sentry initialized for environment '%s'", settings.ENV)
    return True


def capture_error(exc: BaseException, **tags: str) -> None:
    """Report an exception to Sentry (no-op when Sentry is not initialised)."""
    try:
        import sentry_sdk

        with sentry_sdk.new_scope() as scope:
            for key, value in tags.items():
                scope.set_tag(key, value)
            sentry_sdk.capture_exception(exc)
    except Exception as e:
        logger.debug(f"Failed to capture error in Sentry: {e}")


class ApplicationMetrics:
    """
    Application-level counters and histograms.

    All methods swallow their own failures: a metrics problem must never
    break a request or a background task.
    """

    def __init__(self) -> None:
        self._meter = otel_metrics.get_meter(settings.OTEL_SERVICE_NAME)
        self._http_requests = self._meter.create_counter(
            "http.server.requests", unit="1", description="HTTP requests handled"
        )
        self._http_duration = self._meter.create_histogram(
            "http.server.duration", unit="s", description="HTTP request duration"
        )
        self._errors = self._meter.create_counter(
            "app.errors", unit="1", description="Handled application errors"
        )
        self._attempts_started = self._meter.create_counter(
            "assessment.attempts.started", unit="1"
        )
        self._attempts_submitted = self._meter.create_counter(
            "assessment.attempts.submitted", unit="1"
        )
        self._answers = self._meter.create_counter(
            "assessment.answers.submitted", unit="1"
        )
        self._sandbox_runs = self._meter.create_counter(
            "assessment.sandbox.runs", unit="1"
        )
        self._sandbox_duration = self._meter.create_histogram(
            "assessment.sandbox.duration", unit="ms"
        )
        self._violations = self._meter.create_counter(
            "assessment.violations", unit="1"
        )
        self._certificates = self._meter.create_counter(
            "assessment.certificates.issued", unit="1"
        )

    def record_http_request(
        self, method: str, path: str, status_code: int, duration: float
    ) -> None:
        try:
            labels = {
                "http.method": method,
                "http.route": path,
                "http.status_code": str(status_code),
            }
            self._http_requests.add(1, labels)
            self._http_duration.record(duration, labels)
        except Exception as e:
            logger.debug(f"Failed to record HTTP request metric: {e}")

    def record_error(self, error_type: str, path: Optional[str] = None) -> None:
        try:
            labels = {"error.type": error_type}
            if path:
                labels["http.route"] = path
            self._errors.add(1, labels)
        except Exception as e:
            logger.debug(f"Failed to record error metric: {e}")

    def record_attempt_started(self, test_id: int, resumed: bool) -> None:
        try:
            self._attempts_started.add(
                1, {"test.id": str(test_id), "attempt.resumed": str(resumed).lower()}
            )
        except Exception as e:
            logger.debug(f"Failed to record attempt start metric: {e}")

    def record_attempt_submitted(self, test_id: int, percentage: int) -> None:
        try:
            bucket = "pass" if percentage >= settings.DEFAULT_PASSING_SCORE else "below"
            self._attempts_submitted.add(
                1, {"test.id": str(test_id), "score.bucket": bucket}
            )
        except Exception as e:
            logger.debug(f"Failed to record attempt submit metric: {e}")

    def record_answer(self, question_type: str) -> None:
        try:
            self._answers.add(1, {"question.type": question_type})
        except Exception as e:
            logger.debug(f"Failed to record answer metric: {e}")

    def record_sandbox_run(
        self, language: str, outcome: str, duration_ms: float
    ) -> None:
        try:
            labels = {"sandbox.language": language, "sandbox.outcome": outcome}
            self._sandbox_runs.add(1, labels)
            self._sandbox_duration.record(duration_ms, labels)
        except Exception as e:
            logger.debug(f"Failed to record sandbox metric: {e}")

    def record_violation(self, violation_type: str) -> None:
        try:
            if violation_type not in VALID_VIOLATION_TYPES:
                violation_type = "other"
            self._violations.add(1, {"violation.type": violation_type})
        except Exception as e:
            logger.debug(f"Failed to record violation metric: {e}")

    def record_certificate_issued(self, test_id: int) -> None:
        try:
            self._certificates.add(1, {"test.id": str(test_id)})
        except Exception as e:
            logger.debug(f"Failed to record certificate metric: {e}")


# Global metrics instance
metrics = ApplicationMetrics()
