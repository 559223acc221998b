"""MFA metrics helpers for Prometheus integration.

Usage:
    ```python
    from secure2send_mfa.observability import MfaMetrics

    with MfaMetrics.operation("verify_login", method="totp") as outcome:
        result = await do_verify()
        outcome.result = "success" if result.ok else result.kind.value
    ```
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from prometheus_client import Counter, Histogram

_logger = logging.getLogger("secure2send.mfa.metrics")

if TYPE_CHECKING:
    from collections.abc import Generator


@dataclass
class OperationOutcome:
    """Mutable label holder filled in by the timed block."""

    result: str = "success"


class _MfaMetricsRegistry:
    """Registry for MFA Prometheus metrics.

    Metrics are created on first use so importing the package never
    registers collectors twice in the default registry.
    """

    def __init__(self) -> None:
        self._histogram: Histogram | None = None
        self._counter: Counter | None = None

    def _ensure_initialized(self) -> None:
        if self._histogram is not None:
            return
        self._histogram = Histogram(
            "mfa_operation_duration_seconds",
            "MFA operation duration",
            ["operation", "method"],
        )
        self._counter = Counter(
            "mfa_operations_total",
            "MFA operation count",
            ["operation", "method", "result"],
        )

    @property
    def histogram(self) -> Any:
        self._ensure_initialized()
        return self._histogram

    @property
    def counter(self) -> Any:
        self._ensure_initialized()
        return self._counter


# Global registry instance
_registry = _MfaMetricsRegistry()


class MfaMetrics:
    """MFA metrics helpers for recording orchestrator operations."""

    @staticmethod
    @contextmanager
    def operation(
        operation: str,
        *,
        method: str = "none",
    ) -> Generator[OperationOutcome, None, None]:
        """Context manager for timing an MFA operation.

        Args:
            operation: Operation name (confirm_totp_setup, verify_login, ...).
            method: MFA method involved.

        Yields:
            OperationOutcome whose ``result`` becomes the counter label.
        """
        outcome = OperationOutcome()
        start = time.monotonic()

        try:
            yield outcome
        except Exception:
            outcome.result = "error"
            raise
        finally:
            duration = time.monotonic() - start
            try:
                _registry.histogram.labels(operation=operation, method=method).observe(
                    duration
                )
                _registry.counter.labels(
                    operation=operation, method=method, result=outcome.result
                ).inc()
            except ValueError:
                _logger.debug("Failed to record MFA metrics for %s", operation)


__all__: list[str] = ["OperationOutcome", "MfaMetrics"]
