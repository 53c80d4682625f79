"""
Exception hierarchy for the Gaplens engine.

Every failure raised by the engine is scoped to the operation that triggered
it. None of these exceptions leaves cached views in a partially updated state:
the cache coordinator restores its snapshot before re-raising or reporting.

Hierarchy:
    EngineError
        NoBaselineConfiguredError   product has no usable baseline
        UnknownEntityError          product/system/control/assessment missing
        ConflictingWriteError       expected prior state did not match
        TransientIOError            storage or network call failed (retryable)
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base exception for engine errors."""

    pass


class NoBaselineConfiguredError(EngineError):
    """
    Raised when a product has no usable baseline.

    Scores, matrices and gap lists refuse to render for such a product rather
    than reporting a misleading 0%.

    Attributes:
        product_id: The product without a baseline.
        reason: "no_entries" when no baseline entries exist at all, or
            "no_applicable_controls" when every entry is marked not applicable.
    """

    NO_ENTRIES = "no_entries"
    NO_APPLICABLE_CONTROLS = "no_applicable_controls"

    def __init__(self, product_id: str, reason: str = NO_ENTRIES) -> None:
        self.product_id = product_id
        self.reason = reason
        if reason == self.NO_APPLICABLE_CONTROLS:
            message = f"Baseline for product {product_id} excludes every control"
        else:
            message = f"No baseline configured for product {product_id}"
        super().__init__(message)


class UnknownEntityError(EngineError):
    """
    Raised when a referenced entity does not exist.

    Attributes:
        entity_type: Kind of entity (product, system, control, ...).
        entity_id: Identifier that could not be resolved.
    """

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"Unknown {entity_type}: {entity_id}")


class ConflictingWriteError(EngineError):
    """
    Raised when a write's expected prior state does not match storage.

    Attributes:
        entity_id: Identifier of the entity being written.
        expected: The prior-state token the writer expected.
        actual: The token currently held by storage.
    """

    def __init__(
        self,
        entity_id: str,
        expected: Any = None,
        actual: Any = None,
        message: str | None = None,
    ) -> None:
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            message
            or f"Conflicting write on {entity_id}: expected {expected!r}, found {actual!r}"
        )


class TransientIOError(EngineError):
    """
    Raised when a storage or network call fails or times out.

    The failed write is treated as a no-op on server state. Callers may
    resubmit the same edit.

    Attributes:
        operation: Name of the operation that failed.
        retryable: Always True for this error type.
    """

    retryable = True

    def __init__(self, message: str, operation: str | None = None) -> None:
        self.message = message
        self.operation = operation
        super().__init__(f"[{operation}] {message}" if operation else message)
