"""
Error taxonomy for the annotation engine.

Only two kinds are ever raised; the other two are signals that the
reconciler counts per pass and recovers from locally.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    """Machine-interpretable failure kinds."""

    EXTRACTION_MISMATCH = "EXTRACTION_MISMATCH"
    """A candidate location does not encode a valid identity. Skipped."""

    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    """A store read or write failed. The pass or action becomes a no-op."""

    INELIGIBLE_FOR_AFFORDANCE = "INELIGIBLE_FOR_AFFORDANCE"
    """A content item has no resolvable provenance link. No affordance."""

    USER_INPUT_INVALID = "USER_INPUT_INVALID"
    """Empty tag text or an unknown color choice. Reported to the user."""


class HandleTaggerError(Exception):
    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_log_message(self) -> str:
        return f"[{self.kind.value}] {self.message}"


class StoreUnavailable(HandleTaggerError):
    kind = ErrorKind.STORE_UNAVAILABLE


class InvalidAnnotationInput(HandleTaggerError, ValueError):
    kind = ErrorKind.USER_INPUT_INVALID
