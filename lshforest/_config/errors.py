"""
Error types raised by lshforest.

Each error also subclasses the built-in exception callers would already be
catching, so ``except ValueError`` keeps working around index calls.
"""

from typing import Any, Dict, Optional


class LSHForestError(Exception):
    """Base exception for all lshforest errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SignatureLengthError(LSHForestError, ValueError):
    """Raised when a signature handed to ``add``/``query`` has the wrong length."""

    def __init__(self, expected: int, received: int, banded: Optional[int] = None):
        if banded is not None and banded != expected:
            message = (
                f"Expected signature of length {expected} (or {banded} banded values), "
                f"received {received}"
            )
        else:
            message = f"Expected signature of length {expected}, received {received}"
        super().__init__(
            message,
            {"expected": expected, "banded": banded, "received": received},
        )
        self.expected = expected
        self.received = received


class InfeasibleConfigError(LSHForestError, ValueError):
    """Raised when no valid (K, L) pair exists for the requested configuration."""


class IndexDecodeError(LSHForestError, ValueError):
    """Raised when a persisted index is truncated, corrupt or of an unknown version."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, {"path": path})
        self.path = path
