"""Error taxonomy for the ask pipeline.

Only ``ValidationError`` and ``NotFoundError`` ever reach a caller; they are
raised before a response is produced. The remaining types describe internal
failures that are absorbed where they occur.
"""

from __future__ import annotations

from typing import Optional, Sequence


class GatewayError(Exception):
    """Base class for all gateway errors."""


class ValidationError(GatewayError):
    """A required input is missing or blank."""

    def __init__(self, fields: Sequence[str]):
        self.fields = list(fields)
        super().__init__(f"{' & '.join(self.fields)} required")


class NotFoundError(GatewayError):
    """An account or session could not be resolved."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class ClassificationDegraded(GatewayError):
    """The classifier could not produce a usable partition."""

    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)


class RetrievalFailure(GatewayError):
    """A single store produced no usable answer."""

    def __init__(self, store_name: str, reason: str):
        self.store_name = store_name
        self.reason = reason
        super().__init__(f"Retrieval failed for store '{store_name}': {reason}")


class PersistenceFailure(GatewayError):
    """A history or audit write failed after the response was sent."""


__all__ = [
    "GatewayError",
    "ValidationError",
    "NotFoundError",
    "ClassificationDegraded",
    "RetrievalFailure",
    "PersistenceFailure",
]
