"""Error taxonomy for reconciliation operations.

Exceptions are raised inside the store layer and inside individual fan-out
tasks. Components convert them to an ``ErrorKind`` at their boundary so the
public operations can return partial results instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Outcome kinds reported on result objects."""

    NOT_FOUND = "not_found"
    SOURCE_UNAVAILABLE = "source_unavailable"
    INVALID_INPUT = "invalid_input"
    STALE_REFERENCE = "stale_reference"


class LoyaltyLinkError(Exception):
    """Base exception for reconciliation errors."""

    kind: ErrorKind = ErrorKind.SOURCE_UNAVAILABLE


class SourceUnavailableError(LoyaltyLinkError):
    """Raised when a query against one logical source fails."""

    kind = ErrorKind.SOURCE_UNAVAILABLE

    def __init__(self, source: str, message: str = "", owner_id: str | None = None):
        self.source = source
        self.owner_id = owner_id
        detail = message or "query failed"
        if owner_id:
            detail = f"{detail} (owner_id={owner_id})"
        super().__init__(f"[{source}] {detail}")


class InvalidInputError(LoyaltyLinkError):
    """Raised when an identifier or phone number is empty or malformed."""

    kind = ErrorKind.INVALID_INPUT


class StaleReferenceError(LoyaltyLinkError):
    """Raised when a record points at a document that no longer exists."""

    kind = ErrorKind.STALE_REFERENCE

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} no longer exists")


@dataclass
class SourceFailure:
    """A failure absorbed at a component boundary.

    Attributes:
        source: Logical source that failed (e.g. "distributions").
        kind: Error kind.
        message: Error text.
        owner_id: Owner, business or coupon id the query was for.
    """

    source: str
    kind: ErrorKind
    message: str
    owner_id: str | None = None

    @classmethod
    def from_error(
        cls, source: str, error: Exception, owner_id: str | None = None
    ) -> SourceFailure:
        """Build from a caught exception."""
        kind = error.kind if isinstance(error, LoyaltyLinkError) else ErrorKind.SOURCE_UNAVAILABLE
        return cls(source=source, kind=kind, message=str(error), owner_id=owner_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return {
            "source": self.source,
            "kind": self.kind.value,
            "message": self.message,
            "owner_id": self.owner_id,
        }
