from __future__ import annotations

from typing import Any


class ValidationError(ValueError):
    """Malformed condition types, dates, disclosure level or identifiers."""


class NotFoundError(LookupError):
    pass


class OwnershipError(PermissionError):
    pass


class TraversalError(RuntimeError):
    """Discovery could not complete; ``partial`` holds the hops that did."""

    def __init__(self, message: str, *, partial: Any = None) -> None:
        super().__init__(message)
        self.partial = partial
