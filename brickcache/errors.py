from __future__ import annotations

from typing import Optional


class CatalogError(RuntimeError):
    pass


class NotFound(CatalogError):
    """No plausible identity match (empty candidate list, no usable set)."""


class Unavailable(CatalogError):
    """External fetch or parse failure. Transient: retry on a later run."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class Invalid(CatalogError):
    """The primary catalog confirms the item does not exist."""


class MalformedCache(CatalogError):
    pass


class Aborted(CatalogError):
    """Caller cancelled the fetch. Never cached, never counted as Unavailable."""


class RunLockError(RuntimeError):
    pass
