# app/errors.py
from __future__ import annotations


class SyncError(Exception):
    """Base class for failures the reconciliation engine can report."""


class MissingScopeError(SyncError):
    """No project / project id was supplied to a scoped operation."""


class WooFetchError(SyncError):
    """The remote catalog could not be read; the whole fetch is abandoned."""

    def __init__(self, message: str, *, page: int | None = None, status_code: int | None = None):
        super().__init__(message)
        self.page = page
        self.status_code = status_code


class MirrorError(SyncError):
    """The local mirror could not be read (unreachable or rejected the query)."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
