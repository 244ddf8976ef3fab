"""Fault taxonomy shared by services, routers and the task scheduler."""

from __future__ import annotations

import enum
from typing import Any, Optional


class FaultKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    STORE_FAULT = "store_fault"
    ASSERTION = "assertion"
    UNEXPECTED = "unexpected"


class DocsiteError(Exception):
    kind: FaultKind = FaultKind.UNEXPECTED


class NotFound(DocsiteError):
    """The requested module, path or symbol does not exist."""

    kind = FaultKind.NOT_FOUND


class BadRequest(DocsiteError):
    """Malformed specifier or unparsable source."""

    kind = FaultKind.BAD_REQUEST


class StoreFault(DocsiteError):
    """The entity store rejected or failed an operation.

    ``status`` and ``detail`` carry whatever diagnostic information the backend
    returned so that it can be logged in full.
    """

    kind = FaultKind.STORE_FAULT

    def __init__(self, message: str, *, status: Optional[str] = None, detail: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.detail = detail


class AssertionFault(DocsiteError):
    kind = FaultKind.ASSERTION


def assert_that(cond: Any, message: str = "Assertion failed.") -> None:
    if not cond:
        raise AssertionFault(message)


def classify_fault(exc: BaseException) -> FaultKind:
    """Map an exception raised by a job or request to a FaultKind."""
    if isinstance(exc, DocsiteError):
        return exc.kind
    if isinstance(exc, (AssertionError, TypeError)):
        return FaultKind.ASSERTION
    return FaultKind.UNEXPECTED
