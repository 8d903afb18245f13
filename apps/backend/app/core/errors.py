"""Error taxonomy shared by the obligation services.

Services raise these; routers translate them with :func:`to_http_exception`
so callers can branch on "already paid" (409) versus "bad input" (400).
Resources owned by someone else are reported exactly like missing ones.
"""

from __future__ import annotations

from fastapi import HTTPException


class ObligationError(Exception):
    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class RuleValidationError(ObligationError):
    status_code = 400


class ConflictError(ObligationError):
    status_code = 409


class DuplicateSettlementError(ConflictError):
    pass


class NotFoundError(ObligationError):
    status_code = 404


def to_http_exception(exc: ObligationError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)
