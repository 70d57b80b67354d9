# spendlens/errors.py
from __future__ import annotations

from typing import Any, Dict


class PipelineError(Exception):
    """Base error carrying an HTTP status and partial progress counters."""

    status_code = 500

    def __init__(self, message: str, **counters: Any) -> None:
        super().__init__(message)
        self.message = message
        self.counters: Dict[str, Any] = counters

    def to_payload(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.message, **self.counters}


class AuthorizationError(PipelineError):
    status_code = 401


class StatementFormatError(PipelineError):
    """The uploaded statement cannot be used as given."""

    status_code = 400


class EmptyStatementError(StatementFormatError):
    pass


class HeaderNotFoundError(StatementFormatError):
    pass


class MissingColumnsError(StatementFormatError):
    pass


class NoDataRowsError(StatementFormatError):
    pass


class NoValidRowsError(StatementFormatError):
    status_code = 422


class StoreError(PipelineError):
    """The external store rejected or failed a request."""

    status_code = 502

    def with_counters(self, **counters: Any) -> "StoreError":
        merged = {**self.counters, **counters}
        return StoreError(self.message, **merged)
