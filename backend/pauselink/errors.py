"""Error taxonomy for the ingest API.

Every :class:`IngestError` carries a stable machine-readable ``code`` that is
rendered as ``{"error": code, "message": ..., **extra}`` by the exception
handler registered in :mod:`pauselink.main`.
"""

from __future__ import annotations

from typing import Any


class IngestError(Exception):
    status_code = 500

    def __init__(self, code: str, message: str | None = None, **extra: Any) -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.extra}


class ValidationError(IngestError):
    """Malformed or incomplete input; raised before anything is persisted."""

    status_code = 400


class AuthenticationError(IngestError):
    status_code = 401


class ForbiddenError(IngestError):
    status_code = 403


class NotFoundError(IngestError):
    status_code = 404


class ConflictError(IngestError):
    status_code = 409


class InternalError(IngestError):
    status_code = 500


class InsufficientFundsError(Exception):
    """Wallet balance does not cover a conversion fee.

    This is a business outcome handled inside the ledger, never an HTTP error.
    """

    def __init__(self, wallet_id: int, balance: Any, fee: Any) -> None:
        super().__init__(f"Wallet {wallet_id} balance {balance} cannot cover fee {fee}")
        self.wallet_id = wallet_id
        self.balance = balance
        self.fee = fee


class InvalidTransitionError(Exception):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Billing status cannot move from {current} to {target}")
        self.current = current
        self.target = target


__all__ = [
    "AuthenticationError",
    "ConflictError",
    "ForbiddenError",
    "IngestError",
    "InsufficientFundsError",
    "InternalError",
    "InvalidTransitionError",
    "NotFoundError",
    "ValidationError",
]
