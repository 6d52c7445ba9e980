"""
Domain exceptions.

Every error carries a machine-readable `code`, a human message and a
`details` dict with structured data (per-item shortfalls, balances, ...).
Routes translate them to JSON with `http_status`; services never catch and
continue on them.

    StockLedgerError
    +-- ValidationError          400  bad input, checked before any transaction
    +-- NotFoundError            404
    |   +-- SaleNotFoundError
    |   +-- CreditNotFoundError
    +-- ConflictError            409  business rule / state conflict
        +-- InsufficientStockError
        +-- TaxConfigurationError
        +-- AlreadyVoidedError
        +-- InvalidStateError
        +-- OverpaymentError
        +-- ImmutableLedgerError
"""

from __future__ import annotations


class StockLedgerError(Exception):
    code = "STOCKLEDGER_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(StockLedgerError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"


class NotFoundError(StockLedgerError):
    code = "NOT_FOUND"
    http_status = 404


class SaleNotFoundError(NotFoundError):
    code = "SALE_NOT_FOUND"


class CreditNotFoundError(NotFoundError):
    code = "CREDIT_NOT_FOUND"


class ConflictError(StockLedgerError):
    """409-level business rule conflict."""
    code = "CONFLICT"
    http_status = 409


class InsufficientStockError(ConflictError):
    """details["items"] lists every short line, not just the first."""
    code = "INSUFFICIENT_STOCK"


class TaxConfigurationError(ConflictError):
    code = "TAX_CONFIGURATION"


class AlreadyVoidedError(ConflictError):
    code = "ALREADY_VOIDED"


class InvalidStateError(ConflictError):
    code = "INVALID_STATE"


class OverpaymentError(ConflictError):
    code = "OVERPAYMENT"


class ImmutableLedgerError(ConflictError):
    code = "IMMUTABLE_LEDGER"
