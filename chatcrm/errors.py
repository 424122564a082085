"""Error taxonomy shared by the pipeline stages."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    UNRESOLVED_TENANT = "unresolved_tenant"
    DUPLICATE_MESSAGE = "duplicate_message"
    DELEGATED_GENERATOR_FAILURE = "delegated_generator_failure"
    STOCK_INSUFFICIENT = "stock_insufficient"
    PRODUCT_NOT_FOUND = "product_not_found"
    DELIVERY_WINDOW_EXPIRED = "delivery_window_expired"
    TRANSPORT_FAILURE = "transport_failure"
    DATA_STORE_FAILURE = "data_store_failure"


class DataStoreError(RuntimeError):
    """Raised when a transactional data-store operation had to be aborted."""


class DelegatedGeneratorError(RuntimeError):
    """Raised by delegated response generators on transport or payload errors."""


__all__ = ["DataStoreError", "DelegatedGeneratorError", "ErrorKind"]
