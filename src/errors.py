from __future__ import annotations


class OracleError(Exception):
    """Base class for failures raised by the oracle store and services."""


class BackendError(OracleError):
    """The underlying store failed, or returned data it should not hold."""


class NotFoundError(BackendError):
    def __init__(self, what: str) -> None:
        super().__init__(f"Not found: {what}")
        self.what = what


class BatchClosedError(BackendError):
    def __init__(self) -> None:
        super().__init__("Batch already committed or discarded")


__all__ = ["BackendError", "BatchClosedError", "NotFoundError", "OracleError"]
