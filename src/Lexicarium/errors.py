"""Exception hierarchy for Lexicarium import/export."""

from __future__ import annotations


class TransferError(Exception):
    """Base exception for all import/export errors."""


class MalformedBundle(TransferError):
    """Bundle bytes are not JSON, or the top-level value is not an object/array."""


class ScopeMismatch(TransferError):
    """Bundle declares an exportType different from the requested scope."""

    def __init__(self, expected: str, declared: str):
        super().__init__(f"bundle declares exportType {declared!r}, expected {expected!r}")
        self.expected = expected
        self.declared = declared


class StoreUnavailable(TransferError):
    """The document store could not be reached or refused the operation."""


class RecordRejected(TransferError):
    """A single record cannot be written as-is (reported per record)."""
