"""Error types shared by the record stores, services, and views."""

from __future__ import annotations


class StoreError(RuntimeError):
    """A record store call failed; the caller should surface it and stop."""


class RecordNotFoundError(StoreError):
    pass


class DuplicateRecordError(StoreError):
    pass


class ValidationError(ValueError):
    """Form input rejected before any store round trip."""


class DonorTotalsError(StoreError):
    """A donation was stored but the donor's running total was not refreshed."""
