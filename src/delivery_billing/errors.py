"""Exception types shared across the billing pipeline."""

from __future__ import annotations


class BillingError(Exception):
    """Base class for all domain errors raised by the pipeline."""


class InvalidInput(BillingError, ValueError):
    """Input rejected synchronously (e.g. an empty address)."""


class ConfigError(BillingError):
    """A required setting such as the provider credential is missing."""


class ResolutionError(BillingError):
    """The routing provider could not produce a usable distance."""

    def __init__(self, message: str, *, from_cache: bool = False) -> None:
        super().__init__(message)
        self.from_cache = from_cache


class InsufficientCredits(BillingError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient credits. Required: {required}, available: {available}.")
        self.required = required
        self.available = available


class ProfileNotFound(BillingError):
    def __init__(self, account_id: str) -> None:
        super().__init__(f"Profile not found for account '{account_id}'.")
        self.account_id = account_id


class ConcurrencyExhausted(BillingError):
    """Every compare-and-swap attempt lost a race. The caller may retry."""


class InvalidTierList(BillingError, ValueError):
    """No tier in the submitted price list has a usable start and price."""


class NoTierMatched(BillingError):
    def __init__(self, distance_km: float) -> None:
        super().__init__(f"No pricing tier matches distance {distance_km} km.")
        self.distance_km = distance_km


class UploadNotFound(BillingError):
    def __init__(self, upload_id: str) -> None:
        super().__init__(f"Upload '{upload_id}' not found.")
        self.upload_id = upload_id


class InvalidTransition(BillingError):
    def __init__(self, upload_id: str, current: str, target: str) -> None:
        super().__init__(f"Upload '{upload_id}' cannot move from '{current}' to '{target}'.")
        self.upload_id = upload_id
        self.current = current
        self.target = target


class RunCancelled(BillingError):
    """Raised inside a processing run once its watchdog has fired."""


class AccessDenied(BillingError):
    def __init__(self, upload_id: str) -> None:
        super().__init__(f"Access to upload '{upload_id}' denied.")
        self.upload_id = upload_id


class PendingLegNotFound(BillingError):
    def __init__(self, pending_id: str) -> None:
        super().__init__(f"Pending delivery '{pending_id}' not found.")
        self.pending_id = pending_id
