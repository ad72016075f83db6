from __future__ import annotations


class KpiError(Exception):
    """Base class for every error raised by the KPI package."""


class KpiInputError(KpiError):
    """
    The caller supplied an unusable request (unknown KPI, malformed dates,
    invalid bin boundaries). Raised before the event store is touched.
    """


class EventStoreError(KpiError):
    """The event store failed to answer a read."""


class BillingServiceError(KpiError):
    """The billing provider is unreachable or not configured."""


class RosterNotFoundError(KpiError):
    """No beta roster entry exists for the requested id."""
