# app/utils/errors.py
"""
Error taxonomy shared by services and routers.

Only InvalidInput is fatal to an ingestion request. StorageUnavailable and
ChannelUnavailable are logged by the caller and the request carries on.
Anything else is an unexpected failure and ends up in the global handler.
"""


class CounterError(Exception):
    """Base class for all application errors."""


class InvalidInput(CounterError):
    """Malformed ingestion payload or query parameter. Reported as HTTP 400."""


class StorageUnavailable(CounterError):
    """Durable log not configured, unreachable, or failing."""


class ChannelUnavailable(CounterError):
    """Live-update relay could not accept a publish."""
