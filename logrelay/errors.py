"""
Exception hierarchy for logrelay.

Delivery failures never escape a flush; they are carried in
DeliveryResult events and passed to the on_error callback.
"""


class LogRelayError(Exception):
    """Base class for all logrelay errors."""


class InvalidRecordError(LogRelayError, ValueError):
    """A log record could not be built or validated."""


class InvalidDestinationError(LogRelayError, ValueError):
    """A destination definition failed validation."""


class DuplicateDestinationError(LogRelayError, ValueError):
    """A destination with the same name is already registered."""

    def __init__(self, name: str):
        super().__init__(f"Destination {name!r} already exists")
        self.name = name


class UnknownDestinationError(LogRelayError, KeyError):
    """No destination with the given name is registered."""

    def __init__(self, name: str):
        super().__init__(f"Destination {name!r} not found")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


class DeliveryError(LogRelayError):
    """A batch could not be delivered to a destination.

    Covers network errors, timeouts and non-success responses alike.
    """

    def __init__(self, destination: str, message: str, status_code: int | None = None):
        super().__init__(f"{destination}: {message}")
        self.destination = destination
        self.status_code = status_code


class PipelineClosedError(LogRelayError, RuntimeError):
    """The pipeline is shutting down or stopped."""
