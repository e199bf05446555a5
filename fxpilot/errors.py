"""FXPilot — error taxonomy.

Signal and configuration failures are exceptions. Broker execution failures
are not: they come back as ``ExecutionFailure`` values (see
``fxpilot.broker.models``).
"""


class FXPilotError(Exception):
    """Base class for every error raised by the core."""


class ValidationError(FXPilotError, ValueError):
    """Strategy parameters were rejected.

    ``errors`` lists every problem found, not just the first one.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid strategy parameters")


class SignalError(FXPilotError):
    """A single signal computation could not be completed."""

    reason = "signal_error"


class InsufficientHistory(SignalError):
    """Fewer bars than the long moving-average window."""

    reason = "insufficient_history"

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            f"Need at least {required} bars, got {available}"
        )


class InvalidMarketData(SignalError):
    """Bars that would produce NaN/Inf or are out of order."""

    reason = "invalid_market_data"


class CollaboratorUnavailable(FXPilotError):
    """The market-data source could not be reached or answered garbage."""
