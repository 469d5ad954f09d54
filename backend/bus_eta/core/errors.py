"""Failures the tracking pipeline reports instead of crashing."""


class TrackingError(Exception):
    """Base exception for tracking failures."""


class DataUnavailable(TrackingError):
    """No route, no stops or no bus could be resolved for the target."""


class InvalidSample(TrackingError):
    """A position sample with non-finite or out-of-range coordinates."""


class SubscriptionFault(TrackingError):
    """The live position stream reported a connection error."""


class FleetError(Exception):
    """Base exception for trip and bus bookkeeping."""


class NotFound(FleetError):
    pass


class Conflict(FleetError):
    """The requested trip or stop transition is not allowed in the current state."""
