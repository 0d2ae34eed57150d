# services/errors.py

class CognitiveTrackerError(Exception):
    """Base class for errors raised by the assessment core."""


class ValidationError(CognitiveTrackerError):
    """Malformed or out-of-range input to a core computation or store call."""


class NotFoundError(CognitiveTrackerError):
    """A user, session or stored record does not exist for the caller."""


class PersistenceError(CognitiveTrackerError):
    """The document store rejected or failed a write/read."""


class DegradedResultError(CognitiveTrackerError):
    """A test finished without a usable score."""


class SessionStateError(CognitiveTrackerError):
    """A session transition was requested from the wrong phase."""
