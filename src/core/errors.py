"""
Error taxonomy for the refresh pipeline.

Absence of data (404, empty result) is deliberately not represented here:
gateways return None or an empty collection and callers continue with defaults.
"""


class LeaderboardError(Exception):
    """Base class for all service errors."""


class ValidationError(LeaderboardError):
    """Malformed input. Never retried."""


class TransientTransportError(LeaderboardError):
    """Network failure, timeout, rate limit or upstream 5xx. Safe to retry."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ParticipantProcessingError(LeaderboardError):
    """A single participant could not be reconciled during a run."""

    def __init__(self, participant_id: int, stage: str, cause: BaseException):
        super().__init__(f"participant {participant_id} failed at {stage}: {cause}")
        self.participant_id = participant_id
        self.stage = stage
        self.cause = cause


class RefreshRunError(LeaderboardError):
    """The run as a whole could not proceed (e.g. participants could not be loaded)."""


class RefreshInProgressError(LeaderboardError):
    """Another refresh run already holds the single-flight guard."""


class LeaderboardWriteError(LeaderboardError):
    """The leaderboard upsert failed after the snapshot insert; neither was committed."""
