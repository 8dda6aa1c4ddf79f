"""
Exception hierarchy for the fantasy league service.

Input errors (missing race, cancelled race, incomplete podium) are raised
before any write so that a scoring call either runs or leaves no trace.
"""

from typing import List, Optional


class FantaF1Error(Exception):
    """Base class for all service-specific errors."""


class RaceNotFound(FantaF1Error):
    def __init__(self, race_id: str):
        super().__init__(f"Race not found: {race_id}")
        self.race_id = race_id


class RaceCancelled(FantaF1Error):
    """Raised when scoring or a submission targets a cancelled session."""


class IncompleteResults(FantaF1Error):
    """Raised when the official podium (P1..P3) is not fully populated."""


class ChampionshipResultsMissing(FantaF1Error):
    pass


class SubmissionRejected(FantaF1Error):
    """
    Raised when a lineup fails validation.

    ``errors`` holds the human-readable messages shown to the submitter.
    Nothing is persisted when this is raised.
    """

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors) or "Submission rejected")
        self.errors = list(errors)


class RateLimitExceeded(FantaF1Error):
    def __init__(self, key: str, retry_after: Optional[int] = None):
        super().__init__(f"Rate limit exceeded for {key}")
        self.key = key
        self.retry_after = retry_after


class NoRecipients(FantaF1Error):
    """Raised when a push is requested but no device tokens are registered."""
