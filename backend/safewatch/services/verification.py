"""Verification policy: vote counts in, verification fields out."""

from dataclasses import dataclass
from typing import Iterable

from safewatch.models.report import ReportStatus
from safewatch.models.vote import VoteType

VERIFICATION_THRESHOLD = 10
FLAG_THRESHOLD = 5


@dataclass(frozen=True)
class VoteCounts:
    """Aggregate vote counts for one report."""

    up: int = 0
    down: int = 0
    flags: int = 0

    @property
    def total(self) -> int:
        return self.up + self.down + self.flags

    @classmethod
    def from_vote_types(cls, vote_types: Iterable[VoteType]) -> "VoteCounts":
        up = down = flags = 0
        for vote_type in vote_types:
            if vote_type == VoteType.UP:
                up += 1
            elif vote_type == VoteType.DOWN:
                down += 1
            elif vote_type == VoteType.FLAG:
                flags += 1
        return cls(up=up, down=down, flags=flags)


@dataclass(frozen=True)
class VerificationOutcome:
    """Fields the policy proposes for the report."""

    verification_score: int
    verified: bool
    status: ReportStatus


def apply_verification_policy(
    counts: VoteCounts,
    currently_verified: bool,
    current_status: ReportStatus,
    verification_threshold: int = VERIFICATION_THRESHOLD,
    flag_threshold: int = FLAG_THRESHOLD,
) -> VerificationOutcome:
    """
    Decide verification state from the current vote counts.

    - score is upvotes minus downvotes, with no floor
    - verified tracks the score against the threshold on every recount, so
      a report that drops below it loses verification again
    - enough flags move the report to UNDER_REVIEW; no other status is ever
      proposed here

    ``currently_verified`` is accepted so callers can detect transitions; it
    does not influence the result.
    """
    score = counts.up - counts.down
    verified = score >= verification_threshold

    status = current_status
    if counts.flags >= flag_threshold:
        status = ReportStatus.UNDER_REVIEW

    return VerificationOutcome(
        verification_score=score,
        verified=verified,
        status=status,
    )
