"""Community vote database model."""

import enum
import uuid
from typing import Optional

from sqlalchemy import Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from safewatch.models.base import Base


class VoteType(str, enum.Enum):
    """A voter's opinion of a report. Mutually exclusive."""

    UP = "UP"
    DOWN = "DOWN"
    FLAG = "FLAG"


class Vote(Base):
    """One voter's vote on one report."""

    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("report_id", "voter_id", name="uq_votes_report_voter"),
    )

    report_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("reports.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    voter_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    vote_type: Mapped[VoteType] = mapped_column(Enum(VoteType), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
