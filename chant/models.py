"""SQLAlchemy ORM models for deliberations, cells, votes and comments."""

import enum
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import text as sql_text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import Boolean, DateTime, Integer

from chant.utils import utcnow


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Status enums
# ---------------------------------------------------------------------------


class DeliberationPhase(str, enum.Enum):
    SUBMISSION = "SUBMISSION"
    VOTING = "VOTING"
    ACCUMULATING = "ACCUMULATING"
    COMPLETED = "COMPLETED"


class IdeaStatus(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    PENDING = "PENDING"
    IN_VOTING = "IN_VOTING"
    ADVANCING = "ADVANCING"
    ELIMINATED = "ELIMINATED"
    WINNER = "WINNER"
    DEFENDING = "DEFENDING"
    BENCHED = "BENCHED"
    RETIRED = "RETIRED"


class CellStatus(str, enum.Enum):
    DELIBERATING = "DELIBERATING"
    VOTING = "VOTING"
    COMPLETED = "COMPLETED"


class ParticipationStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    VOTED = "VOTED"
    LEFT = "LEFT"


class MemberRole(str, enum.Enum):
    CREATOR = "CREATOR"
    PARTICIPANT = "PARTICIPANT"
    VIEWER = "VIEWER"


class RevisionStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


def _in_clause(column: str, values: type[enum.Enum]) -> str:
    quoted = ",".join(f"'{v.value}'" for v in values)
    return f"{column} IN ({quoted})"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Deliberations
# ---------------------------------------------------------------------------


class Deliberation(Base):
    __tablename__ = "deliberations"
    __table_args__ = (
        Index("idx_deliberations_phase", "phase"),
        CheckConstraint(_in_clause("phase", DeliberationPhase), name="ck_deliberation_phase"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    creator_id: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))
    phase: Mapped[str] = mapped_column(
        Text, nullable=False, default=DeliberationPhase.SUBMISSION.value
    )
    current_tier: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Highest tier whose completion has been claimed; guards double advancement.
    completed_tier: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_tier_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    champion_id: Mapped[UUID | None] = mapped_column(Uuid)
    champion_entered_tier: Mapped[int | None] = mapped_column(Integer)

    submission_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    voting_timeout_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discussion_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    supermajority_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    accumulation_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    accumulation_timeout_seconds: Mapped[int] = mapped_column(
        Integer, nullable=False, default=86400
    )
    accumulation_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    challenge_round: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    empty_accumulation_windows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    members: Mapped[list["DeliberationMember"]] = relationship(back_populates="deliberation")
    ideas: Mapped[list["Idea"]] = relationship(back_populates="deliberation")
    cells: Mapped[list["Cell"]] = relationship(back_populates="deliberation")


class DeliberationMember(Base):
    __tablename__ = "deliberation_members"
    __table_args__ = (
        UniqueConstraint("deliberation_id", "user_id", name="uq_deliberation_member"),
        CheckConstraint(_in_clause("role", MemberRole), name="ck_member_role"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    deliberation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("deliberations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False, default=MemberRole.PARTICIPANT.value)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    deliberation: Mapped["Deliberation"] = relationship(back_populates="members")


# ---------------------------------------------------------------------------
# Ideas
# ---------------------------------------------------------------------------


class Idea(Base):
    __tablename__ = "ideas"
    __table_args__ = (
        Index("idx_ideas_deliberation_status", "deliberation_id", "status"),
        CheckConstraint(_in_clause("status", IdeaStatus), name="ck_idea_status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    deliberation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("deliberations.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))
    text: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=IdeaStatus.SUBMITTED.value)
    tier: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_champion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_new: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    deliberation: Mapped["Deliberation"] = relationship(back_populates="ideas")


# ---------------------------------------------------------------------------
# Cells
# ---------------------------------------------------------------------------


class Cell(Base):
    __tablename__ = "cells"
    __table_args__ = (
        Index("idx_cells_deliberation_round_tier", "deliberation_id", "round", "tier"),
        Index("idx_cells_status", "status"),
        CheckConstraint(_in_clause("status", CellStatus), name="ck_cell_status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    deliberation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("deliberations.id", ondelete="CASCADE"), nullable=False
    )
    # Challenge round the cell belongs to; tiers restart at 1 every round.
    round: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier: Mapped[int] = mapped_column(Integer, nullable=False)
    batch: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=CellStatus.VOTING.value)
    is_final_showdown: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    discussion_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    voting_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    voting_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finalizes_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_by_timeout: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    deliberation: Mapped["Deliberation"] = relationship(back_populates="cells")
    ideas: Mapped[list["CellIdea"]] = relationship(back_populates="cell")
    participants: Mapped[list["CellParticipation"]] = relationship(back_populates="cell")
    votes: Mapped[list["Vote"]] = relationship(back_populates="cell")


class CellIdea(Base):
    __tablename__ = "cell_ideas"
    __table_args__ = (
        UniqueConstraint("cell_id", "idea_id", name="uq_cell_idea"),
        Index("idx_cell_ideas_idea", "idea_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    cell_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cells.id", ondelete="CASCADE"), nullable=False
    )
    idea_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("ideas.id", ondelete="CASCADE"), nullable=False
    )

    cell: Mapped["Cell"] = relationship(back_populates="ideas")


class CellParticipation(Base):
    __tablename__ = "cell_participations"
    __table_args__ = (
        UniqueConstraint("cell_id", "user_id", name="uq_cell_participant"),
        Index("idx_participations_user", "user_id"),
        CheckConstraint(_in_clause("status", ParticipationStatus), name="ck_participation_status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    cell_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cells.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=ParticipationStatus.ACTIVE.value
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    voted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    cell: Mapped["Cell"] = relationship(back_populates="participants")


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("cell_id", "user_id", "idea_id", name="uq_vote_cell_user_idea"),
        Index("idx_votes_cell", "cell_id"),
        CheckConstraint("points > 0", name="ck_vote_points_positive"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    cell_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cells.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    idea_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("ideas.id", ondelete="CASCADE"), nullable=False
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    cell: Mapped["Cell"] = relationship(back_populates="votes")


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


class Comment(Base):
    __tablename__ = "comments"
    __table_args__ = (
        Index("idx_comments_cell", "cell_id"),
        Index("idx_comments_idea_tier", "idea_id", "reach_tier"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    cell_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cells.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    idea_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("ideas.id", ondelete="SET NULL")
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    upvote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spread_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reach_tier: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    tier_upvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class CommentUpvote(Base):
    __tablename__ = "comment_upvotes"
    __table_args__ = (
        UniqueConstraint("comment_id", "user_id", name="uq_comment_upvote"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    comment_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("comments.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Idea revisions
# ---------------------------------------------------------------------------


class IdeaRevision(Base):
    __tablename__ = "idea_revisions"
    __table_args__ = (
        Index("idx_revisions_idea_status", "idea_id", "status"),
        # At most one pending revision per idea.
        Index(
            "uq_revisions_idea_pending",
            "idea_id",
            unique=True,
            postgresql_where=sql_text("status = 'pending'"),
            sqlite_where=sql_text("status = 'pending'"),
        ),
        CheckConstraint(_in_clause("status", RevisionStatus), name="ck_revision_status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    idea_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("ideas.id", ondelete="CASCADE"), nullable=False
    )
    cell_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cells.id", ondelete="CASCADE"), nullable=False
    )
    proposed_by_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    original_text: Mapped[str] = mapped_column(Text, nullable=False)
    proposed_text: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=RevisionStatus.pending.value)
    required: Mapped[int] = mapped_column(Integer, nullable=False)
    approvals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejections: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )


class IdeaRevisionVote(Base):
    __tablename__ = "idea_revision_votes"
    __table_args__ = (
        UniqueConstraint("revision_id", "user_id", name="uq_revision_vote"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    revision_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("idea_revisions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    approve: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
