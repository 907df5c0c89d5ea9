"""Pydantic v2 result and request schemas."""

import enum
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ReasonCode(str, enum.Enum):
    NO_IDEAS = "NO_IDEAS"
    SINGLE_IDEA = "SINGLE_IDEA"
    INSUFFICIENT_PARTICIPANTS = "INSUFFICIENT_PARTICIPANTS"
    VOTING_STARTED = "VOTING_STARTED"
    NOT_IN_VOTING_PHASE = "NOT_IN_VOTING_PHASE"
    ALREADY_IN_CELL = "ALREADY_IN_CELL"
    NO_ACTIVE_CELLS = "NO_ACTIVE_CELLS"
    ROUND_FULL = "ROUND_FULL"
    JOINED = "JOINED"


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class StartVotingResult(BaseModel):
    success: bool
    reason: ReasonCode
    cells_created: int | None = None
    champion_id: UUID | None = None
    tier: int | None = None


class CellResult(BaseModel):
    """Per-cell outcome. Both lists are empty for final showdown cells."""

    winner_ids: list[UUID] = Field(default_factory=list)
    loser_ids: list[UUID] = Field(default_factory=list)


class LateJoinResult(BaseModel):
    success: bool
    reason: ReasonCode
    cell_id: UUID | None = None


class ChallengeRoundResult(BaseModel):
    extended: bool
    finalized: bool = False
    reason: str | None = None
    challenge_round: int | None = None
    challengers: int = 0
    retired: int = 0
    benched: int = 0


class RetirementPlan(BaseModel):
    to_retire: list[UUID] = Field(default_factory=list)
    to_compete: list[UUID] = Field(default_factory=list)
    to_bench: list[UUID] = Field(default_factory=list)


class TimerSweepResult(BaseModel):
    submissions: list[UUID] = Field(default_factory=list)
    discussions: list[UUID] = Field(default_factory=list)
    tiers: list[UUID] = Field(default_factory=list)
    accumulations: list[UUID] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.submissions)
            + len(self.discussions)
            + len(self.tiers)
            + len(self.accumulations)
        )


# ---------------------------------------------------------------------------
# Voting
# ---------------------------------------------------------------------------


class PointAllocation(BaseModel):
    idea_id: UUID
    points: int = Field(..., ge=1)


class VoteRequest(BaseModel):
    user_id: UUID
    allocations: list[PointAllocation] = Field(..., min_length=1)


class VoteReceipt(BaseModel):
    cell_id: UUID
    user_id: UUID
    points_allocated: int
    all_voted: bool
    cell_completed: bool
    finalizes_at: datetime | None = None


# ---------------------------------------------------------------------------
# Ideas, membership, revisions
# ---------------------------------------------------------------------------


class SubmitIdeaRequest(BaseModel):
    author_id: UUID
    text: str = Field(..., min_length=1, max_length=2000)


class IdeaResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    deliberation_id: UUID
    author_id: UUID | None
    text: str
    status: str
    tier: int
    losses: int
    is_champion: bool
    is_new: bool


class JoinRequest(BaseModel):
    user_id: UUID


class ProposeRevisionRequest(BaseModel):
    user_id: UUID
    cell_id: UUID
    text: str = Field(..., min_length=1, max_length=2000)


class RevisionVoteRequest(BaseModel):
    user_id: UUID
    approve: bool


class RevisionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    idea_id: UUID
    cell_id: UUID
    proposed_by_id: UUID
    proposed_text: str
    status: str
    required: int
    approvals: int
    rejections: int


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


class CreateCommentRequest(BaseModel):
    user_id: UUID
    text: str = Field(..., min_length=1, max_length=2000)
    idea_id: UUID | None = None


class UpvoteRequest(BaseModel):
    user_id: UUID


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    cell_id: UUID
    user_id: UUID
    idea_id: UUID | None
    text: str
    upvote_count: int
    spread_count: int
    reach_tier: int
    tier_upvotes: int
    created_at: datetime


class UpvoteResult(BaseModel):
    upvoted: bool
    upvote_count: int
    spread_count: int
    spread_increased: bool = False


# ---------------------------------------------------------------------------
# Deliberation status
# ---------------------------------------------------------------------------


class DeliberationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    question: str
    phase: str
    current_tier: int
    champion_id: UUID | None
    challenge_round: int
    accumulation_enabled: bool
    accumulation_ends_at: datetime | None
    completed_at: datetime | None


class CreateUserRequest(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=200)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    display_name: str


class CreateDeliberationRequest(BaseModel):
    creator_id: UUID
    question: str = Field(..., min_length=1, max_length=2000)
    description: str | None = None
    submission_duration_seconds: int = Field(0, ge=0)
    voting_timeout_seconds: int = Field(0, ge=0)
    discussion_duration_seconds: int = Field(0, ge=0)
    supermajority_enabled: bool = False
    accumulation_enabled: bool = False
    accumulation_timeout_seconds: int = Field(86400, ge=1)


class CellResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    deliberation_id: UUID
    round: int
    tier: int
    batch: int
    status: str
    is_final_showdown: bool
    voting_deadline: datetime | None
    completed_at: datetime | None
    completed_by_timeout: bool
