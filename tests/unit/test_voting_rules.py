"""Unit tests for ballot validation and revision thresholds."""

from uuid import uuid4

import pytest

from chant.exceptions import VoteValidationError
from chant.schemas import PointAllocation
from chant.services.revision_service import required_approvals
from chant.services.voting_service import validate_allocations


class TestValidateAllocations:

    def setup_method(self):
        self.ideas = [uuid4(), uuid4(), uuid4()]

    def test_valid_split(self):
        validate_allocations(
            [PointAllocation(idea_id=self.ideas[0], points=7),
             PointAllocation(idea_id=self.ideas[1], points=3)],
            self.ideas,
            10,
        )

    def test_all_points_on_one_idea(self):
        validate_allocations([PointAllocation(idea_id=self.ideas[2], points=10)], self.ideas, 10)

    def test_wrong_total(self):
        with pytest.raises(VoteValidationError, match="exactly 10"):
            validate_allocations([PointAllocation(idea_id=self.ideas[0], points=9)], self.ideas, 10)

    def test_idea_outside_cell(self):
        with pytest.raises(VoteValidationError, match="not in this cell"):
            validate_allocations([PointAllocation(idea_id=uuid4(), points=10)], self.ideas, 10)

    def test_duplicate_idea(self):
        with pytest.raises(VoteValidationError, match="only once"):
            validate_allocations(
                [PointAllocation(idea_id=self.ideas[0], points=5),
                 PointAllocation(idea_id=self.ideas[0], points=5)],
                self.ideas,
                10,
            )

    def test_empty_ballot(self):
        with pytest.raises(VoteValidationError):
            validate_allocations([], self.ideas, 10)


class TestRequiredApprovals:

    @pytest.mark.parametrize("others, expected", [(0, 1), (1, 1), (2, 1), (3, 2), (4, 2), (6, 3)])
    def test_majority_of_others(self, others, expected):
        assert required_approvals(others) == expected
