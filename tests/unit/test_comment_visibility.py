"""Unit tests for deterministic comment visibility."""

from uuid import uuid4

from chant.models import Comment
from chant.services.comment_service import should_see_comment, spread_for, stable_hash


class TestStableHash:

    def test_known_values(self):
        assert stable_hash("") == 0
        assert stable_hash("a") == 97
        assert stable_hash("ab") == 97 * 31 + 98

    def test_wraps_to_32_bits_and_is_non_negative(self):
        value = stable_hash("x" * 500)
        assert 0 <= value <= 2**31

    def test_deterministic(self):
        assert stable_hash("comment-cell") == stable_hash("comment-cell")


class TestShouldSeeComment:

    def test_zero_spread_hidden(self):
        assert not should_see_comment(uuid4(), uuid4(), 0, 4)

    def test_full_spread_visible(self):
        assert should_see_comment(uuid4(), uuid4(), 4, 4)
        assert should_see_comment(uuid4(), uuid4(), 9, 4)

    def test_same_inputs_same_answer(self):
        comment_id, cell_id = uuid4(), uuid4()
        first = should_see_comment(comment_id, cell_id, 2, 5)
        assert all(should_see_comment(comment_id, cell_id, 2, 5) == first for _ in range(10))

    def test_growing_spread_never_hides(self):
        """Once visible at spread s, a cell stays visible at every larger spread."""
        comment_id = uuid4()
        for cell_id in (uuid4() for _ in range(50)):
            seen = False
            for spread in range(0, 8):
                visible = should_see_comment(comment_id, cell_id, spread, 7)
                assert visible or not seen
                seen = seen or visible

    def test_matches_hash_bucket(self):
        comment_id, cell_id = "c1", "cell9"
        bucket = stable_hash(f"{comment_id}{cell_id}") % 6
        assert should_see_comment(comment_id, cell_id, bucket + 1, 6)
        assert not should_see_comment(comment_id, cell_id, bucket, 6)


class TestSpreadFor:

    def test_unlinked_comment_never_spreads(self):
        assert spread_for(Comment(idea_id=None, tier_upvotes=10)) == 0

    def test_half_of_tier_upvotes(self):
        assert spread_for(Comment(idea_id=uuid4(), tier_upvotes=5)) == 2
