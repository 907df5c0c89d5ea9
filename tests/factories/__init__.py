"""Test data factories for the tournament engine.

Factories write straight to the database and commit, so rows are visible to
every session the code under test opens.
"""

from tests.factories.deliberation_factory import (
    Seed,
    cast_ballot,
    make_cell,
    make_comment,
    make_user,
    seed_deliberation,
)

__all__ = [
    "Seed",
    "cast_ballot",
    "make_cell",
    "make_comment",
    "make_user",
    "seed_deliberation",
]
