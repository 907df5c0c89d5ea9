"""Configuration for the tournament engine."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ChantSettings(BaseSettings):
    """Tournament engine settings."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="CHANT_", extra="ignore")

    # Cell sizing (the 3-7 partition rule itself is fixed)
    max_cell_size: int = 7
    ideas_per_cell: int = 5

    # Final showdown
    final_showdown_target: int = 5
    final_showdown_max_ideas: int = 7

    # Voting
    vote_points_per_voter: int = 10
    single_voter_min_points: int = 4
    grace_period_seconds: int = 0

    # Rolling mode
    retirement_loss_threshold: int = 2
    min_challenge_pool: int = 5
    min_champion_entry_tier: int = 2
    max_empty_accumulation_windows: int = 3

    # Supermajority auto-advance (no-timer deliberations only)
    supermajority_min_cells: int = 3
    supermajority_ratio: float = 0.8
    supermajority_grace_minutes: int = 10

    # Scheduler
    timer_interval_seconds: int = 60


@lru_cache
def get_settings() -> ChantSettings:
    """Get cached settings instance."""
    return ChantSettings()
