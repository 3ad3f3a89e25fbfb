"""Difficulty tiers — tunable constants for XP, mana recovery, hints and gating.

Tiers (xp multiplier / mana recovery / hints / terms-props-args thresholds):
  beginner    0.5x  / 40 / yes / 3-2-1
  apprentice  0.75x / 30 / yes / 4-3-1
  master      1.0x  / 25 / no  / 5-3-1   ← default for unknown ids
  expert      1.5x  / 20 / no  / 7-5-2   + advanced (syntopical) mode

Lookups never fail: an unknown id silently resolves to the default tier.
"""

import math

from ludic_reader.models import AdvancedModeConfig, DifficultyConfig, Thresholds

DEFAULT_DIFFICULTY = "master"

DIFFICULTY_LEVELS: dict[str, DifficultyConfig] = {
    "beginner": DifficultyConfig(
        id="beginner",
        name="Beginner",
        xp_multiplier=0.5,
        mana_recovery_base=40,
        hints_available=True,
        thresholds=Thresholds(terms=3, propositions=2, arguments=1),
    ),
    "apprentice": DifficultyConfig(
        id="apprentice",
        name="Apprentice",
        xp_multiplier=0.75,
        mana_recovery_base=30,
        hints_available=True,
        thresholds=Thresholds(terms=4, propositions=3, arguments=1),
    ),
    "master": DifficultyConfig(
        id="master",
        name="Master",
        xp_multiplier=1.0,
        mana_recovery_base=25,
        hints_available=False,
        thresholds=Thresholds(terms=5, propositions=3, arguments=1),
    ),
    "expert": DifficultyConfig(
        id="expert",
        name="Expert",
        xp_multiplier=1.5,
        mana_recovery_base=20,
        hints_available=False,
        thresholds=Thresholds(terms=7, propositions=5, arguments=2),
        advanced_mode=AdvancedModeConfig(
            enabled=True,
            min_group_size=2,
            require_prior_phase_complete=True,
        ),
    ),
}

_DISABLED_ADVANCED_MODE = AdvancedModeConfig(enabled=False)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (2.5 -> 3, not 2)."""
    return math.floor(value + 0.5)


def get_config(difficulty_id: str | None) -> DifficultyConfig:
    """Return the tier for an id (case-insensitive), or the default tier."""
    key = (difficulty_id or "").strip().lower()
    return DIFFICULTY_LEVELS.get(key, DIFFICULTY_LEVELS[DEFAULT_DIFFICULTY])


def list_difficulties() -> list[DifficultyConfig]:
    return list(DIFFICULTY_LEVELS.values())


def compute_xp(base_xp: int | float, difficulty_id: str | None) -> int:
    return round_half_up(base_xp * get_config(difficulty_id).xp_multiplier)


def compute_mana_recovery(difficulty_id: str | None) -> int:
    """Fixed per-tier recovery amount; it does not scale with any base value."""
    return get_config(difficulty_id).mana_recovery_base


def thresholds_for(difficulty_id: str | None) -> Thresholds:
    return get_config(difficulty_id).thresholds


def hints_available(difficulty_id: str | None) -> bool:
    return get_config(difficulty_id).hints_available


def advanced_mode_config(difficulty_id: str | None) -> AdvancedModeConfig:
    return get_config(difficulty_id).advanced_mode or _DISABLED_ADVANCED_MODE


def advanced_mode_enabled(difficulty_id: str | None) -> bool:
    return advanced_mode_config(difficulty_id).enabled
