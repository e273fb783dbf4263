"""Streak tiers and the pure derivation from elapsed days to tier."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .user_state import LocalUserState

PRIMARY_COLOR = "#1E6CFF"


class LevelKey(str, Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    DIAMOND = "DIAMOND"
    EMERALD = "EMERALD"
    GUARDIAN = "GUARDIAN"
    CELESTIAL = "CELESTIAL"


class LevelDefinition(BaseModel):
    key: LevelKey
    name: str
    color: str
    days_required: int = Field(ge=0)


# Sorted ascending by days_required.
LEVEL_DEFINITIONS: tuple[LevelDefinition, ...] = (
    LevelDefinition(key=LevelKey.BRONZE, name="Bronze", color="#8B5A2B", days_required=0),
    LevelDefinition(key=LevelKey.SILVER, name="Prata", color="#C0C0C0", days_required=7),
    LevelDefinition(key=LevelKey.GOLD, name="Ouro", color="#C9A24D", days_required=30),
    LevelDefinition(key=LevelKey.DIAMOND, name="Diamante", color="#7FD5FF", days_required=90),
    LevelDefinition(key=LevelKey.EMERALD, name="Esmeralda", color="#138A52", days_required=180),
    LevelDefinition(key=LevelKey.GUARDIAN, name="Guardião", color="#3B82F6", days_required=365),
    LevelDefinition(key=LevelKey.CELESTIAL, name="Áurea Celestial", color="#F9E7A1", days_required=730),
)

LOWEST_LEVEL = LEVEL_DEFINITIONS[0].key


def resolve_level(
    streak_days: int,
    levels: Sequence[LevelDefinition] = LEVEL_DEFINITIONS,
) -> LevelDefinition:
    """Return the tier with the largest threshold not above ``streak_days``.

    Falls back to the lowest tier when nothing qualifies. ``levels`` must be
    sorted ascending by ``days_required``.
    """
    if streak_days < 0:
        raise ValueError("streak_days cannot be negative.")
    if not levels:
        raise ValueError("At least one level definition is required.")
    for level in reversed(levels):
        if streak_days >= level.days_required:
            return level
    return levels[0]


def apply_level(
    state: "LocalUserState",
    levels: Sequence[LevelDefinition] = LEVEL_DEFINITIONS,
) -> "LocalUserState":
    """Bring ``current_level`` in line with ``streak_days``.

    The input object is returned untouched when the tier already matches, so
    callers can skip persisting with an identity check.
    """
    derived = resolve_level(state.streak_days, levels).key
    if derived == state.current_level:
        return state
    return state.model_copy(update={"current_level": derived})


def get_level(key: LevelKey, levels: Sequence[LevelDefinition] = LEVEL_DEFINITIONS) -> Optional[LevelDefinition]:
    for level in levels:
        if level.key == key:
            return level
    return None


def level_color(key: LevelKey) -> str:
    level = get_level(key)
    return level.color if level else PRIMARY_COLOR


def next_level(key: LevelKey, levels: Sequence[LevelDefinition] = LEVEL_DEFINITIONS) -> Optional[LevelDefinition]:
    for index, level in enumerate(levels):
        if level.key == key:
            return levels[index + 1] if index + 1 < len(levels) else None
    return None


def level_progress(
    streak_days: int,
    key: LevelKey,
    levels: Sequence[LevelDefinition] = LEVEL_DEFINITIONS,
) -> float:
    """Percentage of the way from the current tier to the next one."""
    current = get_level(key, levels)
    upcoming = next_level(key, levels)
    if current is None or upcoming is None:
        return 100.0
    span = upcoming.days_required - current.days_required
    progressed = streak_days - current.days_required
    return min(100.0, max(0.0, progressed / span * 100))


__all__ = [
    "LEVEL_DEFINITIONS",
    "LOWEST_LEVEL",
    "LevelDefinition",
    "LevelKey",
    "apply_level",
    "get_level",
    "level_color",
    "level_progress",
    "next_level",
    "resolve_level",
]
