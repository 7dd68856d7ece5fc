"""Badge condition descriptors and their evaluation.

A badge's ``condition_value`` is a JSON object tagged by ``type`` plus the
parameters that type needs, e.g. ``{"type": "streak", "days": 7}``. Each
type is one pydantic model with its own predicate; the set of types is
closed (``ConditionType``) and every member must have a model.

Unknown types and malformed parameters never raise out of evaluation:
they parse to None and the badge simply does not fire.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

if TYPE_CHECKING:
    from coarc.gamification.user_stats import UserStats

logger = logging.getLogger(__name__)


class ConditionType(str, enum.Enum):
    TOTAL_SOLVES = "total_solves"
    STREAK = "streak"
    PROBLEMS_SHARED = "problems_shared"
    DUELS_WON = "duels_won"
    BOSSES_DEFEATED = "bosses_defeated"
    BOSS_FIRST_SOLVES = "boss_first_solves"
    RESOURCES_APPROVED = "resources_approved"
    ALL_QUESTS_WEEK = "all_quests_week"
    UNIQUE_TOPICS = "unique_topics"
    DAILY_SOLVES = "daily_solves"
    RANK_CLIMB = "rank_climb"
    SOLVE_HOUR_RANGE = "solve_hour_range"
    STREAK_RESTART_AFTER = "streak_restart_after"


class _Condition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    def is_met(self, stats: UserStats) -> bool:
        raise NotImplementedError


class _CountCondition(_Condition):
    count: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Counter thresholds (stat >= count)
# ---------------------------------------------------------------------------


class TotalSolves(_CountCondition):
    type: Literal["total_solves"] = "total_solves"

    def is_met(self, stats: UserStats) -> bool:
        return stats.total_solves >= self.count


class ProblemsShared(_CountCondition):
    type: Literal["problems_shared"] = "problems_shared"

    def is_met(self, stats: UserStats) -> bool:
        return stats.problems_shared >= self.count


class DuelsWon(_CountCondition):
    type: Literal["duels_won"] = "duels_won"

    def is_met(self, stats: UserStats) -> bool:
        return stats.duels_won >= self.count


class BossesDefeated(_CountCondition):
    type: Literal["bosses_defeated"] = "bosses_defeated"

    def is_met(self, stats: UserStats) -> bool:
        return stats.bosses_defeated >= self.count


class BossFirstSolves(_CountCondition):
    type: Literal["boss_first_solves"] = "boss_first_solves"

    def is_met(self, stats: UserStats) -> bool:
        return stats.boss_first_solves >= self.count


class ResourcesApproved(_CountCondition):
    type: Literal["resources_approved"] = "resources_approved"

    def is_met(self, stats: UserStats) -> bool:
        return stats.resources_approved >= self.count


class AllQuestsWeek(_CountCondition):
    type: Literal["all_quests_week"] = "all_quests_week"

    def is_met(self, stats: UserStats) -> bool:
        return stats.all_quests_weeks >= self.count


class UniqueTopics(_CountCondition):
    type: Literal["unique_topics"] = "unique_topics"

    def is_met(self, stats: UserStats) -> bool:
        return stats.unique_topics >= self.count


class DailySolves(_CountCondition):
    type: Literal["daily_solves"] = "daily_solves"

    def is_met(self, stats: UserStats) -> bool:
        return stats.daily_solves >= self.count


# ---------------------------------------------------------------------------
# Streak / ranking conditions
# ---------------------------------------------------------------------------


class Streak(_Condition):
    type: Literal["streak"] = "streak"
    days: int = Field(ge=0)

    def is_met(self, stats: UserStats) -> bool:
        return stats.current_streak >= self.days


class RankClimb(_Condition):
    type: Literal["rank_climb"] = "rank_climb"
    positions: int = Field(ge=0)

    def is_met(self, stats: UserStats) -> bool:
        return stats.rank_climb >= self.positions


class StreakRestartAfter(_Condition):
    """Came back (streak >= 1) after losing a streak of at least ``min_lost`` days."""

    type: Literal["streak_restart_after"] = "streak_restart_after"
    min_lost: int = Field(ge=1)

    def is_met(self, stats: UserStats) -> bool:
        return stats.last_lost_streak >= self.min_lost and stats.current_streak >= 1


class SolveHourRange(_Condition):
    """At least one solve in local hours [start, end). ``start > end`` wraps past midnight."""

    type: Literal["solve_hour_range"] = "solve_hour_range"
    start: int = Field(ge=0, le=23)
    end: int = Field(ge=0, le=24)

    def hours(self) -> list[int]:
        if self.start <= self.end:
            return list(range(self.start, self.end))
        return list(range(self.start, 24)) + list(range(0, self.end))

    def is_met(self, stats: UserStats) -> bool:
        return any(stats.solve_hours[h] > 0 for h in self.hours())


BadgeCondition = Annotated[
    Union[
        TotalSolves,
        Streak,
        ProblemsShared,
        DuelsWon,
        BossesDefeated,
        BossFirstSolves,
        ResourcesApproved,
        AllQuestsWeek,
        UniqueTopics,
        DailySolves,
        RankClimb,
        SolveHourRange,
        StreakRestartAfter,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[Any] = TypeAdapter(BadgeCondition)

CONDITION_MODELS: dict[ConditionType, type[_Condition]] = {
    ConditionType.TOTAL_SOLVES: TotalSolves,
    ConditionType.STREAK: Streak,
    ConditionType.PROBLEMS_SHARED: ProblemsShared,
    ConditionType.DUELS_WON: DuelsWon,
    ConditionType.BOSSES_DEFEATED: BossesDefeated,
    ConditionType.BOSS_FIRST_SOLVES: BossFirstSolves,
    ConditionType.RESOURCES_APPROVED: ResourcesApproved,
    ConditionType.ALL_QUESTS_WEEK: AllQuestsWeek,
    ConditionType.UNIQUE_TOPICS: UniqueTopics,
    ConditionType.DAILY_SOLVES: DailySolves,
    ConditionType.RANK_CLIMB: RankClimb,
    ConditionType.SOLVE_HOUR_RANGE: SolveHourRange,
    ConditionType.STREAK_RESTART_AFTER: StreakRestartAfter,
}

_missing = set(ConditionType) - set(CONDITION_MODELS)
if _missing:
    raise RuntimeError(f"Badge condition types without a model: {sorted(t.value for t in _missing)}")

_KNOWN_TYPES = frozenset(t.value for t in ConditionType)


def parse_condition(raw: Any) -> _Condition | None:
    """Parse a stored descriptor. Returns None for unknown or malformed input."""
    if not isinstance(raw, dict):
        return None
    type_ = raw.get("type")
    if not isinstance(type_, str) or type_ not in _KNOWN_TYPES:
        logger.debug("Unsupported badge condition type %r", type_)
        return None
    try:
        return _adapter.validate_python(raw)
    except ValidationError as exc:
        logger.warning("Malformed %s badge condition %s: %s", type_, raw, exc.errors())
        return None


def evaluate_condition(raw: Any, stats: UserStats) -> bool:
    """True if the descriptor is recognised, well-formed and satisfied by ``stats``."""
    condition = parse_condition(raw)
    if condition is None:
        return False
    return condition.is_met(stats)
