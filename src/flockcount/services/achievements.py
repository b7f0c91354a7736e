"""Achievement engine.

Evaluates a fixed rule set against aggregate statistics of a user's counts
and grants unearned achievements idempotently.

Statistics and evaluation are pure functions; `AchievementService`
wires them to the database through a UnitOfWork.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

import structlog

from flockcount.core.timezone import as_aware_utc
from flockcount.models.achievement import Achievement, AchievementType
from flockcount.models.count import Count
from flockcount.uow import UnitOfWork

logger = structlog.get_logger()


INITIAL_ACHIEVEMENTS: list[dict] = [
    {
        "name": "Novice Counter",
        "description": "Count your first flock of chickens",
        "icon": "Target",
        "requirement": 1,
        "type": AchievementType.TOTAL_COUNTS.value,
    },
    {
        "name": "Experienced Counter",
        "description": "Count 10 flocks of chickens",
        "icon": "Award",
        "requirement": 10,
        "type": AchievementType.TOTAL_COUNTS.value,
    },
    {
        "name": "Master Counter",
        "description": "Count 50 flocks of chickens",
        "icon": "Crown",
        "requirement": 50,
        "type": AchievementType.TOTAL_COUNTS.value,
    },
    {
        "name": "Elite Counter",
        "description": "Count 100 flocks of chickens",
        "icon": "Crown",
        "requirement": 100,
        "type": AchievementType.TOTAL_COUNTS.value,
    },
    {
        "name": "Breed Expert",
        "description": "Identify 5 different chicken breeds",
        "icon": "Star",
        "requirement": 5,
        "type": AchievementType.UNIQUE_BREEDS.value,
    },
    {
        "name": "Breed Master",
        "description": "Identify 10 different chicken breeds",
        "icon": "Star",
        "requirement": 10,
        "type": AchievementType.UNIQUE_BREEDS.value,
    },
    {
        "name": "Flock Master",
        "description": "Count a flock of more than 100 chickens",
        "icon": "Bird",
        "requirement": 100,
        "type": AchievementType.SINGLE_COUNT.value,
    },
    {
        "name": "Mega Flock",
        "description": "Count a flock of more than 500 chickens",
        "icon": "Bird",
        "requirement": 500,
        "type": AchievementType.SINGLE_COUNT.value,
    },
    {
        "name": "Daily Counter",
        "description": "Count chickens on 5 different days",
        "icon": "Target",
        "requirement": 5,
        "type": AchievementType.UNIQUE_DAYS.value,
    },
    {
        "name": "Weekly Counter",
        "description": "Count chickens on 7 consecutive days",
        "icon": "Award",
        "requirement": 7,
        "type": AchievementType.CONSECUTIVE_DAYS.value,
    },
]


@dataclass(frozen=True)
class AchievementStats:
    """Aggregate statistics over one user's count records."""

    total_counts: int = 0
    unique_breeds: int = 0
    max_single_count: int = 0
    unique_days: int = 0
    consecutive_days: int = 0

    def value_for(self, achievement_type: str) -> int | None:
        """Statistic an achievement of the given type is compared against.

        Returns None for unknown types so they are never granted.
        """
        mapping = {
            AchievementType.TOTAL_COUNTS.value: self.total_counts,
            AchievementType.UNIQUE_BREEDS.value: self.unique_breeds,
            AchievementType.SINGLE_COUNT.value: self.max_single_count,
            AchievementType.UNIQUE_DAYS.value: self.unique_days,
            AchievementType.CONSECUTIVE_DAYS.value: self.consecutive_days,
        }
        return mapping.get(achievement_type)


def longest_consecutive_run(days: Iterable[date]) -> int:
    """Length of the longest run of consecutive calendar days."""
    ordered = sorted(set(days))
    longest = 0
    current = 0
    previous: date | None = None
    for day in ordered:
        if previous is not None and day - previous == timedelta(days=1):
            current += 1
        else:
            current = 1
        longest = max(longest, current)
        previous = day
    return longest


def compute_statistics(counts: Iterable[Count]) -> AchievementStats:
    """Aggregate statistics over one user's count records.

    Breeds are compared exactly and nulls ignored. Days are UTC calendar
    dates of the record timestamps; records without a timestamp count
    towards totals only.
    """
    total = 0
    max_single = 0
    breeds: set[str] = set()
    days: set[date] = set()
    for record in counts:
        total += 1
        max_single = max(max_single, record.count)
        if record.breed is not None:
            breeds.add(record.breed)
        if record.timestamp is not None:
            days.add(as_aware_utc(record.timestamp).date())

    return AchievementStats(
        total_counts=total,
        unique_breeds=len(breeds),
        max_single_count=max_single,
        unique_days=len(days),
        consecutive_days=longest_consecutive_run(days),
    )


def evaluate_achievements(
    stats: AchievementStats,
    achievements: Iterable[Achievement],
    earned_ids: set[int],
) -> list[Achievement]:
    """Return achievements newly earned for `stats`.

    An achievement is earned when its statistic meets or exceeds its
    requirement. Already earned ids are skipped, so evaluating twice against
    the same snapshot grants nothing the second time.
    """
    newly_earned = []
    for achievement in achievements:
        if achievement.id in earned_ids:
            continue
        value = stats.value_for(achievement.type)
        if value is not None and value >= achievement.requirement:
            newly_earned.append(achievement)
    return newly_earned


class AchievementService:
    """Database-facing wrapper around the achievement rules."""

    async def initialize_achievements(self, uow: UnitOfWork) -> int:
        """Seed the initial achievement set if the table is empty.

        Returns:
            Number of definitions inserted (0 when already seeded)
        """
        if await uow.achievements.count_definitions() > 0:
            logger.debug("achievements.already_seeded")
            return 0

        definitions = [Achievement(**data) for data in INITIAL_ACHIEVEMENTS]
        await uow.achievements.add_definitions(definitions)
        logger.info("achievements.seeded", count=len(definitions))
        return len(definitions)

    async def get_statistics(self, uow: UnitOfWork, user_id: int) -> AchievementStats:
        """Compute a user's statistics from their stored counts."""
        return compute_statistics(await uow.counts.list_for_user(user_id))

    async def check_achievements(self, uow: UnitOfWork, user_id: int) -> list[Achievement]:
        """Grant every achievement the user newly qualifies for.

        Runs inside the caller's unit of work, so grants commit together with
        the count insert that triggered them. Grants are insert-or-ignore, so
        concurrent checks for the same user never double-grant.

        Returns:
            Achievements granted by this call (empty if none)
        """
        stats = await self.get_statistics(uow, user_id)
        definitions = await uow.achievements.list_definitions()
        earned_ids = await uow.achievements.get_earned_ids(user_id)

        granted = []
        for achievement in evaluate_achievements(stats, definitions, earned_ids):
            if not await uow.achievements.grant(user_id, achievement.id):  # type: ignore[arg-type]
                # A concurrent request granted it first
                continue
            granted.append(achievement)
            logger.info(
                "achievement.earned",
                user_id=user_id,
                achievement_id=achievement.id,
                achievement=achievement.name,
            )

        logger.debug(
            "achievements.checked",
            user_id=user_id,
            total_counts=stats.total_counts,
            unique_breeds=stats.unique_breeds,
            max_single_count=stats.max_single_count,
            unique_days=stats.unique_days,
            consecutive_days=stats.consecutive_days,
            granted=len(granted),
        )
        return granted

    async def get_user_achievements(
        self, uow: UnitOfWork, user_id: int
    ) -> tuple[list[tuple[Achievement, datetime | None]], list[Achievement]]:
        """Earned achievements (with earned_at) and the remaining available ones."""
        earned = await uow.achievements.list_earned(user_id)
        earned_ids = {achievement.id for achievement, _ in earned}
        definitions = await uow.achievements.list_definitions()
        available = [a for a in definitions if a.id not in earned_ids]
        return [(achievement, grant.earned_at) for achievement, grant in earned], available


achievement_service = AchievementService()
