"""
Socius Sync — Derived Figures
===============================

What:  The numbers the calories and workouts screens show next to their
       lists: today's total, daily averages, per-day totals, BMR and TDEE.
How:   Pure functions over record snapshots (anything with `date` and
       `calories`) and the PhysicalStats document.
Who:   SociusClient.calorie_summary() / workout_summary() and the tests.

Rounding:
    Halves round up (2.5 → 3), as the screens always displayed them.
"""

import math
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Protocol

from socius_sync.schemas.records import ActivityLevel, PhysicalStats


class _Dated(Protocol):
    date: str
    calories: int


# Mifflin-St Jeor activity multipliers
ACTIVITY_MULTIPLIERS: Dict[str, float] = {
    ActivityLevel.SEDENTARY.value: 1.2,
    ActivityLevel.LIGHT.value: 1.375,
    ActivityLevel.MODERATE.value: 1.55,
    ActivityLevel.ACTIVE.value: 1.725,
    ActivityLevel.VERY_ACTIVE.value: 1.9,
}
DEFAULT_ACTIVITY_LEVEL = ActivityLevel.MODERATE.value


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def total_for_day(records: Iterable[_Dated], day: str) -> int:
    return sum(r.calories for r in records if r.date == day)


def daily_totals(records: Iterable[_Dated]) -> Dict[str, int]:
    """Calories per calendar day, newest day first."""
    totals: Dict[str, int] = {}
    for record in records:
        totals[record.date] = totals.get(record.date, 0) + record.calories
    return OrderedDict(sorted(totals.items(), reverse=True))


def daily_average(records: Iterable[_Dated], include_day: Optional[str] = None) -> int:
    """
    Total calories divided by the number of distinct logged days.

    `include_day` is counted as a day even when nothing was logged on it;
    the calories screen passes today so an empty today pulls the average down.
    """
    records = list(records)
    days = {r.date for r in records}
    if include_day is not None:
        days.add(include_day)
    if not days:
        return 0
    return round_half_up(sum(r.calories for r in records) / len(days))


def bmr(stats: Optional[PhysicalStats]) -> int:
    """Basal metabolic rate (Mifflin-St Jeor), kcal/day; 0 without stats."""
    if stats is None:
        return 0
    offset = 5 if stats.gender == "male" else -161
    return round_half_up(10 * stats.weight + 6.25 * stats.height - 5 * stats.age + offset)


def tdee(stats: Optional[PhysicalStats]) -> int:
    """Total daily energy expenditure: BMR times the activity multiplier."""
    base = bmr(stats)
    if not base:
        return 0
    level = getattr(stats, "activity_level", DEFAULT_ACTIVITY_LEVEL)
    multiplier = ACTIVITY_MULTIPLIERS.get(level, ACTIVITY_MULTIPLIERS[DEFAULT_ACTIVITY_LEVEL])
    return round_half_up(base * multiplier)


@dataclass(frozen=True)
class CalorieSummary:
    today_total: int
    daily_average: int
    by_day: Dict[str, int]


@dataclass(frozen=True)
class WorkoutSummary:
    today_active: int
    daily_average: int
    bmr: int
    tdee: int
    total_today: int
    by_day: Dict[str, int]


def summarize_calories(records: Iterable[_Dated], today: str) -> CalorieSummary:
    records = list(records)
    return CalorieSummary(
        today_total=total_for_day(records, today),
        daily_average=daily_average(records, include_day=today),
        by_day=daily_totals(records),
    )


def summarize_workouts(
    records: Iterable[_Dated],
    stats: Optional[PhysicalStats],
    today: str,
) -> WorkoutSummary:
    """Workout figures; the average only counts days with logged activities."""
    records = list(records)
    active = total_for_day(records, today)
    base = bmr(stats)
    return WorkoutSummary(
        today_active=active,
        daily_average=daily_average(records),
        bmr=base,
        tdee=tdee(stats),
        total_today=base + active,
        by_day=daily_totals(records),
    )
