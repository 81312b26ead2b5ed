"""
Schedule quality scoring.

Lower is better. The score combines teacher workload variance, idle gaps
inside teaching days and a penalty for days with too few lessons; weights
come from Settings.
"""

from dataclasses import dataclass

from settings import Settings
from timetable import NUM_DAYS, SchedulerInput


@dataclass
class FitnessReport:
    variance: float
    total_gaps: int
    short_days: int
    short_day_penalty: float
    fitness_score: float
    has_free_day_for_all: bool

    def to_dict(self) -> dict:
        return {
            'variance': self.variance,
            'totalGaps': self.total_gaps,
            'shortDays': self.short_days,
            'shortDayPenalty': self.short_day_penalty,
            'fitnessScore': self.fitness_score,
            'hasFreeDayForAll': self.has_free_day_for_all,
        }


def eligible_teacher_ids(scheduler_input: SchedulerInput) -> list[str]:
    """Teachers with at least one assignable lesson that needs scheduling."""
    schedulable = {l.id for l in scheduler_input.schedulable_lessons}
    return [t.id for t in scheduler_input.teachers if schedulable.intersection(t.assignable_lesson_ids)]


def workload_variance(teacher_load: dict, teacher_ids: list[str]) -> float:
    """Population variance of weekly hours over `teacher_ids`."""
    if not teacher_ids:
        return 0.0
    hours = [teacher_load[t_id].total_hours if t_id in teacher_load else 0 for t_id in teacher_ids]
    mean = sum(hours) / len(hours)
    return sum((h - mean) ** 2 for h in hours) / len(hours)


def teacher_day_periods(schedule: dict) -> dict:
    """teacher id -> day -> sorted occupied periods."""
    periods = {}
    for slot, entry in schedule.items():
        for t_id in entry.teacher_ids:
            periods.setdefault(t_id, {}).setdefault(slot.day, set()).add(slot.period)
    return {
        t_id: {day: sorted(ps) for day, ps in days.items()}
        for t_id, days in periods.items()
    }


def count_gaps(day_periods: dict) -> int:
    """Empty periods strictly between each teacher's first and last lesson of a day."""
    gaps = 0
    for days in day_periods.values():
        for periods in days.values():
            if len(periods) > 1:
                gaps += (periods[-1] - periods[0] + 1) - len(periods)
    return gaps


def short_day_penalty(day_periods: dict, settings: Settings) -> tuple:
    """Return (short day count, penalty) for teacher-days below the minimum."""
    minimum = settings.min_periods_per_day
    count = 0
    penalty = 0.0
    for days in day_periods.values():
        for periods in days.values():
            n = len(periods)
            if 0 < n < minimum:
                count += 1
                if settings.short_day_mode == 'quadratic':
                    penalty += (minimum - n) ** 2
                else:
                    penalty += settings.short_day_unit_penalty
    return count, penalty


def has_free_day_for_all(day_periods: dict) -> bool:
    return all(len(days) < NUM_DAYS for days in day_periods.values())


def evaluate(schedule: dict, teacher_load: dict, teacher_ids: list[str], settings: Settings = None) -> FitnessReport:
    settings = settings or Settings()
    day_periods = teacher_day_periods(schedule)

    variance = workload_variance(teacher_load, teacher_ids)
    gaps = count_gaps(day_periods)
    short_days, penalty = short_day_penalty(day_periods, settings)
    score = (
        settings.variance_weight * variance
        + settings.gap_weight * gaps
        + settings.short_day_weight * penalty
    )
    return FitnessReport(
        variance=variance,
        total_gaps=gaps,
        short_days=short_days,
        short_day_penalty=penalty,
        fitness_score=score,
        has_free_day_for_all=has_free_day_for_all(day_periods),
    )
