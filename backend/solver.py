"""
Timetable Solver - best-of-N randomized search

Runs N independent scheduling attempts (greedy by default, CP-SAT optionally),
scores each with the fitness evaluator and returns the best one together with
per-attempt summaries. `find_best_schedule` is the single entry point and
never raises: every failure mode is reported in the returned result.
"""

import logging
import math
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from assigner import AttemptState, GreedyAssigner, SchedulerResult
from cpsat_assigner import CpSatAssigner
from errors import SchedulerConfigError
from fitness import eligible_teacher_ids, evaluate
from settings import Settings
from timetable import SchedulerInput, UnassignedLesson, is_valid_slot, serialize_schedule

logger = logging.getLogger(__name__)

ENGINES = {
    'greedy': GreedyAssigner,
    'cpsat': CpSatAssigner,
}


@dataclass
class AttemptSummary:
    attempt_index: int
    seed: int
    status: str
    unassigned_hours: int
    fitness_score: float
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'attemptIndex': self.attempt_index,
            'seed': self.seed,
            'status': self.status,
            'unassignedHours': self.unassigned_hours,
            'fitnessScore': _finite_or_none(self.fitness_score),
            'error': self.error,
        }


@dataclass
class BestSchedulerResult:
    success: bool
    best_schedule: dict = field(default_factory=dict)
    unassigned_lessons: list = field(default_factory=list)
    attempts_made: int = 0
    successful_attempts: int = 0
    min_fitness_score: float = math.inf
    best_variance: float = math.inf
    best_total_gaps: float = math.inf
    best_short_day_penalty: float = math.inf
    logs: list = field(default_factory=list)
    error: Optional[str] = None
    best_attempt_index: Optional[int] = None
    seed: Optional[int] = None
    attempts: list = field(default_factory=list)  # [AttemptSummary, ...]

    @property
    def total_unassigned_hours(self) -> int:
        return sum(u.remaining_hours for u in self.unassigned_lessons)

    def to_dict(self) -> dict:
        """Serializable form for persistence/UI collaborators (camelCase, schedule as key/entry pairs)."""
        return {
            'success': self.success,
            'bestSchedule': serialize_schedule(self.best_schedule),
            'unassignedLessons': [u.to_dict() for u in self.unassigned_lessons],
            'totalUnassignedHours': self.total_unassigned_hours,
            'attemptsMade': self.attempts_made,
            'successfulAttempts': self.successful_attempts,
            'minFitnessScore': _finite_or_none(self.min_fitness_score),
            'bestVariance': _finite_or_none(self.best_variance),
            'bestTotalGaps': _finite_or_none(self.best_total_gaps),
            'bestShortDayPenalty': _finite_or_none(self.best_short_day_penalty),
            'bestAttemptIndex': self.best_attempt_index,
            'seed': self.seed,
            'attempts': [a.to_dict() for a in self.attempts],
            'logs': list(self.logs),
            'error': self.error,
        }


def _finite_or_none(value):
    # JSON has no Infinity
    return value if value is not None and math.isfinite(value) else None


def validate_input(scheduler_input: SchedulerInput, attempts: int = 1) -> list[str]:
    """Return a list of configuration problems; empty means the input is usable."""
    problems = []

    if attempts is None or attempts < 1:
        problems.append(f"attempts must be >= 1 (got {attempts})")

    if not scheduler_input.time_slots:
        problems.append('Time grid is empty')
    bad_slots = [s.key for s in scheduler_input.time_slots if not is_valid_slot(s)]
    if bad_slots:
        problems.append(f"Time slots outside the 5x10 grid: {', '.join(bad_slots)}")

    for kind, items in (('teacher', scheduler_input.teachers),
                        ('lesson', scheduler_input.lessons),
                        ('location', scheduler_input.locations)):
        seen = set()
        for item in items:
            if item.id in seen:
                problems.append(f"Duplicate {kind} id '{item.id}'")
            seen.add(item.id)

    teachers = scheduler_input.teachers_by_id
    lessons = scheduler_input.lessons_by_id

    for teacher in scheduler_input.teachers:
        for lesson_id in teacher.assignable_lesson_ids:
            if lesson_id not in lessons:
                problems.append(f"Teacher '{teacher.name}' lists unknown assignable lesson '{lesson_id}'")
        bad = [s.key for s in teacher.unavailable_slots if not is_valid_slot(s)]
        if bad:
            problems.append(f"Teacher '{teacher.name}' has unavailable slots outside the grid: {', '.join(bad)}")

    for lesson in scheduler_input.lessons:
        if lesson.weekly_hours < 0:
            problems.append(f"Lesson '{lesson.name}' has negative weekly hours ({lesson.weekly_hours})")
        elif lesson.needs_scheduling and lesson.weekly_hours == 0:
            problems.append(f"Lesson '{lesson.name}' needs scheduling but has 0 weekly hours")
        for t_id in lesson.possible_teacher_ids:
            if t_id not in teachers:
                problems.append(f"Lesson '{lesson.name}' references unknown teacher '{t_id}'")

    for t_id, lesson_ids in scheduler_input.required_assignments.items():
        if t_id not in teachers:
            problems.append(f"Required assignments reference unknown teacher '{t_id}'")
        for lesson_id in lesson_ids:
            if lesson_id not in lessons:
                problems.append(f"Required assignments reference unknown lesson '{lesson_id}'")

    return problems


def run_attempt(scheduler_input: SchedulerInput, settings: Settings, attempt_index: int, seed: int,
                teacher_ids: list[str] = None) -> SchedulerResult:
    """Run and score one attempt. Owns its RNG, tracker and log buffer."""
    engine = ENGINES[settings.engine]
    assigner = engine(scheduler_input, settings, rng=random.Random(seed), attempt_index=attempt_index, seed=seed)
    result = assigner.run()
    if teacher_ids is None:
        teacher_ids = eligible_teacher_ids(scheduler_input)
    result.fitness = evaluate(result.schedule, result.teacher_load, teacher_ids, settings)
    return result


def selection_key(result: SchedulerResult, settings: Settings) -> tuple:
    """Lower is better: SUCCESS first, then (optionally) free days, fewer unassigned hours, fitness, index."""
    free_day_violation = settings.require_free_day and not result.fitness.has_free_day_for_all
    return (
        0 if result.success else 1,
        1 if free_day_violation else 0,
        result.unassigned_hours,
        result.fitness.fitness_score,
        result.attempt_index,
    )


def is_successful(result: SchedulerResult, settings: Settings) -> bool:
    if not result.success:
        return False
    return not settings.require_free_day or result.fitness.has_free_day_for_all


def find_best_schedule(
    scheduler_input: SchedulerInput,
    attempts: int = 5,
    settings: Settings = None,
    *,
    seed: int = None,  # Attempt i uses seed + i; random when omitted
    cancel_event: threading.Event = None,  # Checked before each attempt starts
    on_progress=None,  # Optional callback(completed, total, message)
) -> BestSchedulerResult:
    """
    Main entry point for timetable generation.

    Args:
        scheduler_input: Fully prepared teachers, lessons, locations, grid and required assignments
        attempts: Number of independent attempts (>= 1)
        settings: Fitness weights and search policies (defaults to Settings())
        seed: Base seed; reruns with the same seed reproduce the same attempts
        cancel_event: Coarse cancellation signal
        on_progress: Optional progress callback

    Returns:
        BestSchedulerResult. Never raises.
    """
    start_time = time.time()
    settings = settings or Settings()
    if seed is None:
        seed = random.randrange(1 << 30)

    problems = validate_input(scheduler_input, attempts)
    if problems:
        error = SchedulerConfigError(problems)
        logger.error(f"Invalid scheduler input: {error}")
        return BestSchedulerResult(
            success=False,
            logs=[f"[Config] {p}" for p in problems],
            error=f"Invalid scheduler input: {error}",
            seed=seed,
        )

    logger.info(f"[Scheduler] Starting search: attempts={attempts}, seed={seed}, engine={settings.engine}, "
                f"weights=({settings.variance_weight}, {settings.gap_weight}, {settings.short_day_weight})")

    deadline = start_time + settings.max_time_seconds if settings.max_time_seconds > 0 else None
    teacher_ids = eligible_teacher_ids(scheduler_input)
    completed = []
    progress_lock = threading.Lock()

    def guarded(attempt_index: int) -> Optional[SchedulerResult]:
        if cancel_event is not None and cancel_event.is_set():
            return None
        if deadline is not None and time.time() > deadline:
            return None
        attempt_seed = seed + attempt_index
        try:
            result = run_attempt(scheduler_input, settings, attempt_index, attempt_seed, teacher_ids)
        except Exception as e:
            logger.error(f"[Scheduler] Attempt {attempt_index + 1} raised: {e}", exc_info=True)
            result = SchedulerResult(
                attempt_index=attempt_index,
                seed=attempt_seed,
                status=AttemptState.FAILED,
                logs=[f"[FATAL ERROR] {type(e).__name__}: {e}"],
                error=f"{type(e).__name__}: {e}",
            )
        if on_progress:
            with progress_lock:
                completed.append(attempt_index)
                try:
                    on_progress(len(completed), attempts, f"Attempt {attempt_index + 1}/{attempts}: {result.status.value}")
                except Exception as e:
                    logger.warning(f"[Scheduler] Progress callback raised: {e}", exc_info=True)
        return result

    with ThreadPoolExecutor(max_workers=min(settings.max_workers, attempts)) as executor:
        results = [r for r in executor.map(guarded, range(attempts)) if r is not None]

    summaries = []
    runner_logs = []
    for r in results:
        score = r.fitness.fitness_score if r.fitness is not None else math.inf
        summaries.append(AttemptSummary(r.attempt_index, r.seed, r.status.value, r.unassigned_hours, score, r.error))
        if r.status == AttemptState.FAILED:
            runner_logs.append(f"[Scheduler] Attempt {r.attempt_index + 1} failed: {r.error}")
        else:
            runner_logs.append(
                f"[Scheduler] Attempt {r.attempt_index + 1} {r.status.value}: unassigned {r.unassigned_hours}h, "
                f"V: {r.fitness.variance:.2f}, G: {r.fitness.total_gaps}, "
                f"SD Pen: {r.fitness.short_day_penalty:.2f}, Fit: {score:.4f}"
            )

    elapsed = time.time() - start_time
    scored = [r for r in results if r.status != AttemptState.FAILED]
    unplaced = [
        UnassignedLesson(l.id, l.name, l.weekly_hours) for l in scheduler_input.schedulable_lessons
    ]

    if not scored:
        if results:
            error = f"All {len(results)} attempt(s) failed; first error: {results[0].error}"
        else:
            error = 'Search cancelled before any attempt ran'
        logger.warning(f"[Scheduler] {error}")
        return BestSchedulerResult(
            success=False,
            unassigned_lessons=unplaced,
            attempts_made=len(results),
            logs=runner_logs + ([line for r in results for line in r.logs]),
            error=error,
            seed=seed,
            attempts=summaries,
        )

    best = min(scored, key=lambda r: selection_key(r, settings))
    successful = sum(1 for r in scored if is_successful(r, settings))
    runner_logs.append(
        f"[Scheduler] Finished {len(results)}/{attempts} attempts in {elapsed:.2f}s. Successful: {successful}. "
        f"Best: attempt {best.attempt_index + 1} ({best.status.value}, Fit: {best.fitness.fitness_score:.4f})"
    )
    logger.info(runner_logs[-1])

    return BestSchedulerResult(
        success=True,
        best_schedule=best.schedule,
        unassigned_lessons=best.unassigned_lessons,
        attempts_made=len(results),
        successful_attempts=successful,
        min_fitness_score=best.fitness.fitness_score,
        best_variance=best.fitness.variance,
        best_total_gaps=best.fitness.total_gaps,
        best_short_day_penalty=best.fitness.short_day_penalty,
        logs=runner_logs + best.logs,
        best_attempt_index=best.attempt_index,
        seed=seed,
        attempts=summaries,
    )
