"""
Greedy single-attempt scheduler.

One GreedyAssigner runs one attempt: it explodes lessons into units, orders
them most-constrained first, places each unit on the first candidate the
generator offers, retries deferred units once, and reports what could not be
placed. Every decision is appended to the attempt log so operators can see
why an input is infeasible.
"""

import math
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from candidates import Candidate, CandidateGenerator, Unit
from conflicts import ConflictTracker
from settings import Settings
from timetable import ScheduledEntry, SchedulerInput, UnassignedLesson, serialize_schedule


class AttemptState(str, Enum):
    PENDING = 'PENDING'
    IN_PROGRESS = 'IN_PROGRESS'
    SUCCESS = 'SUCCESS'
    PARTIAL = 'PARTIAL'
    FAILED = 'FAILED'  # Attempt raised; set by the runner


@dataclass
class SchedulerResult:
    attempt_index: int
    seed: Optional[int]
    status: AttemptState
    schedule: dict = field(default_factory=dict)
    unassigned_lessons: list = field(default_factory=list)
    teacher_load: dict = field(default_factory=dict)
    logs: list = field(default_factory=list)
    required_assignments_satisfied: bool = True
    unmet_requirements: list = field(default_factory=list)  # [(teacher_id, lesson_id), ...]
    fitness: Optional[object] = None  # FitnessReport once scored
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == AttemptState.SUCCESS

    @property
    def unassigned_hours(self) -> int:
        return sum(u.remaining_hours for u in self.unassigned_lessons)

    def to_dict(self) -> dict:
        return {
            'attemptIndex': self.attempt_index,
            'seed': self.seed,
            'status': self.status.value,
            'success': self.success,
            'schedule': serialize_schedule(self.schedule),
            'unassignedLessons': [u.to_dict() for u in self.unassigned_lessons],
            'totalUnassignedHours': self.unassigned_hours,
            'teacherLoad': {t_id: load.to_dict() for t_id, load in self.teacher_load.items()},
            'requiredAssignmentsSatisfied': self.required_assignments_satisfied,
            'fitness': self.fitness.to_dict() if self.fitness is not None else None,
            'error': self.error,
            'logs': list(self.logs),
        }


def build_units(lessons, split_policy: str = 'hourly') -> list[Unit]:
    """Explode schedulable lessons into placement units.

    hourly: splittable lessons become one-hour units, others one block.
    blocks: splittable lessons over 3 hours become two halves (on different days
    when over 5 hours), shorter splittable lessons one block that may be broken
    into hours on the retry pass, non-splittable lessons one block.
    """
    units = []
    for lesson in lessons:
        if not lesson.needs_scheduling or lesson.weekly_hours <= 0:
            continue
        hours = lesson.weekly_hours
        if not lesson.can_split:
            units.append(Unit(lesson, hours))
        elif split_policy == 'blocks':
            if hours > 3:
                first, second = math.ceil(hours / 2), hours // 2
                avoid = hours > 5
                units.append(Unit(lesson, first, part=1, parts=2, avoid_same_day=avoid))
                units.append(Unit(lesson, second, part=2, parts=2, avoid_same_day=avoid))
            else:
                units.append(Unit(lesson, hours))
        else:
            units.extend(Unit(lesson, 1, part=i + 1, parts=hours) for i in range(hours))
    return units


class GreedyAssigner:
    def __init__(self, scheduler_input: SchedulerInput, settings: Settings = None,
                 rng: random.Random = None, attempt_index: int = 0, seed: Optional[int] = None):
        self.input = scheduler_input
        self.settings = settings or Settings()
        self.seed = seed
        self.rng = rng or random.Random(seed)
        self.attempt_index = attempt_index
        self.state = AttemptState.PENDING

        self.logs: list[str] = []
        self.schedule: dict = {}
        self.tracker = ConflictTracker.for_input(scheduler_input, self.settings.shared_cohort_grades)
        self.generator = CandidateGenerator(
            scheduler_input, self.rng, self.logs, self.settings.shared_cohort_grades
        )

        self.assigned_hours = {l.id: 0 for l in scheduler_input.schedulable_lessons}
        self.lesson_teachers: dict[str, tuple] = {}  # lesson id -> teacher ids of its first placement
        self.lesson_teacher_union: dict[str, set] = {}
        self.lesson_days: dict[str, set] = {}

    def run(self) -> SchedulerResult:
        start_time = time.time()
        lessons = self.input.schedulable_lessons
        self.logs.append(f"--- Attempt {self.attempt_index + 1} (seed {self.seed}) ---")
        self.logs.append(f"Lessons to schedule: {len(lessons)}, time slots: {len(self.input.time_slots)}")

        units = self.prioritize(build_units(lessons, self.settings.split_policy))
        self.logs.append(f"Units built: {len(units)} ({self.settings.split_policy} split policy)")

        self.state = AttemptState.IN_PROGRESS
        self.search(units)

        result = self.finish()
        self.logs.append(f"--- Attempt {self.attempt_index + 1} finished: {result.status.value}, "
                         f"{result.unassigned_hours}h unassigned, {time.time() - start_time:.2f}s ---")
        return result

    def prioritize(self, units: list[Unit]) -> list[Unit]:
        """Most constrained first; shuffling beforehand randomizes ties."""
        self.rng.shuffle(units)

        def sort_key(u: Unit) -> tuple:
            lesson = u.lesson
            return (
                0 if lesson.requires_multiple_resources else 1,
                len(self.generator.teacher_options(lesson)),
                len(lesson.suitable_lab_type_ids),
                0 if self.generator.required_teachers(lesson) else 1,
                -u.duration,
            )

        units.sort(key=sort_key)
        return units

    def search(self, units: list[Unit]):
        deferred = [u for u in units if not self.place(u)]
        if not deferred:
            return

        self.logs.append(f"[Retry] {len(deferred)} deferred unit(s), reshuffled")
        self.rng.shuffle(deferred)
        for unit in deferred:
            if self.place(unit, retry=True):
                continue
            if self.settings.split_policy == 'blocks' and unit.lesson.can_split and unit.duration > 1:
                self.logs.append(f"[Split] Breaking {unit.label} into 1h units")
                for i in range(unit.duration):
                    hour = Unit(unit.lesson, 1, part=i + 1, parts=unit.duration, avoid_same_day=unit.avoid_same_day)
                    if not self.place(hour, retry=True):
                        self.logs.append(f"[Drop] {hour.label}: {self.generator.last_reason}")
                continue
            self.logs.append(f"[Drop] {unit.label}: {self.generator.last_reason}")

    def place(self, unit: Unit, retry: bool = False) -> bool:
        lesson = unit.lesson
        fixed = None
        if not lesson.requires_multiple_resources:
            fixed = self.lesson_teachers.get(lesson.id)
        avoid_days = self.lesson_days.get(lesson.id, set()) if unit.avoid_same_day else ()

        candidates = self.generator.generate(unit, self.tracker, fixed_teacher_ids=fixed, avoid_days=avoid_days)
        if not candidates:
            if not retry:
                self.logs.append(f"[Defer] {unit.label}: {self.generator.last_reason}")
            return False

        self.commit(unit, candidates[0])
        return True

    def commit(self, unit: Unit, candidate: Candidate):
        lesson = unit.lesson
        teachers = [self.input.teachers_by_id[t_id] for t_id in candidate.teacher_ids]
        locations = [self.input.locations_by_id[loc_id] for loc_id in candidate.location_ids]
        entries = [
            ScheduledEntry(
                lesson_id=lesson.id,
                lesson_name=lesson.name,
                teacher_ids=[t.id for t in teachers],
                teacher_names=[t.name for t in teachers],
                location_ids=[loc.id for loc in locations],
                location_names=[loc.name for loc in locations],
                time_slot=slot,
                dal_id=lesson.dal_id,
                sinif_seviyesi=lesson.sinif_seviyesi,
            )
            for slot in candidate.slots
        ]
        self.tracker.commit_block(entries)
        for entry in entries:
            self.schedule[entry.time_slot] = entry

        self.assigned_hours[lesson.id] += len(entries)
        self.lesson_teachers.setdefault(lesson.id, tuple(candidate.teacher_ids))
        self.lesson_teacher_union.setdefault(lesson.id, set()).update(candidate.teacher_ids)
        self.lesson_days.setdefault(lesson.id, set()).add(candidate.start.day)

        self.logs.append(
            f"[Assign] {unit.label} at {candidate.start.label}"
            f"{'' if len(entries) == 1 else f'+{len(entries) - 1}'}"
            f" T: {', '.join(t.name for t in teachers)} L: {', '.join(loc.name for loc in locations)}"
        )

    def finish(self) -> SchedulerResult:
        unassigned = []
        for lesson in self.input.schedulable_lessons:
            remaining = lesson.weekly_hours - self.assigned_hours[lesson.id]
            if remaining > 0:
                unassigned.append(UnassignedLesson(lesson.id, lesson.name, remaining))
                self.logs.append(f"[Unassigned] {lesson.name}: {remaining}h missing")

        unmet = []
        for t_id in sorted(self.input.required_assignments):
            for lesson_id in sorted(self.input.required_assignments[t_id]):
                lesson = self.input.lessons_by_id[lesson_id]
                if not lesson.needs_scheduling:
                    continue
                fully_placed = self.assigned_hours[lesson_id] >= lesson.weekly_hours
                if not fully_placed or t_id not in self.lesson_teacher_union.get(lesson_id, set()):
                    unmet.append((t_id, lesson_id))
                    self.logs.append(
                        f"[Required FAIL] {self.input.teachers_by_id[t_id].name} -> {lesson.name} not satisfied"
                    )

        self.state = AttemptState.SUCCESS if not unassigned and not unmet else AttemptState.PARTIAL
        return SchedulerResult(
            attempt_index=self.attempt_index,
            seed=self.seed,
            status=self.state,
            schedule=dict(self.schedule),
            unassigned_lessons=unassigned,
            teacher_load=self.tracker.load_snapshot(),
            logs=self.logs,
            required_assignments_satisfied=not unmet,
            unmet_requirements=unmet,
        )
