"""
Candidate generation for a single scheduling unit.

Given a unit (a lesson block of one or more consecutive hours) and the
current ConflictTracker, enumerate every legal (teachers, locations, slots)
placement in a randomized but constraint-aware order. This is the hot path of
every attempt, so the cheap teacher checks run before slot, cohort and
location checks.
"""

import itertools
import random
from dataclasses import dataclass
from typing import Optional

from conflicts import ConflictTracker, cohort_key
from timetable import LessonScheduleData, SchedulerInput, block_slots


@dataclass
class Unit:
    lesson: LessonScheduleData
    duration: int
    part: int = 1
    parts: int = 1
    avoid_same_day: bool = False  # Must not share a day with the lesson's other parts

    @property
    def label(self) -> str:
        suffix = f" part {self.part}/{self.parts}" if self.parts > 1 else ''
        return f"{self.lesson.name} ({self.duration}h{suffix})"


@dataclass
class Candidate:
    teacher_ids: tuple
    location_ids: tuple
    slots: tuple
    uses_required_teacher: bool = False

    @property
    def start(self):
        return self.slots[0]


def resources_needed(lesson: LessonScheduleData) -> int:
    return 2 if lesson.requires_multiple_resources else 1


class CandidateGenerator:
    def __init__(self, scheduler_input: SchedulerInput, rng: random.Random, log: list, shared_grades=()):
        self.input = scheduler_input
        self.rng = rng
        self.log = log
        self.shared_grades = tuple(shared_grades)
        self.grid = frozenset(scheduler_input.time_slots)
        self.last_reason = ''

        self._unavailable = {t.id: frozenset(t.unavailable_slots) for t in scheduler_input.teachers}

        # Each attempt walks the grid in its own order
        self.slot_order = sorted(self.grid)
        self.rng.shuffle(self.slot_order)

        self._teachers = {}
        self._locations = {}
        self._required = {}
        for lesson in scheduler_input.schedulable_lessons:
            self._teachers[lesson.id] = self._resolve_teachers(lesson)
            self._locations[lesson.id] = self._resolve_locations(lesson)

    def _resolve_teachers(self, lesson: LessonScheduleData) -> list[str]:
        """Intersect the lesson's teacher list with teachers whitelisting the lesson."""
        whitelisting = [t.id for t in self.input.teachers if lesson.id in t.assignable_lesson_ids]
        possible = [t_id for t_id in lesson.possible_teacher_ids if t_id in self.input.teachers_by_id]
        whitelist = set(whitelisting)
        teacher_ids = [t_id for t_id in possible if t_id in whitelist]

        if set(possible) != whitelist:
            only_lesson = sorted(set(possible) - whitelist)
            only_teacher = sorted(whitelist - set(possible))
            self.log.append(
                f"[DataWarning] {lesson.name}: teacher lists disagree "
                f"(lesson-only: {only_lesson or '-'}, teacher-only: {only_teacher or '-'}); using intersection {teacher_ids or '-'}"
            )

        required = [t_id for t_id in self.input.required_teachers_for(lesson.id) if t_id in teacher_ids]
        # Contractual teachers are tried first in `generate`; the others stay as fallback
        self._required[lesson.id] = required
        return teacher_ids

    def _resolve_locations(self, lesson: LessonScheduleData) -> list:
        if lesson.suitable_lab_type_ids:
            return [
                loc for loc in self.input.locations
                if loc.lab_type_id is not None and loc.lab_type_id in lesson.suitable_lab_type_ids
            ]
        return [loc for loc in self.input.locations if loc.lab_type_id is None]

    def teacher_options(self, lesson: LessonScheduleData) -> list[str]:
        return self._teachers.get(lesson.id, [])

    def location_options(self, lesson: LessonScheduleData) -> list:
        return self._locations.get(lesson.id, [])

    def required_teachers(self, lesson: LessonScheduleData) -> list[str]:
        return self._required.get(lesson.id, [])

    def is_unavailable(self, teacher_id: str, slot) -> bool:
        return slot in self._unavailable[teacher_id]

    def generate(self, unit: Unit, tracker: ConflictTracker, fixed_teacher_ids=None, avoid_days=()) -> list[Candidate]:
        """All legal placements for `unit`, required-teacher placements first, each group shuffled."""
        lesson = unit.lesson
        need = resources_needed(lesson)
        teachers = list(fixed_teacher_ids) if fixed_teacher_ids else self.teacher_options(lesson)
        locations = self.location_options(lesson)

        if len(teachers) < need:
            self.last_reason = f"not enough teachers (need {need}, have {len(teachers)})"
            return []
        if len(locations) < need:
            self.last_reason = f"not enough suitable locations (need {need}, have {len(locations)})"
            return []

        combos = list(itertools.combinations(teachers, need))
        self.rng.shuffle(combos)
        shuffled_locations = list(locations)
        self.rng.shuffle(shuffled_locations)

        required = set(self.required_teachers(lesson))
        slot_order = self.slot_order
        if required:
            # Sparse required availability first
            slot_order = sorted(
                slot_order,
                key=lambda s: 0 if not any(self.is_unavailable(t_id, s) for t_id in required) else 1,
            )

        key = cohort_key(lesson.dal_id, lesson.sinif_seviyesi, self.shared_grades)
        preferred = []
        others = []
        for start in slot_order:
            if start.day in avoid_days:
                continue
            block = block_slots(start, unit.duration, self.grid)
            if block is None:
                continue

            block_free = None
            for combo in combos:
                if any(self.is_unavailable(t_id, s) for t_id in combo for s in block):
                    continue
                if not all(tracker.is_teacher_free(t_id, s) for t_id in combo for s in block):
                    continue
                if block_free is None:
                    block_free = all(tracker.is_slot_free(s) and tracker.is_cohort_free(key, s) for s in block)
                if not block_free:
                    break
                location_ids = self.pick_locations(shuffled_locations, need, block, tracker)
                if location_ids is None:
                    break
                candidate = Candidate(
                    teacher_ids=combo,
                    location_ids=location_ids,
                    slots=block,
                    uses_required_teacher=bool(required.intersection(combo)),
                )
                (preferred if candidate.uses_required_teacher else others).append(candidate)

        self.rng.shuffle(preferred)
        self.rng.shuffle(others)
        candidates = preferred + others
        self.last_reason = '' if candidates else 'no free slot for any teacher/location combination'
        return candidates

    @staticmethod
    def pick_locations(locations: list, need: int, block: tuple, tracker: ConflictTracker) -> Optional[tuple]:
        picked = []
        for loc in locations:
            if all(tracker.is_location_free(loc.id, s) for s in block):
                picked.append(loc.id)
                if len(picked) == need:
                    return tuple(picked)
        return None
