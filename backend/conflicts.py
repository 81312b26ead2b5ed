"""
Per-attempt occupancy bookkeeping.

A ConflictTracker answers "is this teacher / location / cohort / slot free?"
in O(1) and records teacher load as entries are committed. Each attempt owns
its own tracker; nothing here is shared between threads.
"""

import copy
from dataclasses import dataclass, field

from errors import SlotConflictError, UnknownResourceError
from timetable import NUM_DAYS, ScheduledEntry, TimeSlot


def cohort_key(dal_id: str, sinif_seviyesi: int, shared_grades=()) -> tuple:
    """Student cohort identity. Grades in `shared_grades` form one cohort regardless of dal."""
    if sinif_seviyesi in shared_grades:
        return ('*', sinif_seviyesi)
    return (dal_id, sinif_seviyesi)


@dataclass
class TeacherLoad:
    total_hours: int = 0
    per_day: list = field(default_factory=lambda: [0] * NUM_DAYS)

    def to_dict(self) -> dict:
        return {'totalHours': self.total_hours, 'perDay': list(self.per_day)}


class ConflictTracker:
    def __init__(self, teacher_ids, location_ids, cohort_keys, shared_grades=()):
        self._teacher_busy = {t_id: set() for t_id in teacher_ids}
        self._location_busy = {loc_id: set() for loc_id in location_ids}
        self._cohort_busy = {key: set() for key in cohort_keys}
        self._occupied = set()
        self._shared_grades = tuple(shared_grades)
        self.teacher_load = {t_id: TeacherLoad() for t_id in teacher_ids}

    @classmethod
    def for_input(cls, scheduler_input, shared_grades=()) -> 'ConflictTracker':
        return cls(
            teacher_ids=[t.id for t in scheduler_input.teachers],
            location_ids=[loc.id for loc in scheduler_input.locations],
            cohort_keys={cohort_key(l.dal_id, l.sinif_seviyesi, shared_grades) for l in scheduler_input.lessons},
            shared_grades=shared_grades,
        )

    def cohort_of(self, entry: ScheduledEntry) -> tuple:
        return cohort_key(entry.dal_id, entry.sinif_seviyesi, self._shared_grades)

    # Probes

    def is_slot_free(self, slot: TimeSlot) -> bool:
        return slot not in self._occupied

    def is_teacher_free(self, teacher_id: str, slot: TimeSlot) -> bool:
        return slot not in self._lookup(self._teacher_busy, teacher_id, 'teacher')

    def is_location_free(self, location_id: str, slot: TimeSlot) -> bool:
        return slot not in self._lookup(self._location_busy, location_id, 'location')

    def is_cohort_free(self, key: tuple, slot: TimeSlot) -> bool:
        return slot not in self._lookup(self._cohort_busy, key, 'cohort')

    def is_free(self, teacher_ids, location_ids, key: tuple, slot: TimeSlot) -> bool:
        if not self.is_slot_free(slot):
            return False
        if not all(self.is_teacher_free(t_id, slot) for t_id in teacher_ids):
            return False
        if not self.is_cohort_free(key, slot):
            return False
        return all(self.is_location_free(loc_id, slot) for loc_id in location_ids)

    def is_entry_free(self, entry: ScheduledEntry) -> bool:
        return self.is_free(entry.teacher_ids, entry.location_ids, self.cohort_of(entry), entry.time_slot)

    # Mutations

    def commit(self, entry: ScheduledEntry):
        """Mark the entry's slot and resources busy. Refuses anything not currently free."""
        if not self.is_entry_free(entry):
            raise SlotConflictError(
                f"Cannot commit {entry.lesson_name} at {entry.time_slot.label}: slot or resources already taken"
            )
        slot = entry.time_slot
        self._occupied.add(slot)
        self._cohort_busy[self.cohort_of(entry)].add(slot)
        for loc_id in entry.location_ids:
            self._location_busy[loc_id].add(slot)
        for t_id in entry.teacher_ids:
            self._teacher_busy[t_id].add(slot)
            load = self.teacher_load[t_id]
            load.total_hours += 1
            load.per_day[slot.day - 1] += 1

    def commit_block(self, entries):
        """Commit every entry or none of them."""
        seen = set()
        for entry in entries:
            if entry.time_slot in seen or not self.is_entry_free(entry):
                raise SlotConflictError(
                    f"Cannot commit block of {entry.lesson_name} at {entry.time_slot.label}: slot or resources already taken"
                )
            seen.add(entry.time_slot)
        for entry in entries:
            self.commit(entry)

    def release(self, entry: ScheduledEntry):
        slot = entry.time_slot
        if slot not in self._occupied:
            raise SlotConflictError(f"Cannot release {entry.lesson_name} at {slot.label}: slot is not occupied")
        self._occupied.discard(slot)
        self._lookup(self._cohort_busy, self.cohort_of(entry), 'cohort').discard(slot)
        for loc_id in entry.location_ids:
            self._lookup(self._location_busy, loc_id, 'location').discard(slot)
        for t_id in entry.teacher_ids:
            self._lookup(self._teacher_busy, t_id, 'teacher').discard(slot)
            load = self.teacher_load[t_id]
            load.total_hours -= 1
            load.per_day[slot.day - 1] -= 1

    def load_snapshot(self) -> dict:
        return copy.deepcopy(self.teacher_load)

    @staticmethod
    def _lookup(table: dict, key, kind: str) -> set:
        try:
            return table[key]
        except KeyError:
            raise UnknownResourceError(f"Unknown {kind} id: {key!r}")
