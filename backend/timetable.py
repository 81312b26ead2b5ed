"""
Timetable data model and time grid.

Plain dataclasses shared by every engine component. The grid is a fixed
5-day week with periods numbered 1..10; slots are immutable and hashable so
they can key the schedule dictionary directly.
"""

from typing import Optional
from dataclasses import dataclass, field

# Constants
NUM_DAYS = 5
PERIODS_PER_DAY = 10
DAYS = list(range(1, NUM_DAYS + 1))
PERIODS = list(range(1, PERIODS_PER_DAY + 1))
DAY_NAMES = ['Mon', 'Tue', 'Wed', 'Thu', 'Fri']


@dataclass(frozen=True, order=True)
class TimeSlot:
    day: int  # 1..5
    period: int  # 1..10

    @property
    def key(self) -> str:
        return f"{self.day}-{self.period}"

    @property
    def label(self) -> str:
        if 1 <= self.day <= NUM_DAYS:
            return f"{DAY_NAMES[self.day - 1]} P{self.period}"
        return self.key

    def to_dict(self) -> dict:
        return {'day': self.day, 'period': self.period}

    @classmethod
    def from_dict(cls, data: dict) -> 'TimeSlot':
        # Older payloads carry `hour` instead of `period`
        period = data['period'] if 'period' in data else data['hour']
        return cls(day=int(data['day']), period=int(period))

    @classmethod
    def from_key(cls, key: str) -> 'TimeSlot':
        day, period = key.split('-', 1)
        return cls(day=int(day), period=int(period))


def is_valid_slot(slot: TimeSlot) -> bool:
    return 1 <= slot.day <= NUM_DAYS and 1 <= slot.period <= PERIODS_PER_DAY


def build_time_slots(periods_per_day: int = PERIODS_PER_DAY) -> list[TimeSlot]:
    """Generate the full weekly grid, day-major."""
    periods_per_day = min(periods_per_day, PERIODS_PER_DAY)
    return [TimeSlot(day, period) for day in DAYS for period in range(1, periods_per_day + 1)]


def unavailability_to_slots(day_of_week: int, start_period: int, end_period: int) -> list[TimeSlot]:
    """Expand an unavailability row (day 1=Monday, inclusive period range) into slots.

    Out-of-range days yield nothing and periods are clipped to the grid, which is
    how unavailability rows were mapped before reaching the engine.
    """
    if day_of_week < 1 or day_of_week > NUM_DAYS:
        return []
    return [
        TimeSlot(day_of_week, period)
        for period in range(max(start_period, 1), min(end_period, PERIODS_PER_DAY) + 1)
    ]


def block_slots(start: TimeSlot, duration: int, grid: frozenset) -> Optional[tuple]:
    """Consecutive same-day slots starting at `start`, or None if any falls outside the grid."""
    slots = []
    for offset in range(duration):
        slot = TimeSlot(start.day, start.period + offset)
        if slot not in grid:
            return None
        slots.append(slot)
    return tuple(slots)


@dataclass
class TeacherScheduleData:
    id: str
    name: str
    branch_id: Optional[str] = None
    unavailable_slots: list = field(default_factory=list)  # [TimeSlot, ...]
    assignable_lesson_ids: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> 'TeacherScheduleData':
        return cls(
            id=data['id'],
            name=data.get('name', data['id']),
            branch_id=data.get('branchId'),
            unavailable_slots=[TimeSlot.from_dict(s) for s in data.get('unavailableSlots') or []],
            assignable_lesson_ids=list(data.get('assignableLessonIds') or []),
        )


@dataclass
class LessonScheduleData:
    id: str
    name: str
    dal_id: str
    sinif_seviyesi: int  # Grade level, 9..12
    weekly_hours: int
    can_split: bool = True
    requires_multiple_resources: bool = False
    needs_scheduling: bool = True
    suitable_lab_type_ids: list = field(default_factory=list)  # Empty = ordinary classroom
    possible_teacher_ids: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> 'LessonScheduleData':
        return cls(
            id=data['id'],
            name=data.get('name', data['id']),
            dal_id=data['dalId'],
            sinif_seviyesi=int(data['sinifSeviyesi']),
            weekly_hours=int(data['weeklyHours']),
            can_split=data.get('canSplit', True),
            requires_multiple_resources=data.get('requiresMultipleResources', False),
            needs_scheduling=data.get('needsScheduling', True),
            suitable_lab_type_ids=list(data.get('suitableLabTypeIds') or []),
            possible_teacher_ids=list(data.get('possibleTeacherIds') or []),
        )


@dataclass
class LocationScheduleData:
    id: str
    name: str
    lab_type_id: Optional[str] = None  # None = ordinary classroom
    capacity: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'LocationScheduleData':
        return cls(
            id=data['id'],
            name=data.get('name', data['id']),
            lab_type_id=data.get('labTypeId'),
            capacity=data.get('capacity'),
        )


@dataclass
class ScheduledEntry:
    lesson_id: str
    lesson_name: str
    teacher_ids: list
    teacher_names: list
    location_ids: list
    location_names: list
    time_slot: TimeSlot
    dal_id: str
    sinif_seviyesi: int

    def to_dict(self) -> dict:
        return {
            'lessonId': self.lesson_id,
            'lessonName': self.lesson_name,
            'teacherIds': list(self.teacher_ids),
            'teacherNames': list(self.teacher_names),
            'locationIds': list(self.location_ids),
            'locationNames': list(self.location_names),
            'timeSlot': self.time_slot.to_dict(),
            'dalId': self.dal_id,
            'sinifSeviyesi': self.sinif_seviyesi,
        }


# Schedule: one entry per slot
Schedule = dict  # dict[TimeSlot, ScheduledEntry]


def serialize_schedule(schedule: dict) -> list:
    """Render a schedule as sorted `[key, entry]` pairs."""
    return [[slot.key, schedule[slot].to_dict()] for slot in sorted(schedule)]


@dataclass
class UnassignedLesson:
    lesson_id: str
    lesson_name: str
    remaining_hours: int

    def to_dict(self) -> dict:
        return {
            'lessonId': self.lesson_id,
            'lessonName': self.lesson_name,
            'remainingHours': self.remaining_hours,
        }


@dataclass
class SchedulerInput:
    teachers: list
    lessons: list
    locations: list
    time_slots: list = field(default_factory=build_time_slots)
    required_assignments: dict = field(default_factory=dict)  # teacher id -> set of lesson ids

    teachers_by_id: dict = field(init=False, repr=False)
    lessons_by_id: dict = field(init=False, repr=False)
    locations_by_id: dict = field(init=False, repr=False)

    def __post_init__(self):
        self.teachers_by_id = {t.id: t for t in self.teachers}
        self.lessons_by_id = {l.id: l for l in self.lessons}
        self.locations_by_id = {loc.id: loc for loc in self.locations}

    @property
    def schedulable_lessons(self) -> list:
        return [l for l in self.lessons if l.needs_scheduling]

    def required_teachers_for(self, lesson_id: str) -> list[str]:
        """Teacher ids contractually obligated to teach the lesson, sorted for determinism."""
        return sorted(t_id for t_id, lesson_ids in self.required_assignments.items() if lesson_id in lesson_ids)

    @classmethod
    def from_dict(cls, data: dict) -> 'SchedulerInput':
        slots = data.get('timeSlots')
        return cls(
            teachers=[TeacherScheduleData.from_dict(t) for t in data.get('teachers') or []],
            lessons=[LessonScheduleData.from_dict(l) for l in data.get('lessons') or []],
            locations=[LocationScheduleData.from_dict(loc) for loc in data.get('locations') or []],
            time_slots=[TimeSlot.from_dict(s) for s in slots] if slots is not None else build_time_slots(),
            required_assignments={
                t_id: set(lesson_ids)
                for t_id, lesson_ids in (data.get('requiredAssignmentsMap') or {}).items()
            },
        )
