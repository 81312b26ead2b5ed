"""
Builders and invariant checks shared by the test modules.
"""

from collections import Counter

from conflicts import cohort_key
from timetable import (
    LessonScheduleData,
    LocationScheduleData,
    SchedulerInput,
    TeacherScheduleData,
    TimeSlot,
    build_time_slots,
)


def teacher(id, lessons=(), unavailable=(), name=None):
    return TeacherScheduleData(
        id=id,
        name=name or id.title(),
        branch_id='branch-1',
        unavailable_slots=[s if isinstance(s, TimeSlot) else TimeSlot(*s) for s in unavailable],
        assignable_lesson_ids=list(lessons),
    )


def lesson(id, hours, teachers=(), dal='dal-1', grade=10, can_split=True, multi=False, labs=(), needs=True):
    return LessonScheduleData(
        id=id,
        name=id.title(),
        dal_id=dal,
        sinif_seviyesi=grade,
        weekly_hours=hours,
        can_split=can_split,
        requires_multiple_resources=multi,
        needs_scheduling=needs,
        suitable_lab_type_ids=list(labs),
        possible_teacher_ids=list(teachers),
    )


def location(id, lab=None, capacity=30):
    return LocationScheduleData(id=id, name=id.title(), lab_type_id=lab, capacity=capacity)


def make_input(teachers, lessons, locations, required=None, time_slots=None):
    return SchedulerInput(
        teachers=list(teachers),
        lessons=list(lessons),
        locations=list(locations),
        time_slots=build_time_slots() if time_slots is None else list(time_slots),
        required_assignments={t_id: set(ids) for t_id, ids in (required or {}).items()},
    )


def school():
    """Two dals, two grades, a lab lesson, a co-taught lesson and a contractual assignment."""
    lessons = [
        lesson('math-10a', 4, ['ayse', 'mehmet'], dal='dal-a', grade=10),
        lesson('math-11a', 3, ['ayse', 'mehmet'], dal='dal-a', grade=11),
        lesson('physics-10a', 2, ['mehmet'], dal='dal-a', grade=10, can_split=False),
        lesson('coding-10b', 4, ['zeynep', 'can'], dal='dal-b', grade=10, labs=['computer-lab']),
        lesson('workshop-11b', 2, ['zeynep', 'can', 'elif'], dal='dal-b', grade=11, multi=True, can_split=False),
        lesson('history-10b', 2, ['elif'], dal='dal-b', grade=10),
        lesson('turkish-11b', 3, ['elif', 'ayse'], dal='dal-b', grade=11),
        lesson('club-11a', 2, ['can'], dal='dal-a', grade=11, needs=False),
    ]
    teachers = [
        teacher('ayse', ['math-10a', 'math-11a', 'turkish-11b'], unavailable=[(1, p) for p in range(1, 11)]),
        teacher('mehmet', ['math-10a', 'math-11a', 'physics-10a'], unavailable=[(5, 9), (5, 10)]),
        teacher('zeynep', ['coding-10b', 'workshop-11b']),
        teacher('can', ['coding-10b', 'workshop-11b', 'club-11a'], unavailable=[(3, p) for p in range(1, 6)]),
        teacher('elif', ['history-10b', 'turkish-11b', 'workshop-11b']),
    ]
    locations = [
        location('room-101'),
        location('room-102'),
        location('lab-1', lab='computer-lab'),
        location('lab-2', lab='computer-lab'),
    ]
    return make_input(teachers, lessons, locations, required={'mehmet': ['physics-10a']})


def assert_schedule_invariants(schedule, scheduler_input, shared_grades=()):
    """Structural rules every produced schedule must satisfy."""
    unavailable = {t.id: set(t.unavailable_slots) for t in scheduler_input.teachers}
    busy = Counter()
    for slot, entry in schedule.items():
        assert entry.time_slot == slot
        assert slot in set(scheduler_input.time_slots)
        lesson_data = scheduler_input.lessons_by_id[entry.lesson_id]
        need = 2 if lesson_data.requires_multiple_resources else 1
        assert len(set(entry.teacher_ids)) == len(entry.teacher_ids) == need
        assert len(set(entry.location_ids)) == len(entry.location_ids) == need
        for t_id in entry.teacher_ids:
            assert slot not in unavailable[t_id]
            assert t_id in lesson_data.possible_teacher_ids
            busy[('teacher', t_id, slot)] += 1
        for loc_id in entry.location_ids:
            loc = scheduler_input.locations_by_id[loc_id]
            if lesson_data.suitable_lab_type_ids:
                assert loc.lab_type_id in lesson_data.suitable_lab_type_ids
            else:
                assert loc.lab_type_id is None
            busy[('location', loc_id, slot)] += 1
        busy[('cohort', cohort_key(entry.dal_id, entry.sinif_seviyesi, shared_grades), slot)] += 1
    assert all(count == 1 for count in busy.values())


def assert_hours_conserved(schedule, unassigned_lessons, scheduler_input):
    placed = Counter(entry.lesson_id for entry in schedule.values())
    remaining = {u.lesson_id: u.remaining_hours for u in unassigned_lessons}
    for lesson_data in scheduler_input.lessons:
        if not lesson_data.needs_scheduling:
            assert placed[lesson_data.id] == 0
            assert lesson_data.id not in remaining
            continue
        assert placed[lesson_data.id] + remaining.get(lesson_data.id, 0) == lesson_data.weekly_hours
