import pytest

from conflicts import ConflictTracker, cohort_key
from errors import SlotConflictError, UnknownResourceError
from timetable import ScheduledEntry, TimeSlot


def entry(slot, teachers=('t1',), locations=('r1',), dal='d1', grade=10, lesson_id='l1'):
    return ScheduledEntry(
        lesson_id=lesson_id,
        lesson_name=lesson_id.upper(),
        teacher_ids=list(teachers),
        teacher_names=[t.upper() for t in teachers],
        location_ids=list(locations),
        location_names=[loc.upper() for loc in locations],
        time_slot=slot,
        dal_id=dal,
        sinif_seviyesi=grade,
    )


@pytest.fixture
def tracker():
    return ConflictTracker(
        teacher_ids=['t1', 't2', 't3'],
        location_ids=['r1', 'r2'],
        cohort_keys=[('d1', 10), ('d2', 10)],
    )


def test_commit_marks_everything_busy(tracker):
    slot = TimeSlot(1, 1)
    tracker.commit(entry(slot))

    assert not tracker.is_slot_free(slot)
    assert not tracker.is_teacher_free('t1', slot)
    assert not tracker.is_location_free('r1', slot)
    assert not tracker.is_cohort_free(('d1', 10), slot)
    assert tracker.is_teacher_free('t2', slot)
    assert tracker.is_teacher_free('t1', TimeSlot(1, 2))


def test_commit_updates_teacher_load(tracker):
    tracker.commit(entry(TimeSlot(1, 1)))
    tracker.commit(entry(TimeSlot(1, 2)))
    tracker.commit(entry(TimeSlot(3, 4), teachers=('t1', 't2'), locations=('r1', 'r2')))

    assert tracker.teacher_load['t1'].total_hours == 3
    assert tracker.teacher_load['t1'].per_day == [2, 0, 1, 0, 0]
    assert tracker.teacher_load['t2'].total_hours == 1
    assert tracker.teacher_load['t3'].total_hours == 0


def test_commit_refuses_occupied_slot(tracker):
    tracker.commit(entry(TimeSlot(1, 1)))
    with pytest.raises(SlotConflictError):
        tracker.commit(entry(TimeSlot(1, 1), teachers=('t2',), locations=('r2',), dal='d2'))
    assert tracker.teacher_load['t2'].total_hours == 0


def test_is_free_checks_every_resource(tracker):
    slot = TimeSlot(2, 2)
    tracker.commit(entry(slot, teachers=('t1',), locations=('r1',)))
    other = TimeSlot(2, 3)
    assert tracker.is_free(['t2'], ['r2'], ('d2', 10), other)
    assert not tracker.is_free(['t2'], ['r2'], ('d2', 10), slot)


def test_commit_block_is_all_or_nothing(tracker):
    tracker.commit(entry(TimeSlot(1, 2), teachers=('t2',), locations=('r2',), dal='d2'))
    block = [entry(TimeSlot(1, 1)), entry(TimeSlot(1, 2))]
    with pytest.raises(SlotConflictError):
        tracker.commit_block(block)
    assert tracker.is_slot_free(TimeSlot(1, 1))
    assert tracker.teacher_load['t1'].total_hours == 0


def test_release_is_inverse_of_commit(tracker):
    e = entry(TimeSlot(4, 5))
    tracker.commit(e)
    tracker.release(e)
    assert tracker.is_entry_free(e)
    assert tracker.teacher_load['t1'].total_hours == 0
    assert tracker.teacher_load['t1'].per_day == [0] * 5
    with pytest.raises(SlotConflictError):
        tracker.release(e)


def test_unknown_ids_are_programming_errors(tracker):
    with pytest.raises(UnknownResourceError):
        tracker.is_teacher_free('ghost', TimeSlot(1, 1))
    with pytest.raises(UnknownResourceError):
        tracker.is_location_free('ghost', TimeSlot(1, 1))
    with pytest.raises(UnknownResourceError):
        tracker.commit(entry(TimeSlot(1, 1), dal='ghost'))


def test_load_snapshot_is_detached(tracker):
    tracker.commit(entry(TimeSlot(1, 1)))
    snapshot = tracker.load_snapshot()
    tracker.commit(entry(TimeSlot(1, 2)))
    assert snapshot['t1'].total_hours == 1
    assert tracker.teacher_load['t1'].total_hours == 2


def test_shared_grades_collapse_cohorts():
    assert cohort_key('d1', 9, shared_grades=(9,)) == cohort_key('d2', 9, shared_grades=(9,))
    assert cohort_key('d1', 10, shared_grades=(9,)) != cohort_key('d2', 10, shared_grades=(9,))
