"""
Tests for the best-of-N runner (find_best_schedule).
"""
import math
import threading

import pytest

import solver
from assigner import AttemptState, SchedulerResult
from fitness import FitnessReport
from settings import Settings
from solver import find_best_schedule, selection_key, validate_input
from testdata import (
    assert_hours_conserved,
    assert_schedule_invariants,
    lesson,
    location,
    make_input,
    school,
    teacher,
)

FULL_WEEK = [(d, p) for d in range(1, 6) for p in range(1, 11)]


def trivial_input():
    return make_input([teacher('t1', ['l1'])], [lesson('l1', 2, ['t1'])], [location('r1')])


def roomy_input():
    """Always fully placeable: only one-hour units, no unavailability, fewer hours than slots."""
    return make_input(
        [teacher('t1', ['a', 'b']), teacher('t2', ['a', 'c']), teacher('t3', ['b', 'c', 'd'])],
        [
            lesson('a', 6, ['t1', 't2'], dal='x', grade=9),
            lesson('b', 5, ['t1', 't3'], dal='x', grade=10),
            lesson('c', 4, ['t2', 't3'], dal='y', grade=9),
            lesson('d', 3, ['t3'], dal='y', grade=10),
        ],
        [location('r1'), location('r2')],
    )


# Scenarios

def test_trivial_feasible_input():
    result = find_best_schedule(trivial_input(), attempts=3, seed=11)

    assert result.success
    assert result.error is None
    assert len(result.best_schedule) == 2
    assert all(e.lesson_id == 'l1' for e in result.best_schedule.values())
    assert result.unassigned_lessons == []
    assert result.attempts_made == 3
    assert result.successful_attempts == 3
    assert math.isfinite(result.min_fitness_score)


def test_impossible_unavailability():
    scheduler_input = make_input(
        [teacher('t1', ['l1'], unavailable=FULL_WEEK)], [lesson('l1', 3, ['t1'])], [location('r1')]
    )
    result = find_best_schedule(scheduler_input, attempts=2, seed=5)

    assert result.success
    assert result.best_schedule == {}
    assert [(u.lesson_id, u.remaining_hours) for u in result.unassigned_lessons] == [('l1', 3)]
    assert result.successful_attempts == 0


def test_multi_resource_lesson_with_one_teacher_never_schedules():
    scheduler_input = make_input(
        [teacher('t1', ['duo'])],
        [lesson('duo', 2, ['t1'], multi=True)],
        [location('r1'), location('r2')],
    )
    for seed in range(3):
        result = find_best_schedule(scheduler_input, attempts=3, seed=seed)
        assert result.success
        assert [(u.lesson_id, u.remaining_hours) for u in result.unassigned_lessons] == [('duo', 2)]


def test_unavailable_required_teacher_falls_back_to_another_teacher():
    scheduler_input = make_input(
        [teacher('req', ['l1'], unavailable=FULL_WEEK), teacher('other', ['l1'])],
        [lesson('l1', 2, ['req', 'other'])],
        [location('r1')],
        required={'req': ['l1']},
    )
    result = find_best_schedule(scheduler_input, attempts=5, seed=1)

    assert result.success
    assert result.unassigned_lessons == []
    assert len(result.best_schedule) == 2
    assert all(e.teacher_ids == ['other'] for e in result.best_schedule.values())
    # The contract itself is still unmet
    assert result.successful_attempts == 0
    assert any(line.startswith('[Required FAIL] Req') for line in result.logs)


def test_available_required_teacher_takes_the_lesson():
    scheduler_input = make_input(
        [teacher('req', ['l1']), teacher('other', ['l1'])],
        [lesson('l1', 3, ['req', 'other'])],
        [location('r1')],
        required={'req': ['l1']},
    )
    result = find_best_schedule(scheduler_input, attempts=3, seed=2)

    assert result.successful_attempts == 3
    assert all(e.teacher_ids == ['req'] for e in result.best_schedule.values())


# Properties

def test_best_schedule_keeps_invariants():
    scheduler_input = school()
    result = find_best_schedule(scheduler_input, attempts=8, seed=3)

    assert result.success
    assert_schedule_invariants(result.best_schedule, scheduler_input)
    assert_hours_conserved(result.best_schedule, result.unassigned_lessons, scheduler_input)


def test_shared_grades_form_one_cohort():
    scheduler_input = roomy_input()
    settings = Settings(shared_cohort_grades=(9,))
    result = find_best_schedule(scheduler_input, attempts=3, settings=settings, seed=8)
    assert_schedule_invariants(result.best_schedule, scheduler_input, shared_grades=(9,))


def test_more_attempts_never_score_worse():
    scheduler_input = roomy_input()
    one = find_best_schedule(scheduler_input, attempts=1, seed=21)
    ten = find_best_schedule(scheduler_input, attempts=10, seed=21)

    assert one.successful_attempts == 1
    assert ten.successful_attempts == 10
    assert ten.min_fitness_score <= one.min_fitness_score


def test_same_seed_is_reproducible():
    scheduler_input = school()
    first = find_best_schedule(scheduler_input, attempts=4, seed=99)
    second = find_best_schedule(scheduler_input, attempts=4, seed=99)

    assert first.best_schedule == second.best_schedule
    assert first.best_attempt_index == second.best_attempt_index
    assert first.min_fitness_score == second.min_fitness_score


def test_progress_callback_sees_every_attempt():
    calls = []
    find_best_schedule(trivial_input(), attempts=4, seed=1, on_progress=lambda done, total, msg: calls.append((done, total)))
    assert sorted(calls) == [(1, 4), (2, 4), (3, 4), (4, 4)]


def test_raising_progress_callback_does_not_abort_the_run():
    def closed_socket(done, total, message):
        raise ValueError('ui socket closed')

    result = find_best_schedule(trivial_input(), attempts=2, seed=1, on_progress=closed_socket)

    assert result.success
    assert result.attempts_made == 2
    assert len(result.best_schedule) == 2


def test_worker_count_does_not_change_the_result():
    scheduler_input = school()
    serial = find_best_schedule(scheduler_input, attempts=6, settings=Settings(max_workers=1), seed=13)
    pooled = find_best_schedule(scheduler_input, attempts=6, settings=Settings(max_workers=4), seed=13)

    assert serial.best_schedule == pooled.best_schedule
    assert serial.best_attempt_index == pooled.best_attempt_index
    assert [a.to_dict() for a in serial.attempts] == [a.to_dict() for a in pooled.attempts]


# Configuration errors

@pytest.mark.parametrize('scheduler_input,attempts,fragment', [
    (make_input([teacher('t1', ['l1'])], [lesson('l1', 2, ['ghost'])], [location('r1')]), 3, "unknown teacher 'ghost'"),
    (make_input([teacher('t1', ['l1'])], [lesson('l1', 2, ['t1'])], [location('r1')], time_slots=[]), 3, 'Time grid is empty'),
    (make_input([teacher('t1', ['l1'])], [lesson('l1', -1, ['t1'])], [location('r1')]), 3, 'negative weekly hours'),
    (make_input([teacher('t1', ['l1'])], [lesson('l1', 2, ['t1'])], [location('r1')], required={'t9': ['l1']}), 3,
     "unknown teacher 't9'"),
    (trivial_input(), 0, 'attempts must be >= 1'),
])
def test_configuration_errors_abort_the_run(scheduler_input, attempts, fragment):
    result = find_best_schedule(scheduler_input, attempts=attempts)

    assert not result.success
    assert result.error.startswith('Invalid scheduler input')
    assert fragment in result.error
    assert result.attempts_made == 0
    assert any(line.startswith('[Config]') for line in result.logs)


def test_valid_input_has_no_problems():
    assert validate_input(school(), attempts=5) == []


def test_config_error_serializes_without_infinity():
    result = find_best_schedule(trivial_input(), attempts=0)
    data = result.to_dict()
    assert data['success'] is False
    assert data['minFitnessScore'] is None
    assert data['bestVariance'] is None
    assert data['bestSchedule'] == []


# Attempt failures

def test_one_failing_attempt_does_not_sink_the_run(monkeypatch):
    real_run_attempt = solver.run_attempt

    def flaky(scheduler_input, settings, attempt_index, seed, teacher_ids=None):
        if attempt_index == 0:
            raise RuntimeError('tracker corrupted')
        return real_run_attempt(scheduler_input, settings, attempt_index, seed, teacher_ids)

    monkeypatch.setattr(solver, 'run_attempt', flaky)
    result = find_best_schedule(trivial_input(), attempts=3, seed=4)

    assert result.success
    assert result.attempts_made == 3
    assert result.best_attempt_index != 0
    statuses = {a.attempt_index: a.status for a in result.attempts}
    assert statuses[0] == 'FAILED'
    assert any('tracker corrupted' in line for line in result.logs)


def test_every_attempt_failing_reports_failure(monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError('boom')

    monkeypatch.setattr(solver, 'run_attempt', broken)
    result = find_best_schedule(trivial_input(), attempts=3, seed=4)

    assert not result.success
    assert 'boom' in result.error
    assert result.attempts_made == 3
    assert [(u.lesson_id, u.remaining_hours) for u in result.unassigned_lessons] == [('l1', 2)]


def test_cancelled_run_reports_failure():
    cancel = threading.Event()
    cancel.set()
    result = find_best_schedule(trivial_input(), attempts=5, cancel_event=cancel)

    assert not result.success
    assert result.attempts_made == 0
    assert 'cancelled' in result.error


# Selection

def scored(index, status, unassigned_hours, score, free_day=True):
    result = SchedulerResult(attempt_index=index, seed=index, status=status)
    if unassigned_hours:
        result.unassigned_lessons = [solver.UnassignedLesson('l', 'L', unassigned_hours)]
    result.fitness = FitnessReport(0.0, 0, 0, 0.0, score, free_day)
    return result


def test_selection_prefers_success_then_fewer_unassigned_hours_then_fitness():
    settings = Settings()
    results = [
        scored(0, AttemptState.PARTIAL, 1, 0.5),
        scored(1, AttemptState.PARTIAL, 3, 0.1),
        scored(2, AttemptState.SUCCESS, 0, 9.0),
        scored(3, AttemptState.SUCCESS, 0, 4.0),
    ]
    ranked = sorted(results, key=lambda r: selection_key(r, settings))
    assert [r.attempt_index for r in ranked] == [3, 2, 0, 1]


def test_free_day_requirement_ranks_before_fitness():
    settings = Settings(require_free_day=True)
    busy = scored(0, AttemptState.SUCCESS, 0, 1.0, free_day=False)
    relaxed = scored(1, AttemptState.SUCCESS, 0, 5.0, free_day=True)
    assert min([busy, relaxed], key=lambda r: selection_key(r, settings)) is relaxed


# CP-SAT engine

def test_cpsat_engine_places_trivial_input():
    settings = Settings(engine='cpsat', cpsat_time_limit=5.0)
    result = find_best_schedule(trivial_input(), attempts=2, settings=settings, seed=2)

    assert result.success
    assert len(result.best_schedule) == 2
    assert result.unassigned_lessons == []


def test_cpsat_engine_respects_invariants():
    scheduler_input = school()
    settings = Settings(engine='cpsat', cpsat_time_limit=5.0, split_policy='blocks')
    result = find_best_schedule(scheduler_input, attempts=1, settings=settings, seed=6)

    assert result.success
    assert_schedule_invariants(result.best_schedule, scheduler_input)
    assert_hours_conserved(result.best_schedule, result.unassigned_lessons, scheduler_input)


def test_cpsat_engine_reports_unavailable_teacher():
    scheduler_input = make_input(
        [teacher('t1', ['l1'], unavailable=FULL_WEEK)], [lesson('l1', 2, ['t1'])], [location('r1')]
    )
    result = find_best_schedule(scheduler_input, attempts=1, settings=Settings(engine='cpsat'), seed=2)
    assert [(u.lesson_id, u.remaining_hours) for u in result.unassigned_lessons] == [('l1', 2)]
