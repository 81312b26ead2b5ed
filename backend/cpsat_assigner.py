"""
CP-SAT single-attempt scheduler.

Drop-in alternative to the greedy search: the same units are placed by an
OR-Tools CP-SAT model seeded from the attempt RNG, and the solution is then
replayed through the ConflictTracker so the result has exactly the shape of a
greedy attempt.
"""

import itertools
from collections import defaultdict

from ortools.sat.python import cp_model

from assigner import GreedyAssigner
from candidates import Candidate, Unit, resources_needed
from timetable import block_slots

STATUS_NAMES = {0: 'UNKNOWN', 1: 'MODEL_INVALID', 2: 'FEASIBLE', 3: 'INFEASIBLE', 4: 'OPTIMAL'}


class CpSatAssigner(GreedyAssigner):
    def search(self, units: list[Unit]):
        model = cp_model.CpModel()
        grid = self.generator.grid

        # One teacher combination per lesson, shared by all of its units
        combo_vars = {}
        for lesson in {u.lesson.id: u.lesson for u in units}.values():
            need = resources_needed(lesson)
            teachers = self.generator.teacher_options(lesson)
            locations = self.generator.location_options(lesson)
            if len(teachers) < need or len(locations) < need:
                self.logs.append(
                    f"[CP-SAT] {lesson.name}: not enough teachers/locations "
                    f"(need {need}, have {len(teachers)}/{len(locations)})"
                )
                continue
            combos = list(itertools.combinations(teachers, need))
            self.rng.shuffle(combos)
            combo_vars[lesson.id] = [
                (combo, model.NewBoolVar(f'combo_{lesson.id}_{i}')) for i, combo in enumerate(combos)
            ]
            model.Add(sum(var for _, var in combo_vars[lesson.id]) == 1)

        start_vars = {}  # unit index -> [(block, var)]
        covering = defaultdict(list)
        same_day = defaultdict(list)  # (lesson id, day) -> vars of units that must not share a day
        for k, unit in enumerate(units):
            combos = combo_vars.get(unit.lesson.id)
            if not combos:
                continue
            options = []
            for start in self.generator.slot_order:
                block = block_slots(start, unit.duration, grid)
                if block is None:
                    continue
                var = model.NewBoolVar(f'unit_{k}_{start.key}')
                for combo, combo_var in combos:
                    if any(self.generator.is_unavailable(t_id, s) for t_id in combo for s in block):
                        model.AddBoolOr([var.Not(), combo_var.Not()])
                for s in block:
                    covering[s].append(var)
                if unit.avoid_same_day:
                    same_day[(unit.lesson.id, start.day)].append(var)
                options.append((block, var))
            if options:
                model.Add(sum(var for _, var in options) <= 1)
                start_vars[k] = options

        # At most one entry per slot
        for slot_vars in covering.values():
            if len(slot_vars) > 1:
                model.Add(sum(slot_vars) <= 1)
        for day_vars in same_day.values():
            if len(day_vars) > 1:
                model.Add(sum(day_vars) <= 1)

        placed_hours = sum(
            units[k].duration * var for k, options in start_vars.items() for _, var in options
        )
        required_bonus = sum(
            var
            for lesson_id, combos in combo_vars.items()
            for combo, var in combos
            if set(combo).intersection(self.generator.required_teachers(self.input.lessons_by_id[lesson_id]))
        )
        if start_vars:
            model.Maximize(placed_hours * (len(combo_vars) + 1) + required_bonus)

        solver = cp_model.CpSolver()
        solver.parameters.random_seed = self.rng.randrange(2 ** 31 - 1)
        solver.parameters.max_time_in_seconds = self.settings.cpsat_time_limit
        solver.parameters.num_search_workers = 1  # Deterministic with seed
        status = solver.Solve(model)
        self.logs.append(f"[CP-SAT] Solver status: {STATUS_NAMES.get(status, str(status))}")

        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            for unit in units:
                self.logs.append(f"[Drop] {unit.label}: CP-SAT found no placement")
            return

        chosen = {
            lesson_id: next(combo for combo, var in combos if solver.Value(var))
            for lesson_id, combos in combo_vars.items()
        }
        for k, unit in enumerate(units):
            block = next((b for b, var in start_vars.get(k, []) if solver.Value(var)), None)
            if block is None:
                self.logs.append(f"[Drop] {unit.label}: CP-SAT left unit unplaced")
                continue
            self.replay(unit, chosen[unit.lesson.id], block)

    def replay(self, unit: Unit, combo: tuple, block: tuple):
        locations = list(self.generator.location_options(unit.lesson))
        self.rng.shuffle(locations)
        location_ids = self.generator.pick_locations(locations, resources_needed(unit.lesson), block, self.tracker)
        if location_ids is None:
            self.logs.append(f"[Drop] {unit.label}: no free location at {block[0].label}")
            return
        self.commit(unit, Candidate(teacher_ids=combo, location_ids=location_ids, slots=block))
