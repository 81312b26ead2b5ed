"""
Engine settings.

Fitness weights and search policies are product decisions rather than fixed
laws, so they live here and can be tuned per deployment through SCHEDULER_*
environment variables or per request through `with_overrides`.
"""

import os
from dataclasses import dataclass, field, fields, replace

from errors import SchedulerConfigError

ENGINES = ('greedy', 'cpsat')
SPLIT_POLICIES = ('hourly', 'blocks')
SHORT_DAY_MODES = ('count', 'quadratic')


@dataclass(frozen=True)
class Settings:
    # Fitness weights (lower score is better)
    variance_weight: float = 1.0
    gap_weight: float = 1.0
    short_day_weight: float = 1.0
    short_day_unit_penalty: float = 1.0
    min_periods_per_day: int = 2
    short_day_mode: str = 'count'

    # Search policies
    engine: str = 'greedy'
    split_policy: str = 'hourly'
    require_free_day: bool = False
    shared_cohort_grades: tuple = field(default_factory=tuple)  # Grades that form one cohort across dals

    # Runner
    max_workers: int = 4  # Greedy attempts are CPU-bound and share the GIL; CP-SAT solves release it
    max_time_seconds: float = 0.0  # 0 = no deadline
    cpsat_time_limit: float = 10.0

    def __post_init__(self):
        problems = []
        if self.engine not in ENGINES:
            problems.append(f"Unknown engine '{self.engine}' (expected one of {', '.join(ENGINES)})")
        if self.split_policy not in SPLIT_POLICIES:
            problems.append(f"Unknown split policy '{self.split_policy}' (expected one of {', '.join(SPLIT_POLICIES)})")
        if self.short_day_mode not in SHORT_DAY_MODES:
            problems.append(f"Unknown short day mode '{self.short_day_mode}' (expected one of {', '.join(SHORT_DAY_MODES)})")
        if self.min_periods_per_day < 0:
            problems.append('min_periods_per_day must be >= 0')
        if self.max_workers < 1:
            problems.append('max_workers must be >= 1')
        if self.max_time_seconds < 0:
            problems.append('max_time_seconds must be >= 0')
        if self.cpsat_time_limit <= 0:
            problems.append('cpsat_time_limit must be > 0')
        for name in ('variance_weight', 'gap_weight', 'short_day_weight', 'short_day_unit_penalty'):
            if getattr(self, name) < 0:
                problems.append(f'{name} must be >= 0')
        if problems:
            raise SchedulerConfigError(problems)

    def with_overrides(self, **overrides) -> 'Settings':
        """Return a copy with the non-None overrides applied."""
        known = {f.name for f in fields(self)}
        unknown = sorted(k for k in overrides if k not in known)
        if unknown:
            raise SchedulerConfigError(f"Unknown setting(s): {', '.join(unknown)}")
        changes = {k: v for k, v in overrides.items() if v is not None}
        if 'shared_cohort_grades' in changes:
            changes['shared_cohort_grades'] = tuple(int(g) for g in changes['shared_cohort_grades'])
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ=None) -> 'Settings':
        """Build settings from SCHEDULER_* environment variables, defaulting anything unset."""
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(f"SCHEDULER_{f.name.upper()}")
            if raw is None or raw.strip() == '':
                continue
            values[f.name] = _parse(f.name, raw.strip(), type(getattr(cls(), f.name)))
        return cls(**values)


def _parse(name: str, raw: str, kind: type):
    try:
        if kind is bool:
            if raw.lower() in ('1', 'true', 'yes', 'on'):
                return True
            if raw.lower() in ('0', 'false', 'no', 'off'):
                return False
            raise ValueError(raw)
        if kind is tuple:
            return tuple(int(part) for part in raw.split(',') if part.strip())
        return kind(raw)
    except ValueError:
        raise SchedulerConfigError(f"Invalid value for SCHEDULER_{name.upper()}: '{raw}'")
