class SchedulerError(Exception):
    """Base class for timetable engine errors."""

    pass


class SchedulerConfigError(SchedulerError):
    """Raised when the scheduler input or settings are malformed. Aborts the whole run."""

    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class SchedulerInvariantError(SchedulerError):
    """Raised inside a single attempt when an internal invariant is violated."""

    pass


class UnknownResourceError(SchedulerInvariantError):
    """Raised when a teacher, location or cohort id is not part of the input."""

    pass


class SlotConflictError(SchedulerInvariantError):
    """Raised when committing an entry whose slot or resources are already taken."""

    pass
