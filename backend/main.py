"""
FastAPI service for the timetable engine.

Thin HTTP wrapper around `find_best_schedule`: the data-preparation
collaborator posts a fully built scheduler input and receives the
serialized best-of-N result.
"""

import os
import time
import logging
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Optional

from errors import SchedulerConfigError
from settings import Settings
from solver import find_best_schedule
from timetable import SchedulerInput

# Configure logging
DEBUG_SCHEDULER = os.environ.get("DEBUG_SCHEDULER", "").lower() in ("1", "true", "yes")
logging.basicConfig(
    level=logging.DEBUG if DEBUG_SCHEDULER else logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

if DEBUG_SCHEDULER:
    logger.info("DEBUG_SCHEDULER is enabled - verbose logging active")

app = FastAPI(
    title="Timetable Engine API",
    description="Best-of-N randomized school timetable generator",
    version="1.0.0"
)

def allowed_origins(environ=None) -> list[str]:
    """Comma-separated FRONTEND_URL; the local data-preparation frontend when unset."""
    environ = os.environ if environ is None else environ
    raw = environ.get("FRONTEND_URL") or "http://localhost:3000"
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


ALLOWED_ORIGINS = allowed_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)

# Deployment defaults; requests may override individual values
BASE_SETTINGS = Settings.from_env()


class TimeSlotModel(BaseModel):
    day: int
    period: int


class TeacherModel(BaseModel):
    id: str
    name: str
    branchId: Optional[str] = None
    unavailableSlots: list[TimeSlotModel] = []
    assignableLessonIds: list[str] = []


class LessonModel(BaseModel):
    id: str
    name: str
    dalId: str
    sinifSeviyesi: int
    weeklyHours: int
    canSplit: bool = True
    requiresMultipleResources: bool = False
    needsScheduling: bool = True
    suitableLabTypeIds: list[str] = []
    possibleTeacherIds: list[str] = []


class LocationModel(BaseModel):
    id: str
    name: str
    labTypeId: Optional[str] = None
    capacity: Optional[int] = None


class SettingsOverrides(BaseModel):
    varianceWeight: Optional[float] = None
    gapWeight: Optional[float] = None
    shortDayWeight: Optional[float] = None
    shortDayUnitPenalty: Optional[float] = None
    minPeriodsPerDay: Optional[int] = None
    shortDayMode: Optional[str] = None
    engine: Optional[str] = None
    splitPolicy: Optional[str] = None
    requireFreeDay: Optional[bool] = None
    sharedCohortGrades: Optional[list[int]] = None
    maxTimeSeconds: Optional[float] = None

    def to_settings(self, base: Settings) -> Settings:
        return base.with_overrides(
            variance_weight=self.varianceWeight,
            gap_weight=self.gapWeight,
            short_day_weight=self.shortDayWeight,
            short_day_unit_penalty=self.shortDayUnitPenalty,
            min_periods_per_day=self.minPeriodsPerDay,
            short_day_mode=self.shortDayMode,
            engine=self.engine,
            split_policy=self.splitPolicy,
            require_free_day=self.requireFreeDay,
            shared_cohort_grades=self.sharedCohortGrades,
            max_time_seconds=self.maxTimeSeconds,
        )


class ScheduleRequest(BaseModel):
    teachers: list[TeacherModel]
    lessons: list[LessonModel]
    locations: list[LocationModel]
    timeSlots: Optional[list[TimeSlotModel]] = None  # Full 5x10 grid when omitted
    requiredAssignmentsMap: dict[str, list[str]] = {}
    numberOfAttempts: int = 5
    seed: Optional[int] = None
    settings: Optional[SettingsOverrides] = None


class ScheduleResponse(BaseModel):
    success: bool
    bestSchedule: list
    unassignedLessons: list
    totalUnassignedHours: int
    attemptsMade: int
    successfulAttempts: int
    minFitnessScore: Optional[float] = None
    bestVariance: Optional[float] = None
    bestTotalGaps: Optional[float] = None
    bestShortDayPenalty: Optional[float] = None
    bestAttemptIndex: Optional[int] = None
    seed: Optional[int] = None
    attempts: list = []
    logs: list[str] = []
    error: Optional[str] = None
    elapsedSeconds: float


@app.get("/")
async def root():
    return {"message": "Timetable Engine API", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": time.time()}


@app.post("/schedule", response_model=ScheduleResponse)
def build_schedule(request: ScheduleRequest):
    """
    Generate the best weekly timetable out of `numberOfAttempts` randomized attempts.

    Infeasible lessons are reported in `unassignedLessons`; malformed input is
    reported in `error` with `success=false`.
    """
    start_time = time.time()

    try:
        settings = request.settings.to_settings(BASE_SETTINGS) if request.settings else BASE_SETTINGS
    except SchedulerConfigError as e:
        raise HTTPException(status_code=400, detail={"status": "error", "message": str(e)})

    scheduler_input = SchedulerInput.from_dict(request.model_dump(exclude={'settings', 'numberOfAttempts', 'seed'}))

    logger.info(
        f"=== SCHEDULE REQUEST === Teachers: {len(scheduler_input.teachers)}, "
        f"Lessons: {len(scheduler_input.lessons)}, Locations: {len(scheduler_input.locations)}, "
        f"Attempts: {request.numberOfAttempts}"
    )
    if DEBUG_SCHEDULER:
        for lesson in scheduler_input.lessons:
            logger.debug(
                f"  Lesson: {lesson.name} dal={lesson.dal_id} grade={lesson.sinif_seviyesi} "
                f"{lesson.weekly_hours}h split={lesson.can_split} multi={lesson.requires_multiple_resources} "
                f"teachers={lesson.possible_teacher_ids} labs={lesson.suitable_lab_type_ids}"
            )

    try:
        result = find_best_schedule(
            scheduler_input,
            request.numberOfAttempts,
            settings,
            seed=request.seed,
        )
    except Exception as e:
        elapsed = time.time() - start_time
        logger.error(f"SCHEDULE ERROR: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={
                "status": "error",
                "message": str(e),
                "elapsedSeconds": elapsed,
            }
        )

    elapsed = time.time() - start_time
    logger.info(
        f"=== SCHEDULE RESULT === Success: {result.success}, Entries: {len(result.best_schedule)}, "
        f"Unassigned: {result.total_unassigned_hours}h, Time: {elapsed:.1f}s"
    )
    if result.error:
        logger.warning(f"SCHEDULE FAILED: {result.error}")

    return ScheduleResponse(**result.to_dict(), elapsedSeconds=elapsed)


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port)
