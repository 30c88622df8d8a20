"""Input and output dataclasses for the study planner.

Inputs validate themselves on construction and raise
:class:`~study.services.base.InvalidArgument` for out-of-range values.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from study.services.base import InvalidArgument

DAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')

_HHMM = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')


def parse_hhmm(value: str) -> int:
    """Minutes since midnight for an ``HH:MM`` string."""
    match = _HHMM.match(value) if isinstance(value, str) else None
    if not match:
        raise InvalidArgument(f'Expected HH:MM time, got {value!r}')
    return int(match.group(1)) * 60 + int(match.group(2))


def _require_range(name: str, value, low, high=None) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgument(f'{name} must be a number, got {value!r}')
    if value < low or (high is not None and value > high):
        bounds = f'[{low}, {high}]' if high is not None else f'>= {low}'
        raise InvalidArgument(f'{name} must be {bounds}, got {value}')


def _require_id(name: str, value) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f'{name} is required.')


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    priority: int
    estimated_hours: float

    def __post_init__(self) -> None:
        _require_id('Subject.id', self.id)
        _require_range('Subject.priority', self.priority, 1, 5)
        _require_range('Subject.estimated_hours', self.estimated_hours, 0.5)


@dataclass(frozen=True)
class Course:
    id: str
    name: str
    credits: int
    difficulty: int
    subjects: tuple[Subject, ...] = ()

    def __post_init__(self) -> None:
        _require_id('Course.id', self.id)
        _require_range('Course.credits', self.credits, 1, 6)
        _require_range('Course.difficulty', self.difficulty, 1, 5)
        object.__setattr__(self, 'subjects', tuple(self.subjects))


@dataclass(frozen=True)
class TimeSlot:
    """A weekly recurring window in which the student can study."""

    day_of_week: int  # 0 = Sunday
    start_time: str
    end_time: str
    max_cognitive_load: int

    def __post_init__(self) -> None:
        _require_range('TimeSlot.day_of_week', self.day_of_week, 0, 6)
        _require_range('TimeSlot.max_cognitive_load', self.max_cognitive_load, 1, 5)
        if parse_hhmm(self.end_time) <= parse_hhmm(self.start_time):
            raise InvalidArgument(
                f'TimeSlot end {self.end_time} must be after start {self.start_time}'
            )

    @property
    def hours(self) -> float:
        return (parse_hhmm(self.end_time) - parse_hhmm(self.start_time)) / 60

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.day_of_week]


@dataclass(frozen=True)
class Deadline:
    id: str
    title: str
    due_date: datetime
    course_id: str
    estimated_hours: float
    importance: int
    subject_id: Optional[str] = None

    def __post_init__(self) -> None:
        _require_id('Deadline.id', self.id)
        _require_id('Deadline.course_id', self.course_id)
        if not isinstance(self.due_date, datetime):
            raise InvalidArgument('Deadline.due_date must be a datetime.')
        _require_range('Deadline.estimated_hours', self.estimated_hours, 0.5)
        _require_range('Deadline.importance', self.importance, 1, 5)


@dataclass(frozen=True)
class StudyPreferences:
    optimal_session_length: int = 60  # minutes
    break_frequency: int = 45  # minutes between breaks
    preferred_study_methods: tuple[str, ...] = ()
    peak_hours: tuple[str, ...] = ()  # 'morning', 'afternoon', 'evening'
    avoidance_patterns: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _require_range('StudyPreferences.optimal_session_length', self.optimal_session_length, 15, 180)
        _require_range('StudyPreferences.break_frequency', self.break_frequency, 15, 120)
        for name in ('preferred_study_methods', 'peak_hours', 'avoidance_patterns'):
            object.__setattr__(self, name, tuple(getattr(self, name)))


@dataclass(frozen=True)
class PerformanceData:
    subject_id: str
    retention_rate: float
    average_focus_score: float
    completion_rate: float
    time_per_unit: float  # minutes

    def __post_init__(self) -> None:
        _require_id('PerformanceData.subject_id', self.subject_id)
        _require_range('PerformanceData.retention_rate', self.retention_rate, 0, 1)
        _require_range('PerformanceData.average_focus_score', self.average_focus_score, 1, 5)
        _require_range('PerformanceData.completion_rate', self.completion_rate, 0, 1)
        _require_range('PerformanceData.time_per_unit', self.time_per_unit, 1)


@dataclass(frozen=True)
class StudyPlanInput:
    user_id: str
    courses: tuple[Course, ...]
    available_time_slots: tuple[TimeSlot, ...]
    preferences: StudyPreferences
    plan_duration: int  # days
    deadlines: tuple[Deadline, ...] = ()
    performance_history: tuple[PerformanceData, ...] = ()

    def __post_init__(self) -> None:
        _require_id('StudyPlanInput.user_id', self.user_id)
        _require_range('StudyPlanInput.plan_duration', self.plan_duration, 1, 30)
        for name in ('courses', 'available_time_slots', 'deadlines', 'performance_history'):
            object.__setattr__(self, name, tuple(getattr(self, name) or ()))
        if not self.courses:
            raise InvalidArgument('At least one course is required.')
        if not self.available_time_slots:
            raise InvalidArgument('At least one available time slot is required.')

    @property
    def subject_ids(self) -> frozenset:
        return frozenset(s.id for c in self.courses for s in c.subjects)


@dataclass(frozen=True)
class ConstraintAnalysis:
    total_available_hours: float
    total_required_hours: float
    utilization_rate: float
    deadline_urgency: str  # low | medium | high


@dataclass
class StudyBlock:
    block_id: str
    subject_id: str
    scheduled_start: datetime
    duration_minutes: int
    study_method: str
    cognitive_load: int
    priority: int
    topics: list[str] = field(default_factory=list)
    goals: list[str] = field(default_factory=list)
    resources: list[str] = field(default_factory=list)
    reasoning: str = ''


@dataclass
class StudyPlan:
    plan_id: str
    user_id: str
    start_date: datetime
    end_date: datetime
    blocks: list[StudyBlock]
    total_hours: float
    average_cognitive_load: float
    reasoning: str = ''
    analysis: Optional[ConstraintAnalysis] = None
    grounded_courses: list[str] = field(default_factory=list)
