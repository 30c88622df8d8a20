"""Personalised study planning."""

from .planner import StudyPlanner, parse_plan_reply
from .schemas import (
    ConstraintAnalysis,
    Course,
    Deadline,
    PerformanceData,
    StudyBlock,
    StudyPlan,
    StudyPlanInput,
    StudyPreferences,
    Subject,
    TimeSlot,
)

__all__ = [
    'ConstraintAnalysis',
    'Course',
    'Deadline',
    'PerformanceData',
    'StudyBlock',
    'StudyPlan',
    'StudyPlanInput',
    'StudyPlanner',
    'StudyPreferences',
    'Subject',
    'TimeSlot',
    'parse_plan_reply',
]
