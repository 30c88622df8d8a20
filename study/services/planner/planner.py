"""Study planner: constraint analysis, note grounding and an AI-drafted schedule."""

import json
import logging
import re
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from django.utils import timezone

from study.services.agents import AgentService
from study.services.base import InvalidPlanResponse, NoContentAvailable
from study.services.rag import RAGPipeline
from study.services.vectorstore.base import RetrievalScope

from .schemas import (
    ConstraintAnalysis,
    Course,
    StudyBlock,
    StudyPlan,
    StudyPlanInput,
    parse_hhmm,
)

logger = logging.getLogger(__name__)

PLANNER_AGENT = 'study-planner'
GROUNDING_CHUNKS = 3
URGENT_WITHIN_DAYS = 7

_FENCE = re.compile(r'^```[a-zA-Z]*\s*(.*?)\s*```$', re.DOTALL)


class StudyPlanner:
    """Builds a :class:`StudyPlan` for one student.

    Each course is grounded with a RAG answer over the student's notes for
    that course. A course without indexed notes is planned ungrounded; any
    other failure (budget, providers) propagates to the caller.
    """

    def __init__(
        self,
        rag: RAGPipeline,
        agents: AgentService,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.rag = rag
        self.agents = agents
        self._clock = clock or timezone.now

    def plan(self, plan_input: StudyPlanInput) -> StudyPlan:
        now = self._clock()
        analysis = self.analyze_constraints(plan_input, now)
        notes, sources = self._ground_courses(plan_input)

        result = self.agents.run_agent(
            PLANNER_AGENT,
            task_input=self.build_prompt(plan_input, analysis),
            context='\n\n'.join(notes.values()) or None,
            user_id=plan_input.user_id,
        )
        data = parse_plan_reply(result.output_text)
        plan = self._build_plan(data, plan_input, analysis, now, sources)
        plan.grounded_courses = list(notes)

        logger.info(
            'Study plan %s for user %s: %d block(s), %.1fh, urgency=%s, %d grounded course(s)',
            plan.plan_id, plan.user_id, len(plan.blocks), plan.total_hours,
            analysis.deadline_urgency, len(plan.grounded_courses),
        )
        return plan

    # ------------------------------------------------------------------
    # Constraint analysis
    # ------------------------------------------------------------------

    def analyze_constraints(self, plan_input: StudyPlanInput, now: Optional[datetime] = None) -> ConstraintAnalysis:
        now = now or self._clock()
        weekly_hours = sum(slot.hours for slot in plan_input.available_time_slots)
        available = weekly_hours * plan_input.plan_duration / 7

        course_hours = sum(s.estimated_hours for c in plan_input.courses for s in c.subjects)
        deadline_hours = sum(d.estimated_hours for d in plan_input.deadlines)
        required = max(course_hours, deadline_hours)

        urgent = 0
        for deadline in plan_input.deadlines:
            due = deadline.due_date
            if timezone.is_naive(due):
                due = timezone.make_aware(due)
            if (due - now) <= timedelta(days=URGENT_WITHIN_DAYS):
                urgent += 1
        if urgent >= 3:
            urgency = 'high'
        elif urgent >= 1:
            urgency = 'medium'
        else:
            urgency = 'low'

        return ConstraintAnalysis(
            total_available_hours=round(available, 2),
            total_required_hours=round(required, 2),
            utilization_rate=round(required / available, 3) if available else 0.0,
            deadline_urgency=urgency,
        )

    # ------------------------------------------------------------------
    # Grounding
    # ------------------------------------------------------------------

    def _ground_courses(self, plan_input: StudyPlanInput) -> tuple[dict[str, str], dict[str, list[str]]]:
        notes: dict[str, str] = {}
        sources: dict[str, list[str]] = {}
        for course in plan_input.courses:
            scope = RetrievalScope(user_id=plan_input.user_id, course_id=course.id)
            try:
                answer = self.rag.answer_with_sources(
                    self._grounding_question(course), scope, max_chunks=GROUNDING_CHUNKS,
                )
            except NoContentAvailable:
                logger.info('No notes indexed for course %s; planning it ungrounded', course.id)
                continue
            notes[course.id] = f'Notes for {course.name}:\n{answer.answer.strip()}'
            sources[course.id] = answer.sources
        return notes, sources

    @staticmethod
    def _grounding_question(course: Course) -> str:
        subjects = ', '.join(s.name for s in course.subjects) or course.name
        return (
            f'Summarize the key topics I still need to study for {course.name} '
            f'({subjects}), and what is hardest.'
        )

    # ------------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------------

    @staticmethod
    def build_prompt(plan_input: StudyPlanInput, analysis: ConstraintAnalysis) -> str:
        courses_info = '\n\n'.join(
            f'{course.name} [{course.id}] ({course.credits} credits, difficulty: {course.difficulty}/5)\n'
            + '\n'.join(
                f'  - {subject.name} [{subject.id}]: {subject.estimated_hours}h, priority: {subject.priority}/5'
                for subject in course.subjects
            )
            for course in plan_input.courses
        )
        deadlines_info = '\n'.join(
            f'{d.title}: {d.due_date.date().isoformat()} ({d.estimated_hours}h, importance: {d.importance}/5)'
            for d in sorted(plan_input.deadlines, key=lambda d: d.due_date)
        ) or 'None'
        slots_info = '\n'.join(
            f'{slot.day_name}: {slot.start_time}-{slot.end_time} (max cognitive load: {slot.max_cognitive_load}/5)'
            for slot in plan_input.available_time_slots
        )
        prefs = plan_input.preferences
        lines = [
            f'Generate a {plan_input.plan_duration}-day study plan with the following constraints:',
            '',
            'COURSES AND SUBJECTS:',
            courses_info,
            '',
            'UPCOMING DEADLINES:',
            deadlines_info,
            '',
            'AVAILABLE TIME SLOTS:',
            slots_info,
            '',
            'PREFERENCES:',
            f"- Preferred study methods: {', '.join(prefs.preferred_study_methods) or 'any'}",
            f'- Optimal session length: {prefs.optimal_session_length} minutes',
            f"- Peak hours: {', '.join(prefs.peak_hours) or 'none'}",
            f'- Break frequency: every {prefs.break_frequency} minutes',
            f"- Avoid: {', '.join(prefs.avoidance_patterns) or 'nothing'}",
        ]
        if plan_input.performance_history:
            lines += ['', 'PAST PERFORMANCE:']
            lines += [
                f'- {p.subject_id}: retention {p.retention_rate:.0%}, focus {p.average_focus_score}/5, '
                f'completion {p.completion_rate:.0%}, {p.time_per_unit} min/unit'
                for p in plan_input.performance_history
            ]
        lines += [
            '',
            'CONSTRAINTS ANALYSIS:',
            f'- Total available hours: {analysis.total_available_hours}',
            f'- Total required hours: {analysis.total_required_hours}',
            f'- Utilization rate: {analysis.utilization_rate * 100:.1f}%',
            f'- Deadline urgency: {analysis.deadline_urgency}',
        ]
        return '\n'.join(lines)

    # ------------------------------------------------------------------
    # Reply handling
    # ------------------------------------------------------------------

    def _build_plan(
        self,
        data: dict,
        plan_input: StudyPlanInput,
        analysis: ConstraintAnalysis,
        now: datetime,
        sources: dict[str, list[str]],
    ) -> StudyPlan:
        day_zero = now.replace(hour=0, minute=0, second=0, microsecond=0)
        course_of = {s.id: c.id for c in plan_input.courses for s in c.subjects}

        blocks = []
        for index, raw in enumerate(data['blocks']):
            if not isinstance(raw, dict):
                raise InvalidPlanResponse(f'Plan block {index} is not an object.')
            day = _int_field(raw, 'day', index)
            if not 1 <= day <= plan_input.plan_duration:
                raise InvalidPlanResponse(f'Plan block {index} has day {day} outside the plan.')
            try:
                minutes = parse_hhmm(raw.get('startTime'))
            except ValueError:
                raise InvalidPlanResponse(f'Plan block {index} has an invalid startTime.')
            duration = _int_field(raw, 'durationMinutes', index)
            if duration <= 0:
                raise InvalidPlanResponse(f'Plan block {index} has a non-positive duration.')
            subject_id = raw.get('subjectId')
            if subject_id not in course_of:
                raise InvalidPlanResponse(f'Plan block {index} references unknown subject {subject_id!r}.')

            blocks.append(StudyBlock(
                block_id=str(uuid.uuid4()),
                subject_id=subject_id,
                scheduled_start=day_zero + timedelta(days=day - 1, minutes=minutes),
                duration_minutes=duration,
                study_method=str(raw.get('studyMethod') or 'review'),
                cognitive_load=_clamp(raw.get('cognitiveLoad'), 3),
                priority=_clamp(raw.get('priority'), 3),
                topics=_str_list(raw.get('topics')),
                goals=_str_list(raw.get('goals')),
                resources=list(sources.get(course_of[subject_id], [])),
                reasoning=str(raw.get('reasoning') or ''),
            ))
        blocks.sort(key=lambda b: b.scheduled_start)

        return StudyPlan(
            plan_id=str(uuid.uuid4()),
            user_id=plan_input.user_id,
            start_date=now,
            end_date=now + timedelta(days=plan_input.plan_duration),
            blocks=blocks,
            total_hours=float(data['totalHours']),
            average_cognitive_load=float(data['averageCognitiveLoad']),
            reasoning=data['reasoning'],
            analysis=analysis,
        )


def parse_plan_reply(text: str) -> dict[str, Any]:
    """Decode the planner's JSON reply, tolerating a Markdown code fence.

    Raises:
        InvalidPlanResponse: Not JSON, or missing required keys.
    """
    body = (text or '').strip()
    fenced = _FENCE.match(body)
    if fenced:
        body = fenced.group(1)
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise InvalidPlanResponse(f'Planner reply is not valid JSON: {e}')

    if not isinstance(data, dict):
        raise InvalidPlanResponse('Planner reply must be a JSON object.')
    if not isinstance(data.get('reasoning'), str):
        raise InvalidPlanResponse('Planner reply is missing "reasoning".')
    if not isinstance(data.get('blocks'), list):
        raise InvalidPlanResponse('Planner reply is missing "blocks".')
    for key in ('totalHours', 'averageCognitiveLoad'):
        value = data.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidPlanResponse(f'Planner reply is missing numeric "{key}".')
    return data


def _int_field(raw: dict, key: str, index: int) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise InvalidPlanResponse(f'Plan block {index} has an invalid {key}.')
    return int(value)


def _clamp(value, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return max(1, min(5, int(round(value))))


def _str_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]
