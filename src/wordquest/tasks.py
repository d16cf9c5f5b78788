import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ValidationError

from .errors import (
    InvalidGameType,
    InvalidRequest,
    InvalidStatusTransition,
    SessionNotFound,
    StudentNotAssigned,
    TaskAlreadyCompleted,
    TaskNotFound,
    Unauthorized,
    UserNotFound,
)
from .models import (
    Assignment,
    AssignmentStatus,
    GameType,
    Role,
    SessionStatus,
    Task,
    UserBase,
)
from .progression import update_points
from .store import (
    SESSIONS,
    TASKS,
    USERS,
    AggregateLocks,
    DocumentStore,
    UnitOfWork,
    lock_key,
)

logger = logging.getLogger(__name__)

TASK_GAME_TYPES = {g.value for g in GameType} | {"mixed"}
EDITABLE_FIELDS = {
    "title",
    "description",
    "game_type",
    "difficulty",
    "word_count",
    "domain",
    "period",
    "time_limit",
    "points_reward",
    "due_date",
    "instructions",
    "is_active",
}

# Completed is terminal; an overdue assignment may still be completed late.
ALLOWED_TRANSITIONS = {
    AssignmentStatus.ASSIGNED: {
        AssignmentStatus.ASSIGNED,
        AssignmentStatus.IN_PROGRESS,
        AssignmentStatus.COMPLETED,
        AssignmentStatus.OVERDUE,
    },
    AssignmentStatus.IN_PROGRESS: {
        AssignmentStatus.IN_PROGRESS,
        AssignmentStatus.COMPLETED,
        AssignmentStatus.OVERDUE,
    },
    AssignmentStatus.OVERDUE: {AssignmentStatus.OVERDUE, AssignmentStatus.COMPLETED},
    AssignmentStatus.COMPLETED: {AssignmentStatus.COMPLETED},
}


class TaskStatistics(BaseModel):
    total: int
    completed: int
    in_progress: int
    overdue: int
    not_started: int
    completion_rate: float
    average_score: float


class SubmissionResult(BaseModel):
    task_id: str
    points_earned: int
    score: float


def _naive(moment: datetime) -> datetime:
    """Due dates are kept as naive local time, like ``datetime.now()``."""
    if moment.tzinfo is not None:
        return moment.astimezone().replace(tzinfo=None)
    return moment


def check_overdue(task: Task, now: Optional[datetime] = None) -> int:
    """Flips open assignments of a past-due task to overdue; returns the flip count."""
    now = now or datetime.now()
    if task.due_date >= now:
        return 0
    flipped = 0
    for assignment in task.assigned_students:
        if assignment.status not in (AssignmentStatus.COMPLETED, AssignmentStatus.OVERDUE):
            assignment.status = AssignmentStatus.OVERDUE
            flipped += 1
    return flipped


def recompute_average(task: Task) -> None:
    scores = [
        a.score for a in task.assigned_students if a.status == AssignmentStatus.COMPLETED
    ]
    if scores:
        task.average_score = sum(scores) / len(scores)


class TaskTracker:
    """Teacher-issued tasks and the per-student assignment state machine."""

    def __init__(self, store: DocumentStore, locks: Optional[AggregateLocks] = None):
        self.store = store
        self.locks = locks or AggregateLocks()

    # --- Lookups ---
    def _get_user(self, user_id: str) -> UserBase:
        user = self.store.get(USERS, user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        return user

    def _get_task(self, task_id: str) -> Task:
        task = self.store.get(TASKS, task_id)
        if task is None:
            raise TaskNotFound("Task not found")
        return task

    def _owned_task(self, task_id: str, teacher_id: str) -> Task:
        task = self._get_task(task_id)
        if task.teacher_id != teacher_id:
            raise Unauthorized("You can only manage your own tasks")
        return task

    # --- Task management ---
    def create_task(
        self,
        teacher_id: str,
        title: str,
        description: str,
        game_type: str,
        due_date: datetime,
        **options: Any,
    ) -> Task:
        if game_type not in TASK_GAME_TYPES:
            raise InvalidGameType("Invalid game type. Must be match, mcq, hints, jumbled, or mixed")
        unknown = set(options) - EDITABLE_FIELDS
        if unknown:
            raise InvalidRequest(f"Unknown task fields: {sorted(unknown)}")

        try:
            task = Task(
                title=title,
                description=description,
                teacher_id=teacher_id,
                game_type=game_type,
                due_date=_naive(due_date),
                **options,
            )
        except ValidationError as e:
            raise InvalidRequest(str(e)) from None

        check_overdue(task)
        with self.locks.hold(lock_key(USERS, teacher_id)):
            teacher = self._get_user(teacher_id)
            if teacher.role != Role.TEACHER:
                raise Unauthorized("Only teachers can create tasks")
            teacher.assigned_tasks.append(task.id)
            with UnitOfWork(self.store) as uow:
                uow.add(TASKS, task)
                uow.add(USERS, teacher)
        logger.info(f"Task created: {task.id} [Teacher: {teacher_id}, Game: {game_type}]")
        return task

    def update_task(self, task_id: str, teacher_id: str, **changes: Any) -> Task:
        with self.locks.hold(lock_key(TASKS, task_id)):
            task = self._owned_task(task_id, teacher_id)
            unknown = set(changes) - EDITABLE_FIELDS
            if unknown:
                raise InvalidRequest(f"Unknown task fields: {sorted(unknown)}")
            if "game_type" in changes and changes["game_type"] not in TASK_GAME_TYPES:
                raise InvalidGameType("Invalid game type. Must be match, mcq, hints, jumbled, or mixed")
            if changes.get("due_date") is not None:
                changes["due_date"] = _naive(changes["due_date"])

            try:
                updated = Task.model_validate({**task.model_dump(), **changes})
            except ValidationError as e:
                raise InvalidRequest(str(e)) from None

            if updated.due_date != task.due_date:
                check_overdue(updated)
            self.store.update(TASKS, updated)
        return updated

    def assign_to_students(
        self, task_id: str, teacher_id: str, student_ids: Iterable[str]
    ) -> List[Assignment]:
        """Adds an assignment per new student; returns the assignments created."""
        student_ids = list(dict.fromkeys(student_ids))
        if not student_ids:
            raise InvalidRequest("Student IDs array is required")

        with self.locks.hold(lock_key(TASKS, task_id)):
            task = self._owned_task(task_id, teacher_id)
            wanted = set(student_ids)
            students = self.store.find(USERS, where=lambda u: u.id in wanted, role=Role.STUDENT)
            if len(students) != len(student_ids):
                raise InvalidRequest("Some student IDs are invalid")

            already = {a.student_id for a in task.assigned_students}
            created = [Assignment(student_id=sid) for sid in student_ids if sid not in already]
            task.assigned_students.extend(created)
            task.total_assigned += len(created)
            self.store.update(TASKS, task)

        logger.info(f"Task {task_id}: assigned {len(created)} students")
        return created

    # --- Assignment state machine ---
    def _transition(
        self,
        task: Task,
        student_id: str,
        status: str,
        actor: Role,
        uow: UnitOfWork,
        score: Optional[float] = None,
        feedback: Optional[str] = None,
    ) -> bool:
        """Moves one assignment to ``status``; returns True when it just completed.

        Entering completed stamps ``completed_at``, counts the completion once
        and pays the task's points to the student, whoever drove the change.
        """
        assignment = next(
            (a for a in task.assigned_students if a.student_id == student_id), None
        )
        if assignment is None:
            raise StudentNotAssigned("Student not assigned to this task")
        try:
            target = AssignmentStatus(status)
        except ValueError:
            raise InvalidRequest(f"Invalid status {status}") from None

        current = assignment.status
        if current == AssignmentStatus.COMPLETED and actor == Role.STUDENT:
            raise TaskAlreadyCompleted("Task already completed")
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransition(f"Cannot move from {current.value} to {target.value}")

        completing = target == AssignmentStatus.COMPLETED and current != target
        student = self._get_user(student_id) if completing else None

        assignment.status = target
        if score is not None:
            assignment.score = score
        if feedback is not None:
            assignment.feedback = feedback
        if completing:
            assignment.completed_at = datetime.now()
            task.total_completed += 1
            update_points(student, task.points_reward)
            uow.add(USERS, student)
        recompute_average(task)
        uow.add(TASKS, task)
        return completing

    def update_student_progress(
        self,
        task_id: str,
        teacher_id: str,
        student_id: str,
        status: str,
        score: Optional[float] = None,
        feedback: Optional[str] = None,
    ) -> Task:
        with self.locks.hold(lock_key(TASKS, task_id), lock_key(USERS, student_id)):
            task = self._owned_task(task_id, teacher_id)
            with UnitOfWork(self.store) as uow:
                self._transition(task, student_id, status, Role.TEACHER, uow, score, feedback)
        logger.info(f"Task {task_id}: student {student_id} -> {status}")
        return task

    def submit_task(
        self,
        task_id: str,
        student_id: str,
        score: Optional[float] = None,
        game_session_id: Optional[str] = None,
    ) -> SubmissionResult:
        student = self._get_user(student_id)
        if student.role != Role.STUDENT:
            raise Unauthorized("Only students can submit tasks")

        if score is None and game_session_id:
            session = self.store.get(SESSIONS, game_session_id)
            if session is None or session.user_id != student_id:
                raise SessionNotFound("Game session not found")
            if session.status == SessionStatus.COMPLETED:
                score = session.score

        with self.locks.hold(lock_key(TASKS, task_id), lock_key(USERS, student_id)):
            task = self._get_task(task_id)
            with UnitOfWork(self.store) as uow:
                self._transition(
                    task, student_id, AssignmentStatus.COMPLETED, Role.STUDENT, uow, score or 0
                )
        logger.info(f"Task {task_id}: submitted by {student_id}")
        return SubmissionResult(task_id=task.id, points_earned=task.points_reward, score=score or 0)

    # --- Overdue & statistics ---
    def sweep_overdue(self) -> int:
        """Runs the overdue check over every active task; returns how many changed."""
        updated = 0
        for task in self.store.find(TASKS, is_active=True):
            with self.locks.hold(lock_key(TASKS, task.id)):
                fresh = self._get_task(task.id)
                if check_overdue(fresh):
                    self.store.update(TASKS, fresh)
                    updated += 1
        logger.info(f"Overdue sweep updated {updated} tasks")
        return updated

    def get_statistics(self, task_id: str, teacher_id: str) -> TaskStatistics:
        task = self._owned_task(task_id, teacher_id)
        counts: Dict[AssignmentStatus, int] = {status: 0 for status in AssignmentStatus}
        for assignment in task.assigned_students:
            counts[assignment.status] += 1
        total = len(task.assigned_students)
        completed = counts[AssignmentStatus.COMPLETED]
        return TaskStatistics(
            total=total,
            completed=completed,
            in_progress=counts[AssignmentStatus.IN_PROGRESS],
            overdue=counts[AssignmentStatus.OVERDUE],
            not_started=counts[AssignmentStatus.ASSIGNED],
            completion_rate=(completed / total) * 100 if total else 0,
            average_score=task.average_score,
        )

