import threading
import time
import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from wordquest.errors import (
    InvalidGameType,
    InvalidRequest,
    InvalidStatusTransition,
    StudentNotAssigned,
    TaskAlreadyCompleted,
    Unauthorized,
)
from wordquest.models import AssignmentStatus, Student, Task, Teacher
from wordquest.store import TASKS, USERS
from wordquest.tasks import check_overdue

from factories import build_engine


class TaskTrackerTest(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = build_engine()
        self.tasks = self.engine.tasks
        self.teacher_id = self.engine.teacher.id
        self.student_id = self.engine.student.id
        self.other = Student(username="arun")
        self.engine.store.insert(USERS, self.other)

    def _create(self, due_in: timedelta = timedelta(days=7), **options) -> Task:
        return self.tasks.create_task(
            self.teacher_id,
            "Ancient measures",
            "Practice volume words",
            "mcq",
            datetime.now() + due_in,
            **options,
        )

    def _assigned(self, **options) -> Task:
        task = self._create(**options)
        self.tasks.assign_to_students(task.id, self.teacher_id, [self.student_id, self.other.id])
        return self.engine.store.get(TASKS, task.id)

    def _status(self, task_id: str, student_id: str) -> AssignmentStatus:
        task = self.engine.store.get(TASKS, task_id)
        return next(a for a in task.assigned_students if a.student_id == student_id).status

    def test_create_task(self) -> None:
        task = self._create(word_count=20, points_reward=150)

        stored = self.engine.store.get(TASKS, task.id)
        self.assertEqual(stored.word_count, 20)
        self.assertEqual(stored.points_reward, 150)
        teacher = self.engine.store.get(USERS, self.teacher_id)
        self.assertEqual(teacher.assigned_tasks, [task.id])

    def test_concurrent_creates_keep_every_task_on_the_teacher(self) -> None:
        store = self.engine.store
        original_get = store.get

        def slow_get(collection, doc_id):
            doc = original_get(collection, doc_id)
            if doc_id == self.teacher_id:
                time.sleep(0.05)
            return doc

        created = []
        with mock.patch.object(store, "get", side_effect=slow_get):
            threads = [
                threading.Thread(target=lambda: created.append(self._create())) for _ in range(2)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        teacher = store.get(USERS, self.teacher_id)
        self.assertEqual(len(created), 2)
        self.assertEqual(sorted(teacher.assigned_tasks), sorted(t.id for t in created))

    def test_create_task_validation(self) -> None:
        with self.assertRaises(Unauthorized):
            self.tasks.create_task(
                self.student_id, "t", "d", "mcq", datetime.now() + timedelta(days=1)
            )
        with self.assertRaises(InvalidGameType):
            self.tasks.create_task(
                self.teacher_id, "t", "d", "crossword", datetime.now() + timedelta(days=1)
            )
        with self.assertRaises(InvalidRequest):
            self._create(word_count=4)
        with self.assertRaises(InvalidRequest):
            self._create(word_count=51)

    def test_aware_due_dates_are_stored_naive(self) -> None:
        task = self.tasks.create_task(
            self.teacher_id, "t", "d", "mixed", datetime.now(timezone.utc) + timedelta(days=1)
        )
        self.assertIsNone(task.due_date.tzinfo)

    def test_only_the_owner_manages_a_task(self) -> None:
        task = self._create()
        intruder = Teacher(username="ms_devi")
        self.engine.store.insert(USERS, intruder)

        with self.assertRaises(Unauthorized):
            self.tasks.update_task(task.id, intruder.id, title="Mine now")
        with self.assertRaises(Unauthorized):
            self.tasks.assign_to_students(task.id, intruder.id, [self.student_id])

    def test_update_task(self) -> None:
        task = self._create()

        updated = self.tasks.update_task(task.id, self.teacher_id, title="Week 2", word_count=15)

        self.assertEqual(updated.title, "Week 2")
        self.assertEqual(self.engine.store.get(TASKS, task.id).word_count, 15)
        with self.assertRaises(InvalidRequest):
            self.tasks.update_task(task.id, self.teacher_id, average_score=5)

    def test_assign_deduplicates_and_validates(self) -> None:
        task = self._create()

        first = self.tasks.assign_to_students(
            task.id, self.teacher_id, [self.student_id, self.student_id]
        )
        second = self.tasks.assign_to_students(
            task.id, self.teacher_id, [self.student_id, self.other.id]
        )

        self.assertEqual([a.student_id for a in first], [self.student_id])
        self.assertEqual([a.student_id for a in second], [self.other.id])
        task = self.engine.store.get(TASKS, task.id)
        self.assertEqual(task.total_assigned, 2)
        self.assertEqual(len(task.assigned_students), 2)
        with self.assertRaises(InvalidRequest):
            self.tasks.assign_to_students(task.id, self.teacher_id, [self.teacher_id])
        with self.assertRaises(InvalidRequest):
            self.tasks.assign_to_students(task.id, self.teacher_id, [])

    def test_submit_task_awards_points_once(self) -> None:
        task = self._assigned(points_reward=120)

        result = self.tasks.submit_task(task.id, self.student_id, score=70)

        self.assertEqual(result.points_earned, 120)
        student = self.engine.store.get(USERS, self.student_id)
        self.assertEqual(student.points, 120)
        self.assertEqual(student.level, 2)
        self.assertEqual(self._status(task.id, self.student_id), AssignmentStatus.COMPLETED)
        stored = self.engine.store.get(TASKS, task.id)
        self.assertEqual(stored.total_completed, 1)
        self.assertEqual(stored.average_score, 70)

        with self.assertRaises(TaskAlreadyCompleted):
            self.tasks.submit_task(task.id, self.student_id, score=100)
        self.assertEqual(self.engine.store.get(USERS, self.student_id).points, 120)

    def test_submit_requires_assignment(self) -> None:
        task = self._create()
        with self.assertRaises(StudentNotAssigned):
            self.tasks.submit_task(task.id, self.student_id, score=50)
        with self.assertRaises(Unauthorized):
            self.tasks.submit_task(task.id, self.teacher_id, score=50)

    def test_submit_with_game_session_score(self) -> None:
        task = self._assigned()
        games = self.engine.games
        session = games.start_session(self.student_id, "mcq", word_count=5)
        games.submit_answer(session.id, self.student_id, 0, session.questions[0].correct_answer)
        completion = games.complete_game(session.id, self.student_id)

        result = self.tasks.submit_task(task.id, self.student_id, game_session_id=session.id)

        self.assertEqual(result.score, completion.final_score)

    def test_average_over_completed_assignments(self) -> None:
        task = self._assigned()

        self.tasks.update_student_progress(
            task.id, self.teacher_id, self.student_id, "completed", score=80, feedback="Good"
        )
        self.tasks.submit_task(task.id, self.other.id, score=100)

        stored = self.engine.store.get(TASKS, task.id)
        self.assertEqual(stored.average_score, 90)
        self.assertEqual(stored.total_completed, 2)
        self.assertEqual(stored.assigned_students[0].feedback, "Good")
        # Teacher-driven completion pays the student too.
        self.assertEqual(self.engine.store.get(USERS, self.student_id).points, 100)

    def test_teacher_transitions(self) -> None:
        task = self._assigned()

        self.tasks.update_student_progress(task.id, self.teacher_id, self.student_id, "in_progress")
        with self.assertRaises(InvalidStatusTransition):
            self.tasks.update_student_progress(
                task.id, self.teacher_id, self.student_id, "assigned"
            )
        with self.assertRaises(InvalidRequest):
            self.tasks.update_student_progress(
                task.id, self.teacher_id, self.student_id, "finished"
            )
        self.tasks.update_student_progress(
            task.id, self.teacher_id, self.student_id, "completed", score=60
        )
        with self.assertRaises(InvalidStatusTransition):
            self.tasks.update_student_progress(
                task.id, self.teacher_id, self.student_id, "in_progress"
            )
        # Re-grading a completed assignment keeps a single completion.
        self.tasks.update_student_progress(
            task.id, self.teacher_id, self.student_id, "completed", score=75
        )

        stored = self.engine.store.get(TASKS, task.id)
        self.assertEqual(stored.total_completed, 1)
        self.assertEqual(stored.average_score, 75)
        self.assertEqual(self.engine.store.get(USERS, self.student_id).points, 100)

    def test_overdue_keeps_completed_assignments(self) -> None:
        task = self._assigned()
        self.tasks.submit_task(task.id, self.student_id, score=90)

        self.tasks.update_task(task.id, self.teacher_id, due_date=datetime.now() - timedelta(hours=1))

        self.assertEqual(self._status(task.id, self.student_id), AssignmentStatus.COMPLETED)
        self.assertEqual(self._status(task.id, self.other.id), AssignmentStatus.OVERDUE)
        self.assertEqual(self.tasks.sweep_overdue(), 0)

        # Late work is still accepted.
        self.tasks.submit_task(task.id, self.other.id, score=40)
        self.assertEqual(self._status(task.id, self.other.id), AssignmentStatus.COMPLETED)

    def test_sweep_overdue(self) -> None:
        past = self._assigned()
        self._assigned()
        stored = self.engine.store.get(TASKS, past.id)
        stored.due_date = datetime.now() - timedelta(days=1)
        self.engine.store.update(TASKS, stored)

        self.assertEqual(self.tasks.sweep_overdue(), 1)
        self.assertEqual(self._status(past.id, self.student_id), AssignmentStatus.OVERDUE)

    def test_check_overdue_counts_flips(self) -> None:
        task = self._assigned()
        now = task.due_date + timedelta(seconds=1)

        self.assertEqual(check_overdue(task, now=task.due_date), 0)
        self.assertEqual(check_overdue(task, now=now), 2)
        self.assertEqual(check_overdue(task, now=now), 0)

    def test_statistics(self) -> None:
        task = self._assigned()
        self.tasks.submit_task(task.id, self.student_id, score=100)

        stats = self.tasks.get_statistics(task.id, self.teacher_id)

        self.assertEqual(stats.total, 2)
        self.assertEqual(stats.completed, 1)
        self.assertEqual(stats.not_started, 1)
        self.assertEqual(stats.completion_rate, 50)
        self.assertEqual(stats.average_score, 100)


if __name__ == "__main__":
    unittest.main()
