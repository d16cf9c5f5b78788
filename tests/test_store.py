import logging
import os
import tempfile
import unittest

from wordquest.database import get_db_connection, init_db
from wordquest.log_handler import SQLiteHandler
from wordquest.models import Student, Task
from wordquest.store import (
    TASKS,
    USERS,
    WORDS,
    AggregateLocks,
    InMemoryStore,
    SQLiteStore,
    UnitOfWork,
    lock_key,
)

from factories import make_word


class InMemoryStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()

    def test_reads_are_copies(self) -> None:
        student = Student(username="meena")
        self.store.insert(USERS, student)

        loaded = self.store.get(USERS, student.id)
        loaded.points = 500

        self.assertEqual(self.store.get(USERS, student.id).points, 0)

    def test_find_combines_filters_and_predicate(self) -> None:
        self.store.insert(WORDS, make_word("ulakku", "a", domain="Volume"))
        self.store.insert(WORDS, make_word("nazhigai", "b", domain="Time"))
        self.store.insert(WORDS, make_word("padi", "c", domain="Volume", difficulty="Hard"))

        volume = self.store.find(WORDS, domain="Volume")
        hard_volume = self.store.find(WORDS, where=lambda w: w.difficulty == "Hard", domain="Volume")

        self.assertEqual([w.word for w in volume], ["ulakku", "padi"])
        self.assertEqual([w.word for w in hard_volume], ["padi"])
        self.assertEqual(self.store.count(WORDS, domain="Time"), 1)

    def test_sample_is_shorter_when_pool_is_small(self) -> None:
        self.store.insert(WORDS, make_word("ulakku", "a"))
        self.store.insert(WORDS, make_word("padi", "b"))

        self.assertEqual(len(self.store.sample(WORDS, 5)), 2)
        self.assertEqual(self.store.sample(WORDS, 5, domain="Food"), [])

    def test_unit_of_work_commits_on_clean_exit(self) -> None:
        student = Student(username="meena")
        word = make_word("ulakku", "a")

        with UnitOfWork(self.store) as uow:
            uow.add(USERS, student)
            uow.add(WORDS, word)
            self.assertIsNone(self.store.get(USERS, student.id))

        self.assertIsNotNone(self.store.get(USERS, student.id))
        self.assertIsNotNone(self.store.get(WORDS, word.id))

    def test_unit_of_work_drops_writes_on_error(self) -> None:
        student = Student(username="meena")
        self.store.insert(USERS, student)

        with self.assertRaises(RuntimeError):
            with UnitOfWork(self.store) as uow:
                student.points = 100
                uow.add(USERS, student)
                raise RuntimeError("boom")

        self.assertEqual(self.store.get(USERS, student.id).points, 0)

    def test_staging_the_same_document_twice_keeps_the_last_version(self) -> None:
        student = Student(username="meena")
        uow = UnitOfWork(self.store)
        uow.add(USERS, student)
        student = student.model_copy(update={"points": 30})
        uow.add(USERS, student)
        uow.commit()

        self.assertEqual(self.store.get(USERS, student.id).points, 30)


class AggregateLocksTest(unittest.TestCase):
    def test_hold_is_reentrant_and_ignores_empty_keys(self) -> None:
        locks = AggregateLocks()
        with locks.hold(lock_key(USERS, "u1"), lock_key(USERS, None)):
            with locks.hold(lock_key(USERS, "u1"), "catalog"):
                pass

    def test_lock_key(self) -> None:
        self.assertEqual(lock_key(TASKS, "t1"), "tasks:t1")
        self.assertIsNone(lock_key(TASKS, None))


class SQLiteStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmp.name, "db", "test.db")
        self.store = SQLiteStore(self.db_path)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_round_trips_users_with_their_role(self) -> None:
        student = Student(username="meena", points=120, level=2)
        self.store.insert(USERS, student)

        loaded = self.store.get(USERS, student.id)

        self.assertIsInstance(loaded, Student)
        self.assertEqual(loaded.points, 120)
        self.assertIsNone(self.store.get(USERS, "missing"))

    def test_update_keeps_insertion_order(self) -> None:
        first = make_word("ulakku", "a")
        second = make_word("padi", "b")
        self.store.insert(WORDS, first)
        self.store.insert(WORDS, second)

        first.times_used = 3
        self.store.update(WORDS, first)

        words = self.store.find(WORDS)
        self.assertEqual([w.word for w in words], ["ulakku", "padi"])
        self.assertEqual(words[0].times_used, 3)

    def test_write_many_spans_collections(self) -> None:
        student = Student(username="meena")
        task = Task(
            title="Week 1",
            description="Measures",
            teacher_id="t1",
            game_type="mcq",
            due_date="2030-01-01T00:00:00",
        )
        with UnitOfWork(self.store) as uow:
            uow.add(USERS, student)
            uow.add(TASKS, task)

        self.assertEqual(self.store.count(USERS), 1)
        self.assertEqual(self.store.get(TASKS, task.id).title, "Week 1")


class SQLiteHandlerTest(unittest.TestCase):
    def test_writes_records_to_log_table(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            db_path = os.path.join(tmp, "logs.db")
            init_db(db_path)
            logger = logging.getLogger("wordquest.tests.sqlite_handler")
            handler = SQLiteHandler(db_path)
            logger.addHandler(handler)
            try:
                logger.warning("Vocabulary directory is empty")
            finally:
                logger.removeHandler(handler)

            conn = get_db_connection(db_path)
            rows = conn.execute("SELECT level, logger, message FROM logs").fetchall()
            conn.close()

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["level"], "WARNING")
        self.assertEqual(rows[0]["logger"], "wordquest.tests.sqlite_handler")
        self.assertIn("Vocabulary directory is empty", rows[0]["message"])


if __name__ == "__main__":
    unittest.main()
