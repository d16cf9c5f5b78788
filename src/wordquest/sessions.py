import logging
import math
import random
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

import pandas as pd
from pydantic import BaseModel

from .config import settings
from .eligibility import AwardResult, EligibilityEngine
from .errors import (
    AnswerAlreadySubmitted,
    InsufficientWords,
    InvalidGameType,
    InvalidQuestionIndex,
    InvalidRequest,
    SessionNotActive,
    SessionNotFound,
    Unauthorized,
    UserNotFound,
)
from .generators import QuizFactory, normalize_answer
from .models import (
    Difficulty,
    GameSession,
    GameType,
    HintRecord,
    Question,
    Role,
    SessionStatus,
    Student,
    UserBase,
    Word,
)
from .progression import record_answers, update_game_stats, update_points
from .store import (
    SESSIONS,
    USERS,
    WORDS,
    AggregateLocks,
    DocumentStore,
    UnitOfWork,
    lock_key,
)
from .vocabulary import WordCatalog

logger = logging.getLogger(__name__)

NO_MORE_HINTS = "No more hints available"
CATALOG_LOCK = "catalog"


# --- Results ---
class AnswerResult(BaseModel):
    is_correct: bool
    correct_answer: str
    score: int
    correct_answers: int
    wrong_answers: int


class HintResult(BaseModel):
    hint: str
    hints_used: List[str]


class EarnedRewardSummary(BaseModel):
    reward_id: str
    name: str
    description: str


class UserStats(BaseModel):
    total_points: int
    level: int
    total_games_played: int


class CompletionResult(BaseModel):
    final_score: int
    points_earned: int
    correct_answers: int
    wrong_answers: int
    total_questions: int
    accuracy: float
    new_achievements: List[AwardResult]
    earned_rewards: List[EarnedRewardSummary]
    user_stats: UserStats


# --- Scoring ---
def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_score(correct: int, total: int, time_spent: int) -> int:
    base_score = correct * 10
    time_bonus = max(0, 300 - time_spent) * 0.1
    accuracy_bonus = (correct / total) * 50 if total else 0
    return round_half_up(base_score + time_bonus + accuracy_bonus)


def time_limit(game_type: str) -> int:
    if game_type == GameType.HINTS:
        return settings.HINTS_TIME_LIMIT
    return settings.GAME_TIME_LIMIT


def hint_candidates(word: Word) -> List[str]:
    return [
        f"Domain: {word.domain.value}",
        f"Period: {word.period.value}",
        f"Modern equivalent: {word.modern_equivalent}",
        f"Status: {word.status.value}",
    ]


# --- Service Layer: Game Sessions ---
class GameService:
    """Owns the game session lifecycle and its side effects on completion."""

    def __init__(
        self,
        store: DocumentStore,
        catalog: WordCatalog,
        eligibility: EligibilityEngine,
        locks: Optional[AggregateLocks] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.eligibility = eligibility
        self.locks = locks or AggregateLocks()

    # --- Lookups ---
    def _get_user(self, user_id: str) -> UserBase:
        user = self.store.get(USERS, user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        return user

    def _get_student(self, user_id: str) -> Student:
        user = self._get_user(user_id)
        if user.role != Role.STUDENT:
            raise Unauthorized("Only students can play games")
        return user

    def _get_session(self, session_id: str, user_id: str) -> GameSession:
        session = self.store.get(SESSIONS, session_id)
        if session is None:
            raise SessionNotFound("Game session not found")
        if session.user_id != user_id:
            raise Unauthorized("Unauthorized")
        return session

    @staticmethod
    def _require_active(session: GameSession) -> None:
        if session.status != SessionStatus.ACTIVE:
            raise SessionNotActive("Game session is not active")

    @staticmethod
    def _question(session: GameSession, question_index: int) -> Question:
        if not 0 <= question_index < session.total_questions:
            raise InvalidQuestionIndex("Invalid question index")
        return session.questions[question_index]

    # --- Lifecycle ---
    def start_session(
        self,
        user_id: str,
        game_type: str,
        difficulty: Optional[str] = None,
        word_count: Optional[int] = None,
        domain: Optional[str] = None,
        period: Optional[str] = None,
    ) -> GameSession:
        self._get_student(user_id)
        generator = QuizFactory.create(game_type, self.catalog)
        if difficulty is not None and difficulty not in {d.value for d in Difficulty}:
            raise InvalidRequest(f"Invalid difficulty {difficulty}")

        requested = settings.DEFAULT_WORD_COUNT if word_count is None else word_count
        if requested < 1:
            raise InvalidRequest("Word count must be at least 1")

        words = self.catalog.random_words(requested, difficulty, domain, period)
        if len(words) < requested:
            raise InsufficientWords(f"Not enough words available. Found {len(words)} words.")

        questions = generator.generate(words)
        session = GameSession(
            user_id=user_id,
            game_type=game_type,
            difficulty=difficulty or Difficulty.MEDIUM,
            total_questions=len(questions),
            questions=questions,
        )
        self.store.insert(SESSIONS, session)
        logger.info(
            f"New session: {session.id} [User: {user_id}, Game: {game_type}, Words: {requested}]"
        )
        return session

    def submit_answer(
        self,
        session_id: str,
        user_id: str,
        question_index: int,
        answer: Union[str, Mapping[str, str]],
        time_spent: int = 0,
    ) -> AnswerResult:
        with self.locks.hold(lock_key(SESSIONS, session_id)):
            session = self._get_session(session_id, user_id)
            self._require_active(session)
            question = self._question(session, question_index)
            if question.answered:
                raise AnswerAlreadySubmitted("Answer already recorded for this question")

            question.user_answer = normalize_answer(answer)
            question.time_spent = max(0, int(time_spent))
            question.is_correct = question.user_answer == question.correct_answer
            if question.is_correct:
                session.correct_answers += 1
            else:
                session.wrong_answers += 1
            session.time_spent = sum(q.time_spent for q in session.questions)
            self.store.update(SESSIONS, session)

        return AnswerResult(
            is_correct=question.is_correct,
            correct_answer=question.correct_answer,
            score=session.score,
            correct_answers=session.correct_answers,
            wrong_answers=session.wrong_answers,
        )

    def use_hint(self, session_id: str, user_id: str, question_index: int) -> HintResult:
        with self.locks.hold(lock_key(SESSIONS, session_id)):
            session = self._get_session(session_id, user_id)
            if session.game_type != GameType.HINTS:
                raise InvalidGameType("Hints are only available for hints game")
            self._require_active(session)
            question = self._question(session, question_index)
            word = self.catalog.get(question.word_id)

            shown = [h.hint_text for h in session.hints_used if h.question_index == question_index]
            unused = [h for h in hint_candidates(word) if h not in shown]
            if not unused:
                return HintResult(hint=NO_MORE_HINTS, hints_used=shown)

            hint_text = random.choice(unused)
            session.hints_used.append(
                HintRecord(question_index=question_index, word_id=word.id, hint_text=hint_text)
            )
            question.hints_used += 1
            self.store.update(SESSIONS, session)

        return HintResult(hint=hint_text, hints_used=shown + [hint_text])

    def complete_game(self, session_id: str, user_id: str) -> CompletionResult:
        locked = (lock_key(SESSIONS, session_id), lock_key(USERS, user_id), CATALOG_LOCK)
        with self.locks.hold(*locked):
            session = self._get_session(session_id, user_id)
            self._require_active(session)
            user = self._get_student(user_id)

            session.score = calculate_score(
                session.correct_answers, session.total_questions, session.time_spent
            )
            session.points_earned = session.score
            session.status = SessionStatus.COMPLETED
            session.completed_at = datetime.now()

            with UnitOfWork(self.store) as uow:
                uow.add(SESSIONS, session)

                answered = [q for q in session.questions if q.answered]
                words = self.catalog.get_many(wid for q in answered for wid in q.word_ids)
                for question in answered:
                    for word_id in question.word_ids:
                        word = words.get(word_id)
                        if word is not None:
                            WordCatalog.update_usage_stats(word, question.is_correct)
                            uow.add(WORDS, word)

                update_points(user, session.points_earned)
                update_game_stats(user, True)
                record_answers(user, session.questions, words)

                new_achievements = self.eligibility.check_user_achievements(user, session, uow)
                earned_rewards = self.eligibility.grant_rewards(
                    user, session, words.values(), uow
                )
                uow.add(USERS, user)

        logger.info(
            f"Completed session: {session.id} [User: {user_id}, Score: {session.score}, "
            f"Achievements: {len(new_achievements)}, Rewards: {len(earned_rewards)}]"
        )
        return CompletionResult(
            final_score=session.score,
            points_earned=session.points_earned,
            correct_answers=session.correct_answers,
            wrong_answers=session.wrong_answers,
            total_questions=session.total_questions,
            accuracy=(session.correct_answers / session.total_questions) * 100,
            new_achievements=new_achievements,
            earned_rewards=[
                EarnedRewardSummary(reward_id=r.id, name=r.name, description=r.description)
                for r in earned_rewards
            ],
            user_stats=UserStats(
                total_points=user.points,
                level=user.level,
                total_games_played=user.total_games_played,
            ),
        )

    def abandon_game(self, session_id: str, user_id: str) -> GameSession:
        with self.locks.hold(lock_key(SESSIONS, session_id)):
            session = self._get_session(session_id, user_id)
            if session.status != SessionStatus.ACTIVE:
                raise SessionNotActive("Cannot abandon a non-active game session.")
            session.status = SessionStatus.ABANDONED
            session.completed_at = datetime.now()
            self.store.update(SESSIONS, session)
        logger.info(f"Abandoned session: {session.id} [User: {user_id}]")
        return session

    # --- Queries ---
    def get_active_session(self, user_id: str) -> GameSession:
        active = self.store.find(SESSIONS, user_id=user_id, status=SessionStatus.ACTIVE)
        if not active:
            raise SessionNotFound("No active game session found")
        return max(active, key=lambda s: s.started_at)

    def get_history(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        game_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        if page < 1 or limit < 1:
            raise InvalidRequest("Page and limit must be positive")
        filters = {"user_id": user_id}
        if game_type:
            filters["game_type"] = game_type
        sessions = sorted(
            self.store.find(SESSIONS, **filters), key=lambda s: s.started_at, reverse=True
        )
        total = len(sessions)
        start = (page - 1) * limit
        return {
            "game_sessions": sessions[start : start + limit],
            "total_pages": math.ceil(total / limit),
            "current_page": page,
            "total": total,
        }

    def get_leaderboard(self, game_type: Optional[str] = None, limit: int = 50) -> List[Dict]:
        if limit < 1:
            raise InvalidRequest("Limit must be positive")
        filters = {"status": SessionStatus.COMPLETED}
        if game_type:
            filters["game_type"] = game_type
        completed = self.store.find(SESSIONS, **filters)
        if not completed:
            return []

        df = pd.DataFrame([{"user_id": s.user_id, "score": s.score} for s in completed])
        board = (
            df.groupby("user_id")["score"]
            .agg(total_score="sum", total_games="count", avg_score="mean", best_score="max")
            .reset_index()
        )
        users = {u.id: u for u in self.store.find(USERS)}
        board = board[board["user_id"].isin(list(users))]
        board = board.sort_values("total_score", ascending=False, kind="mergesort").head(limit)

        return [
            {
                "user_id": row.user_id,
                "username": users[row.user_id].username,
                "total_score": int(row.total_score),
                "total_games": int(row.total_games),
                "avg_score": round(float(row.avg_score), 2),
                "best_score": int(row.best_score),
                "level": users[row.user_id].level,
            }
            for row in board.itertuples(index=False)
        ]

    def get_user_stats(self, user_id: str) -> Dict[str, Any]:
        user = self._get_user(user_id)
        sessions = self.store.find(SESSIONS, user_id=user_id)
        completed = [s for s in sessions if s.status == SessionStatus.COMPLETED]

        games_by_type = []
        if completed:
            df = pd.DataFrame(
                [{"game_type": s.game_type.value, "score": s.score} for s in completed]
            )
            by_type = df.groupby("game_type")["score"].agg(count="count", avg_score="mean")
            games_by_type = [
                {
                    "game_type": game_type,
                    "count": int(row["count"]),
                    "avg_score": round(float(row["avg_score"]), 2),
                }
                for game_type, row in by_type.iterrows()
            ]

        answered = user.correct_answers + user.wrong_answers
        recent = sorted(sessions, key=lambda s: s.started_at, reverse=True)[:5]
        return {
            "user_stats": {
                "total_points": user.points,
                "level": user.level,
                "total_games_played": user.total_games_played,
                "correct_answers": user.correct_answers,
                "wrong_answers": user.wrong_answers,
                "accuracy": (user.correct_answers / answered) * 100 if answered else 0,
            },
            "game_stats": {
                "total_games": len(completed),
                "games_by_type": games_by_type,
                "recent_games": [
                    {
                        "id": s.id,
                        "game_type": s.game_type.value,
                        "score": s.score,
                        "correct_answers": s.correct_answers,
                        "total_questions": s.total_questions,
                        "started_at": s.started_at,
                    }
                    for s in recent
                ],
            },
        }
