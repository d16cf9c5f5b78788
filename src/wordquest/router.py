from datetime import datetime
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .eligibility import AchievementCatalog, RewardCatalog
from .errors import WordQuestError
from .globals import (
    achievement_catalog,
    game_service,
    reward_catalog,
    task_tracker,
    word_catalog,
)
from .sessions import (
    AnswerResult,
    CompletionResult,
    GameService,
    HintResult,
    time_limit,
)
from .tasks import SubmissionResult, TaskStatistics, TaskTracker
from .vocabulary import WordCatalog

router = APIRouter(prefix="/api")


# --- Request bodies ---
class StartGameRequest(BaseModel):
    game_type: str
    difficulty: Optional[str] = None
    word_count: Optional[int] = None
    domain: Optional[str] = None
    period: Optional[str] = None


class AnswerRequest(BaseModel):
    question_index: int
    answer: Union[str, Dict[str, str]]
    time_spent: int = 0


class HintRequest(BaseModel):
    question_index: int


class CreateTaskRequest(BaseModel):
    title: str
    description: str
    game_type: str
    due_date: datetime
    difficulty: str = "Medium"
    word_count: int = 10
    domain: str = "All"
    period: str = "All"
    time_limit: int = 30
    points_reward: int = 100
    instructions: Optional[str] = None


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    game_type: Optional[str] = None
    due_date: Optional[datetime] = None
    difficulty: Optional[str] = None
    word_count: Optional[int] = None
    domain: Optional[str] = None
    period: Optional[str] = None
    time_limit: Optional[int] = None
    points_reward: Optional[int] = None
    instructions: Optional[str] = None
    is_active: Optional[bool] = None


class AssignRequest(BaseModel):
    student_ids: List[str] = Field(default_factory=list)


class ProgressRequest(BaseModel):
    status: str
    score: Optional[float] = None
    feedback: Optional[str] = None


class SubmitTaskRequest(BaseModel):
    score: Optional[float] = None
    game_session_id: Optional[str] = None


# --- Dependencies ---
def get_current_user_id(user_id: str = Header(..., alias="X-User-Id")) -> str:
    # Identity is established by the authentication layer in front of this API.
    return user_id


def get_game_service() -> GameService:
    return game_service


def get_task_tracker() -> TaskTracker:
    return task_tracker


def get_word_catalog() -> WordCatalog:
    return word_catalog


def get_achievement_catalog() -> AchievementCatalog:
    return achievement_catalog


def get_reward_catalog() -> RewardCatalog:
    return reward_catalog


async def handle_wordquest_error(request: Request, exc: WordQuestError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


# --- Game routes ---
@router.post("/game/start", status_code=201)
def start_game(
    payload: StartGameRequest,
    user_id: str = Depends(get_current_user_id),
    games: GameService = Depends(get_game_service),
):
    session = games.start_session(
        user_id,
        payload.game_type,
        difficulty=payload.difficulty,
        word_count=payload.word_count,
        domain=payload.domain,
        period=payload.period,
    )
    return {
        "game_session_id": session.id,
        "game_type": session.game_type,
        "difficulty": session.difficulty,
        "total_questions": session.total_questions,
        "questions": [
            q.model_dump(exclude={"correct_answer", "correct_pairs", "user_answer", "is_correct"})
            for q in session.questions
        ],
        "time_limit": time_limit(session.game_type),
    }


@router.post("/game/{session_id}/answer", response_model=AnswerResult)
def submit_answer(
    session_id: str,
    payload: AnswerRequest,
    user_id: str = Depends(get_current_user_id),
    games: GameService = Depends(get_game_service),
):
    return games.submit_answer(
        session_id, user_id, payload.question_index, payload.answer, payload.time_spent
    )


@router.post("/game/{session_id}/hint", response_model=HintResult)
def use_hint(
    session_id: str,
    payload: HintRequest,
    user_id: str = Depends(get_current_user_id),
    games: GameService = Depends(get_game_service),
):
    return games.use_hint(session_id, user_id, payload.question_index)


@router.post("/game/{session_id}/complete", response_model=CompletionResult)
def complete_game(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    games: GameService = Depends(get_game_service),
):
    return games.complete_game(session_id, user_id)


@router.post("/game/{session_id}/abandon")
def abandon_game(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    games: GameService = Depends(get_game_service),
):
    games.abandon_game(session_id, user_id)
    return {"message": "Game abandoned successfully"}


@router.get("/game/history")
def game_history(
    page: int = 1,
    limit: int = 10,
    game_type: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    games: GameService = Depends(get_game_service),
):
    return games.get_history(user_id, page=page, limit=limit, game_type=game_type)


@router.get("/game/active")
def active_game(
    user_id: str = Depends(get_current_user_id),
    games: GameService = Depends(get_game_service),
):
    return {"game_session": games.get_active_session(user_id)}


@router.get("/game/leaderboard")
def leaderboard(
    game_type: Optional[str] = None,
    limit: int = 50,
    games: GameService = Depends(get_game_service),
):
    return {"leaderboard": games.get_leaderboard(game_type, limit)}


@router.get("/game/stats")
def game_stats(
    user_id: str = Depends(get_current_user_id),
    games: GameService = Depends(get_game_service),
):
    return games.get_user_stats(user_id)


# --- Task routes ---
@router.post("/tasks", status_code=201)
def create_task(
    payload: CreateTaskRequest,
    user_id: str = Depends(get_current_user_id),
    tasks: TaskTracker = Depends(get_task_tracker),
):
    fields = payload.model_dump()
    task = tasks.create_task(
        user_id,
        fields.pop("title"),
        fields.pop("description"),
        fields.pop("game_type"),
        fields.pop("due_date"),
        **fields,
    )
    return {"task": task, "message": "Task created successfully"}


@router.post("/tasks/check-overdue")
def check_overdue_tasks(tasks: TaskTracker = Depends(get_task_tracker)):
    updated = tasks.sweep_overdue()
    return {"message": f"Checked overdue tasks. Updated {updated} tasks.", "updated_count": updated}


@router.put("/tasks/{task_id}")
def update_task(
    task_id: str,
    payload: UpdateTaskRequest,
    user_id: str = Depends(get_current_user_id),
    tasks: TaskTracker = Depends(get_task_tracker),
):
    task = tasks.update_task(task_id, user_id, **payload.model_dump(exclude_none=True))
    return {"task": task, "message": "Task updated successfully"}


@router.post("/tasks/{task_id}/assign")
def assign_task(
    task_id: str,
    payload: AssignRequest,
    user_id: str = Depends(get_current_user_id),
    tasks: TaskTracker = Depends(get_task_tracker),
):
    created = tasks.assign_to_students(task_id, user_id, payload.student_ids)
    return {"message": "Students assigned successfully", "assigned_count": len(created)}


@router.put("/tasks/{task_id}/student/{student_id}")
def update_student_progress(
    task_id: str,
    student_id: str,
    payload: ProgressRequest,
    user_id: str = Depends(get_current_user_id),
    tasks: TaskTracker = Depends(get_task_tracker),
):
    tasks.update_student_progress(
        task_id, user_id, student_id, payload.status, payload.score, payload.feedback
    )
    return {"message": "Student progress updated successfully"}


@router.post("/tasks/{task_id}/submit", response_model=SubmissionResult)
def submit_task(
    task_id: str,
    payload: SubmitTaskRequest,
    user_id: str = Depends(get_current_user_id),
    tasks: TaskTracker = Depends(get_task_tracker),
):
    return tasks.submit_task(task_id, user_id, payload.score, payload.game_session_id)


@router.get("/tasks/{task_id}/stats", response_model=TaskStatistics)
def task_statistics(
    task_id: str,
    user_id: str = Depends(get_current_user_id),
    tasks: TaskTracker = Depends(get_task_tracker),
):
    return tasks.get_statistics(task_id, user_id)


# --- Catalog routes ---
@router.get("/words/stats/overview")
def word_overview(words: WordCatalog = Depends(get_word_catalog)):
    return words.overview()


@router.get("/words/{word_id}")
def get_word(word_id: str, words: WordCatalog = Depends(get_word_catalog)):
    word = words.get(word_id)
    return {"word": word, "difficulty_score": WordCatalog.difficulty_score(word)}


@router.delete("/words/{word_id}")
def delete_word(
    word_id: str,
    user_id: str = Depends(get_current_user_id),
    words: WordCatalog = Depends(get_word_catalog),
):
    # Soft delete: the word leaves every game pool but keeps its history.
    words.deactivate(word_id)
    return {"message": "Word deleted successfully"}


@router.get("/achievements")
def list_achievements(
    category: str,
    achievements: AchievementCatalog = Depends(get_achievement_catalog),
):
    return {"achievements": achievements.by_category(category)}


@router.get("/rewards")
def list_rewards(
    reward_type: str = Query(..., alias="type"),
    limit: int = 20,
    rewards: RewardCatalog = Depends(get_reward_catalog),
):
    return {"rewards": rewards.by_type(reward_type, limit)}
