"""Points, levels and play statistics.

``update_points`` is the only place a user's points change; achievement and
reward payouts go through it as well.
"""

from typing import Dict, Iterable

from .config import settings
from .models import Question, Student, UserBase, Word


def level_for_points(points: int) -> int:
    return points // settings.POINTS_PER_LEVEL + 1


def update_points(user: UserBase, delta: int) -> bool:
    """Adds ``delta`` points; returns True when the level went up."""
    old_level = user.level
    user.points += delta
    user.level = max(user.level, level_for_points(user.points))
    return user.level > old_level


def update_game_stats(user: UserBase, is_correct: bool) -> None:
    user.total_games_played += 1
    if is_correct:
        user.correct_answers += 1
    else:
        user.wrong_answers += 1


def record_answers(
    student: Student, questions: Iterable[Question], words: Dict[str, Word]
) -> None:
    """Carries the answer streak and per-domain correct tallies across sessions."""
    for question in questions:
        if not question.answered:
            continue
        if not question.is_correct:
            student.current_streak = 0
            continue
        student.current_streak += 1
        student.best_streak = max(student.best_streak, student.current_streak)
        for word_id in question.word_ids:
            word = words.get(word_id)
            if word is None:
                continue
            domain = word.domain.value
            student.domain_correct[domain] = student.domain_correct.get(domain, 0) + 1
