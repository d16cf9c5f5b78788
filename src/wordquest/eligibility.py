import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel

from .config import settings
from .errors import InvalidRequest
from .models import (
    Achievement,
    CriteriaType,
    EarnedAchievement,
    EarnedReward,
    GameSession,
    Reward,
    RewardEffect,
    Student,
    UserBase,
    Word,
)
from .progression import update_points
from .store import ACHIEVEMENTS, REWARDS, DocumentStore, UnitOfWork

logger = logging.getLogger(__name__)


class AwardResult(BaseModel):
    already_earned: bool
    achievement_id: str
    name: str
    earned_at: datetime
    points_awarded: int = 0


# --- Catalogs ---
class AchievementCatalog:
    """Read-only view of the achievement catalog."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def add(self, achievement: Achievement) -> Achievement:
        self.store.insert(ACHIEVEMENTS, achievement)
        return achievement

    def active(self) -> List[Achievement]:
        return self.store.find(ACHIEVEMENTS, is_active=True)

    def by_category(self, category: str, include_secret: bool = False) -> List[Achievement]:
        found = self.store.find(ACHIEVEMENTS, is_active=True, category=category)
        if not include_secret:
            found = [a for a in found if not a.is_secret]
        return sorted(found, key=lambda a: a.points_reward)


class RewardCatalog:
    """Read-only view of the reward catalog."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def add(self, reward: Reward) -> Reward:
        self.store.insert(REWARDS, reward)
        return reward

    def active(self) -> List[Reward]:
        return self.store.find(REWARDS, is_active=True)

    def by_type(self, reward_type: str, limit: int = 20) -> List[Reward]:
        if limit < 1:
            raise InvalidRequest("Limit must be positive")
        found = self.store.find(REWARDS, is_active=True, type=reward_type)
        return sorted(found, key=lambda r: r.points_required)[:limit]


# --- Achievements ---
def _game_type_matches(wanted: Optional[str], session: GameSession) -> bool:
    return not wanted or wanted == "any" or wanted == session.game_type.value


def check_eligibility(
    achievement: Achievement, user: UserBase, session: Optional[GameSession] = None
) -> bool:
    if not achievement.is_active:
        return False

    criteria = achievement.criteria
    kind = criteria.type
    if kind == CriteriaType.POINTS:
        return user.points >= criteria.value
    if kind == CriteriaType.GAMES_PLAYED:
        return user.total_games_played >= criteria.value
    if kind == CriteriaType.CORRECT_ANSWERS:
        return user.correct_answers >= criteria.value
    if kind == CriteriaType.LEVEL:
        return user.level >= criteria.value
    if kind == CriteriaType.STREAK:
        return criteria.consecutive and getattr(user, "best_streak", 0) >= criteria.value
    if kind == CriteriaType.DOMAIN_MASTERY:
        if not criteria.domain:
            return False
        return getattr(user, "domain_correct", {}).get(criteria.domain, 0) >= criteria.value
    if kind == CriteriaType.PERFECT_SCORE:
        if session is None or not _game_type_matches(criteria.game_type, session):
            return False
        return session.score == session.total_questions * 10
    if kind == CriteriaType.SPEED:
        if session is None or not criteria.time_limit:
            return False
        if not _game_type_matches(criteria.game_type, session):
            return False
        return session.time_spent <= criteria.time_limit
    # custom achievements have no automatic rule
    return False


def award_to_user(
    achievement: Achievement, user: Student, now: Optional[datetime] = None
) -> AwardResult:
    """Grants an achievement once per user.

    A repeated call reports ``already_earned`` and leaves user and
    achievement untouched.
    """
    for earned in user.achievements:
        if earned.achievement_id == achievement.id:
            return AwardResult(
                already_earned=True,
                achievement_id=achievement.id,
                name=achievement.name,
                earned_at=earned.earned_at,
            )

    earned = EarnedAchievement(achievement_id=achievement.id, earned_at=now or datetime.now())
    user.achievements.append(earned)
    if achievement.points_reward > 0:
        update_points(user, achievement.points_reward)
    achievement.total_earned += 1
    return AwardResult(
        already_earned=False,
        achievement_id=achievement.id,
        name=achievement.name,
        earned_at=earned.earned_at,
        points_awarded=achievement.points_reward,
    )


# --- Rewards ---
def can_user_earn(
    reward: Reward,
    user: UserBase,
    session: Optional[GameSession] = None,
    words: Sequence[Word] = (),
) -> bool:
    if not reward.is_active:
        return False
    if user.points < reward.points_required or user.level < reward.level_required:
        return False

    conditions = reward.special_conditions
    if conditions is None or session is None:
        return True

    if not _game_type_matches(conditions.game_type, session):
        return False
    if conditions.min_score is not None and session.score < conditions.min_score:
        return False
    if conditions.perfect_score and session.score != session.total_questions * 10:
        return False
    if conditions.domain and not any(w.domain.value == conditions.domain for w in words):
        return False
    if conditions.period and not any(w.period.value == conditions.period for w in words):
        return False
    return True


def apply_effect(reward: Reward, user: Student) -> None:
    if reward.effect == RewardEffect.POINTS_BOOST:
        update_points(user, reward.value or settings.DEFAULT_POINTS_BOOST)
    elif reward.effect == RewardEffect.SPECIAL_BADGE:
        if reward.id not in user.badges:
            user.badges.append(reward.id)
    elif reward.effect == RewardEffect.TITLE_CHANGE:
        user.title = reward.name
    elif reward.effect == RewardEffect.BONUS_HINTS:
        user.bonus_hints += reward.value or 1
    # unlock_content: nothing to unlock yet


class EligibilityEngine:
    """Evaluates the catalogs against a user after a completed session."""

    def __init__(self, achievements: AchievementCatalog, rewards: RewardCatalog):
        self.achievements = achievements
        self.rewards = rewards

    def check_user_achievements(
        self,
        user: Student,
        session: Optional[GameSession] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> List[AwardResult]:
        granted = []
        for achievement in self.achievements.active():
            if not check_eligibility(achievement, user, session):
                continue
            result = award_to_user(achievement, user)
            if result.already_earned:
                continue
            if uow is not None:
                uow.add(ACHIEVEMENTS, achievement)
            logger.info(f"User {user.id} earned achievement '{achievement.name}'")
            granted.append(result)
        return granted

    def get_available_rewards(
        self,
        user: UserBase,
        session: Optional[GameSession] = None,
        words: Sequence[Word] = (),
    ) -> List[Reward]:
        return [r for r in self.rewards.active() if can_user_earn(r, user, session, words)]

    def grant_rewards(
        self,
        user: Student,
        session: Optional[GameSession] = None,
        words: Iterable[Word] = (),
        uow: Optional[UnitOfWork] = None,
    ) -> List[Reward]:
        """Applies every reward the user qualifies for.

        Non-repeatable rewards the user already holds are skipped.
        """
        words = list(words)
        held = {r.reward_id for r in user.rewards}
        granted = []
        for reward in self.get_available_rewards(user, session, words):
            if not reward.repeatable and reward.id in held:
                continue
            apply_effect(reward, user)
            user.rewards.append(EarnedReward(reward_id=reward.id))
            held.add(reward.id)
            reward.total_earned += 1
            if uow is not None:
                uow.add(REWARDS, reward)
            logger.info(f"User {user.id} earned reward '{reward.name}'")
            granted.append(reward)
        return granted
