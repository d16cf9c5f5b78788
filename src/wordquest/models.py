import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def new_id() -> str:
    return str(uuid.uuid4())


# --- Enumerations ---
class GameType(str, Enum):
    MATCH = "match"
    MCQ = "mcq"
    HINTS = "hints"
    JUMBLED = "jumbled"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class Domain(str, Enum):
    VOLUME = "Volume"
    TIME = "Time"
    MEASUREMENT = "Measurement"
    NATURE = "Nature"
    CULTURE = "Culture"
    FOOD = "Food"
    CLOTHING = "Clothing"
    ARCHITECTURE = "Architecture"
    AGRICULTURE = "Agriculture"
    TRADE = "Trade"
    OTHER = "Other"


class Period(str, Enum):
    CLASSICAL_MEDIEVAL = "Classical/Medieval"
    MODERN = "Modern"
    CONTEMPORARY = "Contemporary"
    ANCIENT = "Ancient"
    PRE_CLASSICAL = "Pre-Classical"


class WordStatus(str, Enum):
    TRADITIONAL = "traditional; still seen rurally"
    ARCHAIC = "archaic"
    OBSOLETE = "obsolete"
    RARE = "rare"
    HISTORICAL = "historical"


class Role(str, Enum):
    STUDENT = "Student"
    TEACHER = "Teacher"
    ADMIN = "Admin"


class CriteriaType(str, Enum):
    POINTS = "points"
    GAMES_PLAYED = "games_played"
    CORRECT_ANSWERS = "correct_answers"
    STREAK = "streak"
    LEVEL = "level"
    DOMAIN_MASTERY = "domain_mastery"
    PERFECT_SCORE = "perfect_score"
    SPEED = "speed"
    CUSTOM = "custom"


class AchievementCategory(str, Enum):
    LEARNING = "learning"
    GAMING = "gaming"
    SOCIAL = "social"
    SPECIAL = "special"
    MILESTONE = "milestone"


class Rarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class RewardType(str, Enum):
    BADGE = "badge"
    TITLE = "title"
    UNLOCK = "unlock"
    BONUS_POINTS = "bonus_points"
    SPECIAL_ACCESS = "special_access"


class RewardEffect(str, Enum):
    POINTS_BOOST = "points_boost"
    UNLOCK_CONTENT = "unlock_content"
    SPECIAL_BADGE = "special_badge"
    TITLE_CHANGE = "title_change"
    BONUS_HINTS = "bonus_hints"


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"


# --- Vocabulary ---
class Word(BaseModel):
    id: str = Field(default_factory=new_id)
    word: str
    meaning_ta: str
    meaning_en: str
    domain: Domain
    period: Period
    modern_equivalent: str
    status: WordStatus
    notes: Optional[str] = None
    difficulty: Difficulty = Difficulty.MEDIUM
    is_active: bool = True
    # Usage statistics
    times_used: int = 0
    correct_answers: int = 0
    wrong_answers: int = 0


# --- Game sessions ---
class MatchItem(BaseModel):
    word_id: str
    text: str


class Question(BaseModel):
    word_id: Optional[str] = None  # None for the aggregate match question
    question: str
    options: List[str] = Field(default_factory=list)
    correct_answer: str
    user_answer: Optional[str] = None
    is_correct: bool = False
    time_spent: int = 0
    hints_used: int = 0
    # Match game only
    word_items: List[MatchItem] = Field(default_factory=list)
    meaning_items: List[MatchItem] = Field(default_factory=list)
    correct_pairs: Dict[str, str] = Field(default_factory=dict)

    @property
    def answered(self) -> bool:
        return self.user_answer is not None

    @property
    def word_ids(self) -> List[str]:
        if self.correct_pairs:
            return list(self.correct_pairs)
        return [self.word_id] if self.word_id else []


class HintRecord(BaseModel):
    question_index: int
    word_id: str
    hint_text: str
    used_at: datetime = Field(default_factory=datetime.now)


class GameSession(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    game_type: GameType
    status: SessionStatus = SessionStatus.ACTIVE
    score: int = 0
    total_questions: int
    correct_answers: int = 0
    wrong_answers: int = 0
    time_spent: int = 0  # seconds
    questions: List[Question]
    difficulty: Difficulty = Difficulty.MEDIUM
    points_earned: int = 0
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    hints_used: List[HintRecord] = Field(default_factory=list)


# --- Users ---
class EarnedAchievement(BaseModel):
    achievement_id: str
    earned_at: datetime = Field(default_factory=datetime.now)


class EarnedReward(BaseModel):
    reward_id: str
    earned_at: datetime = Field(default_factory=datetime.now)
    is_used: bool = False


class UserBase(BaseModel):
    id: str = Field(default_factory=new_id)
    username: str
    email: Optional[str] = None
    is_active: bool = True
    points: int = 0
    level: int = 1
    total_games_played: int = 0
    correct_answers: int = 0
    wrong_answers: int = 0


class Student(UserBase):
    role: Literal["Student"] = "Student"
    achievements: List[EarnedAchievement] = Field(default_factory=list)
    rewards: List[EarnedReward] = Field(default_factory=list)
    badges: List[str] = Field(default_factory=list)
    title: Optional[str] = None
    bonus_hints: int = 0
    current_streak: int = 0
    best_streak: int = 0
    domain_correct: Dict[str, int] = Field(default_factory=dict)


class Teacher(UserBase):
    role: Literal["Teacher"] = "Teacher"
    teacher_id: Optional[str] = None
    subjects: List[str] = Field(default_factory=list)
    students: List[str] = Field(default_factory=list)
    assigned_tasks: List[str] = Field(default_factory=list)


class Admin(UserBase):
    role: Literal["Admin"] = "Admin"
    admin_level: str = "Content Admin"
    permissions: List[str] = Field(default_factory=list)


User = Annotated[Union[Student, Teacher, Admin], Field(discriminator="role")]
UserAdapter = TypeAdapter(User)


# --- Achievements & rewards ---
class AchievementCriteria(BaseModel):
    type: CriteriaType
    value: int
    game_type: Optional[str] = None
    domain: Optional[str] = None
    period: Optional[str] = None
    time_limit: Optional[int] = None  # seconds
    consecutive: bool = False


class Achievement(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    icon: str = ""
    category: AchievementCategory
    criteria: AchievementCriteria
    rarity: Rarity = Rarity.COMMON
    points_reward: int = 0
    is_active: bool = True
    is_secret: bool = False
    total_earned: int = 0


class SpecialConditions(BaseModel):
    game_type: Optional[str] = None  # a GameType value or "any"
    min_score: Optional[int] = None
    perfect_score: bool = False
    domain: Optional[str] = None
    period: Optional[str] = None


class Reward(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    type: RewardType
    icon: str = ""
    points_required: int = Field(0, ge=0)
    level_required: int = Field(1, ge=1)
    rarity: Rarity = Rarity.COMMON
    is_active: bool = True
    special_conditions: Optional[SpecialConditions] = None
    value: int = 0
    effect: RewardEffect = RewardEffect.POINTS_BOOST
    repeatable: bool = False
    total_earned: int = 0


# --- Tasks ---
class Assignment(BaseModel):
    student_id: str
    assigned_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    score: float = 0
    feedback: Optional[str] = None


class Task(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: str
    teacher_id: str
    assigned_students: List[Assignment] = Field(default_factory=list)
    game_type: str  # a GameType value or "mixed"
    difficulty: Difficulty = Difficulty.MEDIUM
    word_count: int = Field(10, ge=5, le=50)
    domain: str = "All"
    period: str = "All"
    time_limit: int = 30  # minutes
    points_reward: int = 100
    due_date: datetime
    is_active: bool = True
    instructions: Optional[str] = None
    # Statistics
    total_assigned: int = 0
    total_completed: int = 0
    average_score: float = 0
