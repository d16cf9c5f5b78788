from .config import settings
from .database import get_db_path
from .eligibility import AchievementCatalog, EligibilityEngine, RewardCatalog
from .sessions import GameService
from .store import AggregateLocks, build_store
from .tasks import TaskTracker
from .vocabulary import VocabularyManager, WordCatalog

store = build_store(settings.STORE_BACKEND, get_db_path())
locks = AggregateLocks()

word_catalog = WordCatalog(store)
achievement_catalog = AchievementCatalog(store)
reward_catalog = RewardCatalog(store)

vocab_manager = VocabularyManager(settings.VOCAB_DIR, word_catalog)
game_service = GameService(
    store, word_catalog, EligibilityEngine(achievement_catalog, reward_catalog), locks
)
task_tracker = TaskTracker(store, locks)
