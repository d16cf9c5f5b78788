import glob
import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
from pydantic import ValidationError

from .errors import WordNotFound
from .models import Word
from .store import WORDS, DocumentStore

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {
    "word",
    "meaning_ta",
    "meaning_en",
    "domain",
    "period",
    "modern_equivalent",
    "status",
}


def _filters(
    difficulty: Optional[str] = None,
    domain: Optional[str] = None,
    period: Optional[str] = None,
) -> Dict[str, str]:
    filters = {}
    if difficulty:
        filters["difficulty"] = difficulty
    if domain and domain != "All":
        filters["domain"] = domain
    if period and period != "All":
        filters["period"] = period
    return filters


class WordCatalog:
    """Pool of vocabulary entries with usage statistics."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def add(self, word: Word) -> Word:
        self.store.insert(WORDS, word)
        return word

    def get(self, word_id: str) -> Word:
        word = self.store.get(WORDS, word_id)
        if word is None:
            raise WordNotFound(f"Word {word_id} not found")
        return word

    def get_many(self, word_ids: Iterable[str]) -> Dict[str, Word]:
        wanted = set(word_ids)
        return {w.id: w for w in self.store.find(WORDS, where=lambda w: w.id in wanted)}

    def count_active(self, **kwargs) -> int:
        return self.store.count(WORDS, is_active=True, **_filters(**kwargs))

    def random_words(
        self,
        count: int,
        difficulty: Optional[str] = None,
        domain: Optional[str] = None,
        period: Optional[str] = None,
    ) -> List[Word]:
        """Samples up to ``count`` active words matching the filters."""
        return self.store.sample(
            WORDS, count, is_active=True, **_filters(difficulty, domain, period)
        )

    def random_other_word(self, word_id: str) -> Optional[Word]:
        picked = self.store.sample(WORDS, 1, where=lambda w: w.id != word_id, is_active=True)
        return picked[0] if picked else None

    def distinct_meanings(self, exclude: str) -> int:
        meanings = {w.meaning_ta for w in self.store.find(WORDS, is_active=True)}
        meanings.discard(exclude)
        return len(meanings)

    def overview(self) -> Dict[str, Any]:
        """Active/inactive totals plus active-word counts per domain, period and difficulty."""
        total = self.store.count(WORDS)
        active = self.count_active()
        breakdown = {"domain_stats": [], "period_stats": [], "difficulty_stats": []}
        words = self.store.find(WORDS, is_active=True)
        if words:
            df = pd.DataFrame(
                [
                    {
                        "domain": w.domain.value,
                        "period": w.period.value,
                        "difficulty": w.difficulty.value,
                    }
                    for w in words
                ]
            )
            for column in ("domain", "period", "difficulty"):
                counts = df[column].value_counts()
                breakdown[f"{column}_stats"] = [
                    {"name": name, "count": int(count)} for name, count in counts.items()
                ]
        return {
            "overview": {
                "total_words": total,
                "active_words": active,
                "inactive_words": total - active,
            },
            **breakdown,
        }

    def deactivate(self, word_id: str) -> Word:
        word = self.get(word_id)
        word.is_active = False
        self.store.update(WORDS, word)
        logger.info(f"Deactivated word {word.word} ({word.id})")
        return word

    @staticmethod
    def update_usage_stats(word: Word, is_correct: bool) -> Word:
        word.times_used += 1
        if is_correct:
            word.correct_answers += 1
        else:
            word.wrong_answers += 1
        return word

    @staticmethod
    def difficulty_score(word: Word) -> float:
        """0-100 score: the tagged difficulty adjusted by observed accuracy."""
        if word.times_used == 0:
            return 50
        accuracy = word.correct_answers / word.times_used
        base = {"Easy": 20, "Hard": 80}.get(word.difficulty.value, 50)
        adjustment = (accuracy - 0.5) * 20
        return max(0, min(100, base + adjustment))


class VocabularyManager:
    """Loads vocabulary CSV files into the word catalog."""

    def __init__(self, directory: str, catalog: WordCatalog):
        self.directory = directory
        self.catalog = catalog

    def load_all(self) -> int:
        if not os.path.exists(self.directory):
            os.makedirs(self.directory)
            logger.warning(f"Created directory {self.directory}. Please add CSV files.")
            return 0

        known = {w.word for w in self.catalog.store.find(WORDS)}
        loaded = 0
        csv_files = sorted(glob.glob(os.path.join(self.directory, "*.csv")))
        for file_path in csv_files:
            file_name = os.path.splitext(os.path.basename(file_path))[0]
            try:
                df = pd.read_csv(file_path, encoding="utf-8")
            except (OSError, pd.errors.ParserError) as e:
                logger.error(f"Failed to load {file_path}: {e}")
                continue

            missing = REQUIRED_COLUMNS - set(df.columns)
            if missing:
                logger.error(f"Skipping {file_name}: Missing columns {sorted(missing)}.")
                continue

            df = df.astype(object).where(pd.notna(df), None)
            count = 0
            for record in df.to_dict("records"):
                record = {k: v for k, v in record.items() if v is not None}
                if record["word"] in known:
                    continue
                try:
                    word = Word(**record)
                except ValidationError as e:
                    logger.error(f"Skipping row {record.get('word')} in {file_name}: {e}")
                    continue
                self.catalog.add(word)
                known.add(word.word)
                count += 1
            logger.info(f"Loaded {count} words from {file_name}")
            loaded += count

        if not csv_files:
            logger.warning(f"No CSV files found in {self.directory}.")
        return loaded
