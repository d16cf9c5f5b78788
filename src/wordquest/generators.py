import random
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Union

from .errors import InsufficientWords, InvalidGameType
from .models import GameType, MatchItem, Question, Word
from .vocabulary import WordCatalog

MCQ_OPTIONS = 4


def encode_pairs(pairs: Mapping[str, str]) -> str:
    """Canonical text form of a word-id -> meaning mapping."""
    return "|".join(f"{word_id}={pairs[word_id]}" for word_id in sorted(pairs))


def normalize_answer(answer: Union[str, Mapping[str, str]]) -> str:
    if isinstance(answer, Mapping):
        return encode_pairs(answer)
    return answer


def _shuffled(items: List) -> List:
    items = list(items)
    random.shuffle(items)
    return items


# --- Strategy Pattern: Question Generators ---
class QuizGenerator(ABC):
    """Abstract Base Class for the per-game-type question builders."""

    def __init__(self, catalog: WordCatalog):
        self.catalog = catalog

    @abstractmethod
    def generate(self, words: List[Word]) -> List[Question]:
        pass


class MatchQuizGenerator(QuizGenerator):
    """One aggregate question: shuffled words, shuffled meanings, the true pairing."""

    def generate(self, words: List[Word]) -> List[Question]:
        correct_pairs: Dict[str, str] = {w.id: w.meaning_ta for w in words}
        return [
            Question(
                question="Match each word with its meaning",
                correct_answer=encode_pairs(correct_pairs),
                word_items=_shuffled([MatchItem(word_id=w.id, text=w.word) for w in words]),
                meaning_items=_shuffled(
                    [MatchItem(word_id=w.id, text=w.meaning_ta) for w in words]
                ),
                correct_pairs=correct_pairs,
            )
        ]


class McqQuizGenerator(QuizGenerator):
    def generate(self, words: List[Word]) -> List[Question]:
        return [self._question(word) for word in words]

    def _question(self, word: Word) -> Question:
        distractors_needed = MCQ_OPTIONS - 1
        if self.catalog.distinct_meanings(exclude=word.meaning_ta) < distractors_needed:
            raise InsufficientWords(
                f"Not enough distinct meanings to build options for {word.word}"
            )

        wrong: List[str] = []
        while len(wrong) < distractors_needed:
            candidate = self.catalog.random_other_word(word.id)
            if candidate is None:
                raise InsufficientWords("No other active words to draw options from")
            if candidate.meaning_ta != word.meaning_ta and candidate.meaning_ta not in wrong:
                wrong.append(candidate.meaning_ta)

        return Question(
            word_id=word.id,
            question=f'What is the meaning of "{word.word}"?',
            options=_shuffled([word.meaning_ta] + wrong),
            correct_answer=word.meaning_ta,
        )


class HintsQuizGenerator(QuizGenerator):
    def generate(self, words: List[Word]) -> List[Question]:
        return [
            Question(
                word_id=w.id,
                question=f"Guess the word using hints: {w.notes or 'No hints available'}",
                correct_answer=w.word,
            )
            for w in words
        ]


class JumbledQuizGenerator(QuizGenerator):
    def generate(self, words: List[Word]) -> List[Question]:
        questions = []
        for w in words:
            jumbled = "".join(_shuffled(list(w.word)))
            questions.append(
                Question(
                    word_id=w.id,
                    question=f"Unscramble this word: {jumbled}",
                    correct_answer=w.word,
                )
            )
        return questions


class QuizFactory:
    """Factory to select the appropriate generator."""

    generators = {
        GameType.MATCH: MatchQuizGenerator,
        GameType.MCQ: McqQuizGenerator,
        GameType.HINTS: HintsQuizGenerator,
        GameType.JUMBLED: JumbledQuizGenerator,
    }

    @classmethod
    def create(cls, game_type: str, catalog: WordCatalog) -> QuizGenerator:
        try:
            return cls.generators[GameType(game_type)](catalog)
        except ValueError:
            raise InvalidGameType(
                "Invalid game type. Must be match, mcq, hints, or jumbled"
            ) from None
