"""Domain models for the tutor session engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

OPTION_LETTERS = ("A", "B", "C", "D")


@dataclass(slots=True, frozen=True)
class QuizQuestion:
    """Validated multiple-choice question with two to four lettered options."""

    question: str
    options: dict[str, str]
    correct_option_key: str
    explanation: str | None = None

    def __post_init__(self) -> None:
        if not self.question.strip():
            raise ValueError("Question text must not be empty.")
        if not 2 <= len(self.options) <= 4:
            raise ValueError("A question needs between two and four options.")
        if any(key not in OPTION_LETTERS for key in self.options):
            raise ValueError("Option keys must be one of A, B, C, or D.")
        if self.correct_option_key not in self.options:
            raise ValueError("Correct option key must name one of the options.")


@dataclass(slots=True)
class LiveStreak:
    """In-progress chain of explored topics. The score is the chain length."""

    words: list[str]

    @property
    def score(self) -> int:
        return len(self.words)


@dataclass(slots=True, frozen=True)
class StreakRecord:
    """Finalized streak handed to the persistence API."""

    id: str
    words: tuple[str, ...]
    score: int
    completed_at: datetime


@dataclass(slots=True, frozen=True)
class QuizAttempt:
    """A single answer to a question of a topic's quiz."""

    question_index: int
    selected_option_key: str
    is_correct: bool
    timestamp: datetime


@dataclass(slots=True)
class TopicQuizState:
    """Questions and append-only answer log for one topic."""

    questions: list[QuizQuestion] = field(default_factory=list)
    attempts: list[QuizAttempt] = field(default_factory=list)

    def attempt_for(self, question_index: int) -> QuizAttempt | None:
        return next((a for a in self.attempts if a.question_index == question_index), None)


@dataclass(slots=True)
class FavoriteState:
    """Locally displayed favorite flag and whether a toggle is in flight."""

    value: bool
    pending: bool = False


@dataclass(slots=True, frozen=True)
class WordEntry:
    """Explored word as reported by the profile endpoint."""

    id: str
    word: str
    is_favorite: bool = False
    last_explored_at: str | None = None
    cached_content: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ProfileSnapshot:
    """Authoritative profile read used for reconciliation."""

    username: str
    tier: str = "free"
    explored_words: list[WordEntry] = field(default_factory=list)
    streak_history: list[StreakRecord] = field(default_factory=list)

    @property
    def favorite_words(self) -> list[WordEntry]:
        return [entry for entry in self.explored_words if entry.is_favorite]

    def find_word(self, word: str) -> WordEntry | None:
        needle = normalize_topic(word)
        return next((e for e in self.explored_words if normalize_topic(e.word) == needle), None)


@dataclass(slots=True, frozen=True)
class StoryOption:
    """Choice offered by a branching-dialogue node."""

    text: str
    leads_to: str | None

    @property
    def ends_story(self) -> bool:
        if not self.leads_to:
            return True
        target = self.leads_to.lower()
        return "end" in target or "conclusion" in target


@dataclass(slots=True, frozen=True)
class StoryNode:
    """One step of the branching dialogue returned by the content service."""

    dialogue: str
    image_prompts: list[str] = field(default_factory=list)
    interaction_type: str = "Text Choice"
    options: list[StoryOption] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class StoryTurn:
    """History entry sent back to the service with each dialogue request."""

    speaker: str  # "AI" or "USER"
    text: str


def normalize_topic(topic: str) -> str:
    """Case- and whitespace-insensitive key used to compare topics."""
    return " ".join(topic.split()).lower()
