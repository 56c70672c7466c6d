"""Service for per-topic quiz queues and answer logs."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Iterable

from tutor_app.core.backend import TutorBackend
from tutor_app.core.errors import TutorError
from tutor_app.core.models import QuizAttempt, QuizQuestion, TopicQuizState, normalize_topic
from tutor_app.core.services.background import BackgroundCalls

logger = logging.getLogger(__name__)


def current_index(state: TopicQuizState) -> int:
    """Index of the next unanswered question; ``len(questions)`` means summary."""
    answered = {attempt.question_index for attempt in state.attempts}
    return max(0, min(len(answered), len(state.questions)))


def score(state: TopicQuizState) -> int:
    return sum(1 for attempt in state.attempts if attempt.is_correct)


def is_complete(state: TopicQuizState) -> bool:
    return bool(state.questions) and current_index(state) == len(state.questions)


class QuizProgressTracker:
    """Keeps one TopicQuizState per topic for the lifetime of the session."""

    def __init__(self, backend: TutorBackend, background: BackgroundCalls) -> None:
        self._backend = backend
        self._background = background
        self._states: dict[str, TopicQuizState] = {}

    def get_state(self, topic: str) -> TopicQuizState:
        """Return the state for ``topic``, creating an empty one on first use."""
        key = normalize_topic(topic)
        state = self._states.get(key)
        if state is None:
            state = TopicQuizState()
            self._states[key] = state
        return state

    def has_state(self, topic: str) -> bool:
        return normalize_topic(topic) in self._states

    def topics(self) -> list[str]:
        return list(self._states)

    def load_questions(self, topic: str, questions: Iterable[QuizQuestion]) -> int:
        """Append parsed questions to the topic's queue and return the new total."""
        state = self.get_state(topic)
        state.questions.extend(questions)
        return len(state.questions)

    def restore_attempts(self, topic: str, attempts: Iterable[QuizAttempt]) -> None:
        """Resume from attempts saved earlier. Existing entries are kept."""
        state = self.get_state(topic)
        for attempt in attempts:
            if state.attempt_for(attempt.question_index) is None:
                state.attempts.append(attempt)

    def submit_attempt(
        self,
        topic: str,
        question_index: int,
        selected_option_key: str,
        forward: bool = True,
    ) -> QuizAttempt:
        """Record an answer, forwarding new ones to the backend when ``forward`` is set.

        A question that already has an attempt keeps it; the earlier attempt is
        returned unchanged.
        """
        state = self.get_state(topic)
        if not 0 <= question_index < len(state.questions):
            raise IndexError(f"Question index {question_index} out of range")

        existing = state.attempt_for(question_index)
        if existing is not None:
            return existing

        question = state.questions[question_index]
        key = selected_option_key.strip().upper()
        if key not in question.options:
            raise ValueError(f"Option {selected_option_key!r} is not offered by this question.")

        attempt = QuizAttempt(
            question_index=question_index,
            selected_option_key=key,
            is_correct=key == question.correct_option_key,
            timestamp=datetime.now(timezone.utc),
        )
        state.attempts.append(attempt)
        if forward:
            self._background.schedule(
                self._forward(topic, attempt),
                f"save_quiz_attempt:{normalize_topic(topic)}:{question_index}",
            )
        return attempt

    def reset(self, topic: str) -> None:
        """Clear the local answer log so the quiz can be retaken."""
        self.get_state(topic).attempts.clear()

    def replace_all(self, states: dict[str, TopicQuizState]) -> None:
        """Swap in the queues captured before an interruption."""
        self._states = {normalize_topic(topic): state for topic, state in states.items()}

    def export_all(self) -> dict[str, TopicQuizState]:
        return {
            topic: TopicQuizState(questions=list(state.questions), attempts=list(state.attempts))
            for topic, state in self._states.items()
        }

    async def _forward(self, topic: str, attempt: QuizAttempt) -> None:
        try:
            await self._backend.save_quiz_attempt(
                topic,
                attempt.question_index,
                attempt.selected_option_key,
                attempt.is_correct,
            )
        except TutorError as exc:
            logger.warning(
                "Quiz attempt %d for %r kept locally but not saved: %s",
                attempt.question_index,
                topic,
                exc,
            )
