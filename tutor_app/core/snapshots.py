"""JSON payloads stored while an interruption is pending."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from tutor_app.core.models import (
    LiveStreak,
    QuizAttempt,
    QuizQuestion,
    StoryOption,
    TopicQuizState,
)

IntendedActionKind = Literal["generate", "toggle_favorite", "open_profile"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class QuestionPayload(BaseModel):
    question: str
    options: dict[str, str]
    correct_option_key: str
    explanation: str | None = None

    @classmethod
    def from_question(cls, question: QuizQuestion) -> "QuestionPayload":
        return cls(
            question=question.question,
            options=dict(question.options),
            correct_option_key=question.correct_option_key,
            explanation=question.explanation,
        )

    def to_question(self) -> QuizQuestion:
        return QuizQuestion(
            question=self.question,
            options=dict(self.options),
            correct_option_key=self.correct_option_key,
            explanation=self.explanation,
        )


class AttemptPayload(BaseModel):
    question_index: int = Field(ge=0)
    selected_option_key: str
    is_correct: bool
    timestamp: datetime

    @classmethod
    def from_attempt(cls, attempt: QuizAttempt) -> "AttemptPayload":
        return cls(
            question_index=attempt.question_index,
            selected_option_key=attempt.selected_option_key,
            is_correct=attempt.is_correct,
            timestamp=attempt.timestamp,
        )

    def to_attempt(self) -> QuizAttempt:
        return QuizAttempt(
            question_index=self.question_index,
            selected_option_key=self.selected_option_key,
            is_correct=self.is_correct,
            timestamp=self.timestamp,
        )


class TopicQuizPayload(BaseModel):
    questions: list[QuestionPayload] = Field(default_factory=list)
    attempts: list[AttemptPayload] = Field(default_factory=list)

    @classmethod
    def from_state(cls, state: TopicQuizState) -> "TopicQuizPayload":
        return cls(
            questions=[QuestionPayload.from_question(q) for q in state.questions],
            attempts=[AttemptPayload.from_attempt(a) for a in state.attempts],
        )

    def to_state(self) -> TopicQuizState:
        return TopicQuizState(
            questions=[q.to_question() for q in self.questions],
            attempts=[a.to_attempt() for a in self.attempts],
        )


class IntendedAction(BaseModel):
    """The action that hit the login wall, replayed after login."""

    kind: IntendedActionKind
    topic: str | None = None
    mode: str | None = None
    force: bool = False
    prior_value: bool | None = None


class GuestSnapshot(BaseModel):
    """Guest state carried across the login flow."""

    live_streak: list[str] | None = None
    quiz_queues: dict[str, TopicQuizPayload] = Field(default_factory=dict)
    focus_topic: str | None = None
    cached_content: dict[str, dict[str, str]] = Field(default_factory=dict)
    intended_action: IntendedAction | None = None
    captured_at: datetime = Field(default_factory=_now)

    def restored_streak(self) -> LiveStreak | None:
        return LiveStreak(words=list(self.live_streak)) if self.live_streak else None

    def restored_queues(self) -> dict[str, TopicQuizState]:
        return {topic: payload.to_state() for topic, payload in self.quiz_queues.items()}


class PendingInterruptedAction(BaseModel):
    """The single action rejected by the rate limiter, replayed on resume."""

    kind: Literal["story_start", "story_choice", "generate"]
    topic: str
    mode: str | None = None
    force: bool = False
    option_text: str | None = None
    option_leads_to: str | None = None
    captured_at: datetime = Field(default_factory=_now)

    @classmethod
    def for_story_start(cls, topic: str) -> "PendingInterruptedAction":
        return cls(kind="story_start", topic=topic)

    @classmethod
    def for_choice(cls, topic: str, option: StoryOption) -> "PendingInterruptedAction":
        return cls(kind="story_choice", topic=topic, option_text=option.text, option_leads_to=option.leads_to)

    @classmethod
    def for_generation(cls, topic: str, mode: str, force: bool = False) -> "PendingInterruptedAction":
        return cls(kind="generate", topic=topic, mode=mode, force=force)

    def to_option(self) -> StoryOption:
        return StoryOption(text=self.option_text or "", leads_to=self.option_leads_to)
