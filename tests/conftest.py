"""
Pytest configuration and shared fixtures.

The engine only talks to the outside world through the TutorBackend contract,
so most tests run against FakeBackend: it records every call and can be told
to fail with any TutorError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

import pytest

from tutor_app.core.backend import GeneratedContent
from tutor_app.core.models import ProfileSnapshot, StoryNode, StoryOption, StoryTurn
from tutor_app.core.services.background import BackgroundCalls
from tutor_app.core.services.session_store import InMemorySessionStore

SAMPLE_QUIZ_TEXT = """**Question 1:** What is 2+2?
A) 3
B) 4
Correct Answer: B
Explanation: Basic arithmetic.

**Question 2:** Which animal purrs?
A) Dog
B) Cat
C) Fish
Correct Answer: B
Explanation: Cats purr when content.

**Question 3:** Broken question without an answer
A) One
B) Two
"""


@dataclass
class FakeBackend:
    """In-memory TutorBackend that records calls and fails on demand."""

    explanations: dict[str, str] = field(default_factory=dict)
    quizzes: dict[str, list[str]] = field(default_factory=dict)
    story_nodes: list[StoryNode] = field(default_factory=list)
    profile: ProfileSnapshot | None = None
    failures: dict[str, Exception] = field(default_factory=dict)
    calls: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)
    token: str | None = None
    story_served: int = 0

    def fail(self, method: str, error: Exception) -> None:
        self.failures[method] = error

    def recover(self, method: str) -> None:
        self.failures.pop(method, None)

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        error = self.failures.get(method)
        if error is not None:
            raise error

    def set_auth_token(self, token: str | None) -> None:
        self.token = token

    async def generate_content(
        self,
        topic: str,
        mode: str,
        language: str,
        prior_explanation: str | None = None,
    ) -> GeneratedContent:
        self._record("generate_content", topic, mode, language, prior_explanation)
        if mode == "quiz":
            return GeneratedContent(quiz_raw=list(self.quizzes.get(topic, [SAMPLE_QUIZ_TEXT])))
        default = f"{topic} is linked to <click>{topic} history</click>."
        return GeneratedContent(explanation=self.explanations.get(topic, default))

    async def save_streak(self, words: Sequence[str], score: int) -> str | None:
        self._record("save_streak", list(words), score)
        return f"streak-{len(self.calls_to('save_streak'))}"

    async def save_quiz_attempt(
        self,
        topic: str,
        question_index: int,
        selected_option_key: str,
        is_correct: bool,
    ) -> None:
        self._record("save_quiz_attempt", topic, question_index, selected_option_key, is_correct)

    async def toggle_favorite(self, topic: str) -> None:
        self._record("toggle_favorite", topic)

    async def fetch_profile(self) -> ProfileSnapshot:
        self._record("fetch_profile")
        return self.profile or ProfileSnapshot(username="learner")

    async def generate_story_node(
        self,
        topic: str,
        history: Sequence[StoryTurn],
        chosen: StoryOption | None,
    ) -> StoryNode:
        self._record("generate_story_node", topic, list(history), chosen)
        node = self.story_nodes[min(self.story_served, len(self.story_nodes) - 1)]
        self.story_served += 1
        return node


def story_node(dialogue: str, *targets: str) -> StoryNode:
    return StoryNode(
        dialogue=dialogue,
        options=[StoryOption(text=f"Go to {target}", leads_to=target) for target in targets],
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(
        story_nodes=[
            story_node("You stand at the gate of the atom.", "nucleus", "electron_cloud"),
            story_node("Protons and neutrons crowd together.", "quarks", "the_end"),
            story_node("Quarks never travel alone.", "conclusion"),
        ]
    )


@pytest.fixture
def background() -> BackgroundCalls:
    return BackgroundCalls()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()
