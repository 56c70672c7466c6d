"""Contract for the backend API consumed by the session engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from tutor_app.core.models import ProfileSnapshot, StoryNode, StoryOption, StoryTurn


@dataclass(slots=True, frozen=True)
class GeneratedContent:
    """Content returned for one topic and mode."""

    explanation: str | None = None
    quiz_raw: list[str] = field(default_factory=list)


class TutorBackend(Protocol):
    """Persistence and content calls. Every async method may raise a TutorError."""

    def set_auth_token(self, token: str | None) -> None:
        """Use ``token`` for subsequent calls; None switches back to guest access."""

    async def generate_content(
        self,
        topic: str,
        mode: str,
        language: str,
        prior_explanation: str | None = None,
    ) -> GeneratedContent:
        """Generate explanation text or raw quiz blocks for a topic."""

    async def save_streak(self, words: Sequence[str], score: int) -> str | None:
        """Persist a finalized streak, returning the server id when one is reported."""

    async def save_quiz_attempt(
        self,
        topic: str,
        question_index: int,
        selected_option_key: str,
        is_correct: bool,
    ) -> None:
        """Persist one quiz answer."""

    async def toggle_favorite(self, topic: str) -> None:
        """Flip the favorite flag of an explored topic."""

    async def fetch_profile(self) -> ProfileSnapshot:
        """Read the authoritative profile of the authenticated user."""

    async def generate_story_node(
        self,
        topic: str,
        history: Sequence[StoryTurn],
        chosen: StoryOption | None,
    ) -> StoryNode:
        """Fetch the next node of a branching dialogue."""
