"""Branching dialogue ("story mode") for a single topic."""

from __future__ import annotations

import logging

from tutor_app.core.backend import TutorBackend
from tutor_app.core.models import StoryNode, StoryOption, StoryTurn

logger = logging.getLogger(__name__)


class StoryDialogue:
    """Walks the dialogue tree one chosen option at a time.

    A transition only mutates the dialogue after the next node has arrived, so
    a failed request (timeout, rate limit) leaves history and the current node
    exactly as they were.
    """

    def __init__(self, backend: TutorBackend, topic: str) -> None:
        self._backend = backend
        self.topic = topic
        self._history: list[StoryTurn] = []
        self._current: StoryNode | None = None
        self._ended = False

    @property
    def current_node(self) -> StoryNode | None:
        return self._current

    @property
    def history(self) -> list[StoryTurn]:
        return list(self._history)

    def is_ended(self) -> bool:
        return self._ended

    async def start(self) -> StoryNode:
        node = await self._backend.generate_story_node(self.topic, [], None)
        self._history = [StoryTurn(speaker="AI", text=node.dialogue)]
        self._current = node
        self._ended = False
        return node

    def option_at(self, index: int) -> StoryOption:
        if self._current is None:
            raise RuntimeError("The story has not started yet.")
        if not 0 <= index < len(self._current.options):
            raise IndexError(f"Story option {index} out of range")
        return self._current.options[index]

    async def choose(self, option: StoryOption) -> StoryNode | None:
        """Advance along ``option``. Returns None when the option ends the story."""
        if self._ended:
            raise RuntimeError("The story has already ended.")
        if option.ends_story:
            self._ended = True
            logger.info("Story for %r ended via %r", self.topic, option.leads_to)
            return None

        user_text = option.text or f"Selected Image: {option.leads_to}"
        next_history = [*self._history, StoryTurn(speaker="USER", text=user_text)]
        node = await self._backend.generate_story_node(self.topic, next_history, option)
        self._history = [*next_history, StoryTurn(speaker="AI", text=node.dialogue)]
        self._current = node
        return node
