"""Optimistic favorite toggling with rollback and profile reconciliation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging

from tutor_app.core.backend import TutorBackend
from tutor_app.core.errors import TutorError
from tutor_app.core.models import FavoriteState, ProfileSnapshot, normalize_topic

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ToggleCommand:
    """One optimistic flip, carrying what to roll back to."""

    topic: str
    prior_value: bool
    issued_at: datetime

    @property
    def optimistic_value(self) -> bool:
        return not self.prior_value


class FavoriteToggleController:
    """Flips favorites locally first, then confirms with the backend."""

    def __init__(self, backend: TutorBackend) -> None:
        self._backend = backend
        self._states: dict[str, FavoriteState] = {}
        self._latest: dict[str, ToggleCommand] = {}

    def get_state(self, topic: str) -> FavoriteState:
        state = self._states.get(normalize_topic(topic))
        if state is None:
            return FavoriteState(value=False)
        return FavoriteState(value=state.value, pending=state.pending)

    async def toggle(self, topic: str, prior_value: bool) -> FavoriteState:
        """Flip the favorite flag of ``topic``.

        On failure the flag returns to ``prior_value`` and the error is raised
        to the caller. Nothing is retried.
        """
        key = normalize_topic(topic)
        command = ToggleCommand(topic=topic, prior_value=prior_value, issued_at=datetime.now(timezone.utc))
        self._latest[key] = command
        self._states[key] = FavoriteState(value=command.optimistic_value, pending=True)

        try:
            await self._backend.toggle_favorite(topic)
        except TutorError:
            if self._latest.get(key) is command:
                self._states[key] = FavoriteState(value=command.prior_value, pending=False)
                del self._latest[key]
            logger.warning("Favorite toggle for %r failed; restored %s", topic, command.prior_value)
            raise

        if self._latest.get(key) is command:
            self._states[key] = FavoriteState(value=command.optimistic_value, pending=False)
            del self._latest[key]
        return self.get_state(topic)

    def reconcile(self, profile: ProfileSnapshot) -> None:
        """Adopt the authoritative favorite flags, skipping toggles still in flight."""
        for entry in profile.explored_words:
            key = normalize_topic(entry.word)
            if key in self._latest:
                continue
            self._states[key] = FavoriteState(value=entry.is_favorite, pending=False)

    def clear(self) -> None:
        self._states.clear()
        self._latest.clear()
