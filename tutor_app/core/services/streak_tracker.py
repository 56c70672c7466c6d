"""Service tracking the live chain of explored topics."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from uuid import uuid4

from tutor_app.constants.tutor_constants import MIN_RECORDED_STREAK_SCORE
from tutor_app.core.backend import TutorBackend
from tutor_app.core.errors import TutorError
from tutor_app.core.models import LiveStreak, StreakRecord, normalize_topic
from tutor_app.core.services.background import BackgroundCalls

logger = logging.getLogger(__name__)


class StreakTracker:
    """Maintains the in-progress streak and finalizes it into history records.

    Saving a finalized streak is fire-and-forget: local state is cleared before
    the backend answers, so a failed save loses that record. The failure is
    logged with the lost words; nothing retries it.
    """

    def __init__(self, backend: TutorBackend, background: BackgroundCalls) -> None:
        self._backend = backend
        self._background = background
        self._live: LiveStreak | None = None
        self._history: list[StreakRecord] = []
        self._review_topic: str | None = None

    def is_active(self) -> bool:
        return self._live is not None

    def get_live_streak(self) -> LiveStreak | None:
        """Return a copy of the live streak, if any."""
        if self._live is None:
            return None
        return LiveStreak(words=list(self._live.words))

    def get_history(self) -> list[StreakRecord]:
        """Records finalized during this session, newest first."""
        return list(self._history)

    def start_new_streak(self, topic: str, persist: bool = True) -> StreakRecord | None:
        """Finalize any active streak and start a new one rooted at ``topic``."""
        cleaned = _clean(topic)
        record = self.finalize_streak(persist=persist)
        self._live = LiveStreak(words=[cleaned])
        return record

    def extend_streak(self, topic: str) -> bool:
        """Append ``topic`` to the live streak.

        Topics already in the chain (case-insensitive) are not added again, so
        re-clicking the most recent topic leaves the streak unchanged.
        """
        cleaned = _clean(topic)
        if self._live is None:
            logger.warning("Ignoring extension to %r: no active streak", cleaned)
            return False
        if self.contains(cleaned):
            return False
        self._live.words.append(cleaned)
        return True

    def explore_from(self, focus_topic: str | None, topic: str) -> bool:
        """Follow a topic link found in the content of ``focus_topic``.

        Without an active streak, the focused topic and the clicked one form a
        new chain of two.
        """
        if self._live is None and focus_topic and normalize_topic(focus_topic) != normalize_topic(topic):
            self._live = LiveStreak(words=[_clean(focus_topic)])
        if self._live is None:
            self._live = LiveStreak(words=[_clean(topic)])
            return True
        return self.extend_streak(topic)

    def contains(self, topic: str) -> bool:
        if self._live is None:
            return False
        needle = normalize_topic(topic)
        return any(normalize_topic(word) == needle for word in self._live.words)

    def finalize_streak(self, persist: bool = True) -> StreakRecord | None:
        """Close the live streak. Only streaks of two or more topics are recorded.

        With ``persist`` off (guest sessions) the record is kept in the local
        history only.
        """
        live, self._live = self._live, None
        self._review_topic = None
        if live is None:
            return None
        if live.score < MIN_RECORDED_STREAK_SCORE:
            logger.info("Discarding streak %s (score %d)", live.words, live.score)
            return None

        record = StreakRecord(
            id=uuid4().hex,
            words=tuple(live.words),
            score=live.score,
            completed_at=datetime.now(timezone.utc),
        )
        self._history.insert(0, record)
        if persist:
            self._background.schedule(self._save(record), f"save_streak:{record.id}")
        return record

    def restore(self, live: LiveStreak | None) -> None:
        """Replace the live streak with one captured before an interruption."""
        self._live = LiveStreak(words=list(live.words)) if live and live.words else None
        self._review_topic = None

    # --- Review mode ---

    def begin_review(self, topic: str) -> None:
        """Revisit a topic of the live chain without changing the chain."""
        if not self.contains(topic):
            raise ValueError(f"'{topic}' is not part of the current streak.")
        self._review_topic = _clean(topic)

    def end_review(self) -> None:
        self._review_topic = None

    def get_review_topic(self) -> str | None:
        return self._review_topic

    async def _save(self, record: StreakRecord) -> None:
        try:
            server_id = await self._backend.save_streak(list(record.words), record.score)
        except TutorError as exc:
            logger.error("Streak %s was not saved and is lost: %s", list(record.words), exc)
            return
        logger.info("Streak saved (score %d, server id %s)", record.score, server_id or "-")


def _clean(topic: str) -> str:
    cleaned = " ".join(topic.split())
    if not cleaned:
        raise ValueError("Topic must not be empty.")
    return cleaned
