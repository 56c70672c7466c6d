"""Per-topic cache of generated content, keyed by content mode."""

from __future__ import annotations

from tutor_app.constants.tutor_constants import CONTENT_MODES
from tutor_app.core.models import normalize_topic


class ContentCache:
    """Remembers what the content service already produced this session."""

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, str]] = {}

    def get(self, topic: str, mode: str) -> str | None:
        return self._entries.get(normalize_topic(topic), {}).get(mode)

    def put(self, topic: str, mode: str, content: str) -> None:
        if mode not in CONTENT_MODES:
            raise ValueError(f"Unknown content mode '{mode}'.")
        self._entries.setdefault(normalize_topic(topic), {})[mode] = content

    def modes_for(self, topic: str) -> list[str]:
        cached = self._entries.get(normalize_topic(topic), {})
        return [mode for mode in CONTENT_MODES if mode in cached]

    def merge_topic(self, topic: str, content: dict[str, str]) -> None:
        """Add content known from elsewhere (e.g. the profile) without overwriting."""
        entry = self._entries.setdefault(normalize_topic(topic), {})
        for mode, text in content.items():
            if mode in CONTENT_MODES and text:
                entry.setdefault(mode, text)

    def export(self) -> dict[str, dict[str, str]]:
        return {topic: dict(modes) for topic, modes in self._entries.items()}

    def replace_all(self, entries: dict[str, dict[str, str]]) -> None:
        self._entries = {normalize_topic(topic): dict(modes) for topic, modes in entries.items()}
