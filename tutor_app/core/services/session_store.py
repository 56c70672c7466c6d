"""Session-scoped key/value storage for interruption snapshots."""

from __future__ import annotations

from typing import Protocol


class SessionStore(Protocol):
    """String slots that live as long as the browser/app session."""

    def get(self, key: str) -> str | None:
        """Return the stored value or None."""

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    def remove(self, key: str) -> None:
        """Delete ``key`` if present."""


class InMemorySessionStore:
    """Dictionary-backed store used by the local server and tests."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._values)
