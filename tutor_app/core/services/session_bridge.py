"""Capture-signal-replay bridge for actions blocked by login or rate limits.

Both interruptions follow the same steps: the minimal state needed to resume
is written to a single session-store slot, the caller is told which prompt to
show, and once the user has dealt with the prompt the payload is handed back
to a replay function and the slot is cleared. Capturing while a payload is
still pending overwrites it, because only one interruption can be in flight.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Awaitable, Callable, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from tutor_app.constants.tutor_constants import (
    GUEST_SNAPSHOT_KEY,
    LOGIN_PROMPT_MESSAGE,
    PENDING_ACTION_KEY,
    RATE_LIMIT_PROMPT_MESSAGE,
)
from tutor_app.core.services.session_store import SessionStore
from tutor_app.core.snapshots import GuestSnapshot, PendingInterruptedAction

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)
ResultT = TypeVar("ResultT")


@dataclass(slots=True, frozen=True)
class InterruptSignal:
    """Tells the front-end which prompt to show."""

    kind: str  # "login" or "upgrade"
    message: str


class InterruptBridge(Generic[PayloadT]):
    """Single-slot store of one interrupted payload type."""

    def __init__(
        self,
        store: SessionStore,
        key: str,
        payload_type: type[PayloadT],
        signal: InterruptSignal,
    ) -> None:
        self._store = store
        self._key = key
        self._payload_type = payload_type
        self._signal = signal

    @property
    def signal(self) -> InterruptSignal:
        return self._signal

    def capture(self, payload: PayloadT) -> InterruptSignal:
        if self._store.get(self._key) is not None:
            logger.info("Overwriting pending %s interruption", self._signal.kind)
        self._store.set(self._key, payload.model_dump_json())
        logger.info("Captured %s interruption", self._signal.kind)
        return self._signal

    def has_pending(self) -> bool:
        return self.peek() is not None

    def peek(self) -> PayloadT | None:
        raw = self._store.get(self._key)
        if raw is None:
            return None
        try:
            return self._payload_type.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Dropping unreadable %s snapshot: %s", self._signal.kind, exc)
            self._store.remove(self._key)
            return None

    async def resume(self, replay: Callable[[PayloadT], Awaitable[ResultT]]) -> ResultT | None:
        """Replay the pending payload once. Returns None when nothing is pending.

        The slot is emptied before the replay runs so that it can never be
        replayed twice; if the replay fails, the payload is put back unless a
        new interruption was captured in the meantime.
        """
        payload = self.peek()
        if payload is None:
            return None
        self._store.remove(self._key)
        try:
            result = await replay(payload)
        except Exception:
            if self._store.get(self._key) is None:
                self._store.set(self._key, payload.model_dump_json())
            raise
        logger.info("Resumed %s interruption", self._signal.kind)
        return result

    def discard(self) -> None:
        self._store.remove(self._key)


def auth_bridge(store: SessionStore) -> InterruptBridge[GuestSnapshot]:
    return InterruptBridge(
        store,
        GUEST_SNAPSHOT_KEY,
        GuestSnapshot,
        InterruptSignal(kind="login", message=LOGIN_PROMPT_MESSAGE),
    )


def rate_limit_bridge(store: SessionStore) -> InterruptBridge[PendingInterruptedAction]:
    return InterruptBridge(
        store,
        PENDING_ACTION_KEY,
        PendingInterruptedAction,
        InterruptSignal(kind="upgrade", message=RATE_LIMIT_PROMPT_MESSAGE),
    )
