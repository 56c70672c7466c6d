"""
Unit tests for optimistic favorite toggling.
"""

import asyncio

import pytest

from tutor_app.core.errors import TransientNetworkError
from tutor_app.core.models import ProfileSnapshot, WordEntry
from tutor_app.core.services.favorite_toggle import FavoriteToggleController


class SlowBackend:
    """Backend whose toggle waits until released, to observe the pending state."""

    def __init__(self, error: Exception | None = None):
        self.release = asyncio.Event()
        self.error = error

    async def toggle_favorite(self, topic):
        await self.release.wait()
        if self.error is not None:
            raise self.error


class TestToggle:
    """Tests for the optimistic flip."""

    @pytest.mark.asyncio
    async def test_successful_toggle(self, backend):
        controller = FavoriteToggleController(backend)

        state = await controller.toggle("cat", prior_value=False)

        assert state.value is True
        assert state.pending is False
        assert backend.calls_to("toggle_favorite") == [("cat",)]

    @pytest.mark.asyncio
    async def test_value_flips_before_backend_answers(self):
        backend = SlowBackend()
        controller = FavoriteToggleController(backend)

        task = asyncio.create_task(controller.toggle("cat", prior_value=False))
        await asyncio.sleep(0)

        optimistic = controller.get_state("cat")
        assert optimistic.value is True
        assert optimistic.pending is True

        backend.release.set()
        final = await task
        assert final.value is True
        assert final.pending is False

    @pytest.mark.asyncio
    async def test_failed_toggle_reverts_and_raises(self, backend):
        backend.fail("toggle_favorite", TransientNetworkError("offline"))
        controller = FavoriteToggleController(backend)

        with pytest.raises(TransientNetworkError):
            await controller.toggle("cat", prior_value=True)

        state = controller.get_state("cat")
        assert state.value is True
        assert state.pending is False

    @pytest.mark.asyncio
    async def test_no_retry_after_failure(self, backend):
        backend.fail("toggle_favorite", TransientNetworkError("offline"))
        controller = FavoriteToggleController(backend)

        with pytest.raises(TransientNetworkError):
            await controller.toggle("cat", prior_value=False)

        assert len(backend.calls_to("toggle_favorite")) == 1


class TestReconcile:
    """Tests for adopting the authoritative profile."""

    def test_profile_overwrites_local_values(self, backend):
        controller = FavoriteToggleController(backend)
        profile = ProfileSnapshot(
            username="learner",
            explored_words=[
                WordEntry(id="1", word="Cat", is_favorite=True),
                WordEntry(id="2", word="dog", is_favorite=False),
            ],
        )

        controller.reconcile(profile)

        assert controller.get_state("cat").value is True
        assert controller.get_state("dog").value is False

    @pytest.mark.asyncio
    async def test_in_flight_toggle_is_not_overwritten(self):
        backend = SlowBackend()
        controller = FavoriteToggleController(backend)
        task = asyncio.create_task(controller.toggle("cat", prior_value=False))
        await asyncio.sleep(0)

        controller.reconcile(ProfileSnapshot(username="learner", explored_words=[WordEntry(id="1", word="cat")]))

        assert controller.get_state("cat").value is True
        assert controller.get_state("cat").pending is True
        backend.release.set()
        await task

    def test_unknown_topic_defaults_to_not_favorite(self, backend):
        state = FavoriteToggleController(backend).get_state("never seen")

        assert state.value is False
        assert state.pending is False
