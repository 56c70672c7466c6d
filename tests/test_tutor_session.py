"""
Tests for the session facade: streak triggers, quizzes and interruptions.
"""

import pytest
import pytest_asyncio
from conftest import FakeBackend

from tutor_app.constants.tutor_constants import GUEST_SNAPSHOT_KEY, PENDING_ACTION_KEY
from tutor_app.core.errors import AuthRequiredError, RateLimitedError, TransientNetworkError
from tutor_app.core.models import ProfileSnapshot, WordEntry
from tutor_app.core.services.story_dialogue import StoryDialogue
from tutor_app.core.tutor_session import TutorSession


class TokenCheckingBackend(FakeBackend):
    """Rejects streak saves sent without a token, like the real service."""

    async def save_streak(self, words, score):
        if self.token is None:
            raise AuthRequiredError("Token is missing")
        return await super().save_streak(words, score)


@pytest_asyncio.fixture
async def guest(backend, store):
    session = TutorSession(backend, store)
    yield session
    await session.close()


@pytest_asyncio.fixture
async def member(backend, store):
    session = TutorSession(backend, store, authenticated=True)
    yield session
    await session.close()


class TestExploration:
    """Tests for streak handling through the facade."""

    @pytest.mark.asyncio
    async def test_explore_and_click_build_a_streak(self, member, backend):
        text = await member.explore("cat")
        await member.click_topic("feline")
        await member.click_topic("mammal")

        assert "<click>cat history</click>" in text
        assert member.get_live_streak().words == ["cat", "feline", "mammal"]
        assert member.get_focus_topic() == "mammal"

        record = member.clear_input()
        await member.close()

        assert record.words == ("cat", "feline", "mammal")
        assert backend.calls_to("save_streak") == [(["cat", "feline", "mammal"], 3)]

    @pytest.mark.asyncio
    async def test_guest_streak_is_not_sent(self, guest, backend):
        await guest.explore("cat")
        await guest.click_topic("feline")

        record = guest.end_streak()
        await guest.close()

        assert record is not None
        assert backend.calls_to("save_streak") == []

    @pytest.mark.asyncio
    async def test_review_keeps_streak_and_click_starts_new_one(self, member):
        await member.explore("cat")
        await member.click_topic("feline")

        await member.review_streak_word("cat")
        assert member.get_review_topic() == "cat"
        assert member.get_live_streak().words == ["cat", "feline"]

        await member.click_topic("whiskers")

        assert member.get_review_topic() is None
        assert member.get_live_streak().words == ["cat", "whiskers"]
        assert member.get_streak_history()[0].words == ("cat", "feline")

    @pytest.mark.asyncio
    async def test_clear_during_review_keeps_streak(self, member):
        await member.explore("cat")
        await member.click_topic("feline")
        await member.review_streak_word("cat")

        assert member.clear_input() is None
        assert member.get_live_streak().words == ["cat", "feline"]

    @pytest.mark.asyncio
    async def test_content_is_cached(self, member, backend):
        await member.generate("cat", "fact")
        await member.generate("cat", "fact")

        assert len(backend.calls_to("generate_content")) == 1

    @pytest.mark.asyncio
    async def test_refresh_bypasses_cache(self, member, backend):
        await member.generate("cat", "fact")
        backend.explanations["cat"] = "Cats sleep most of the day."

        text = await member.refresh_content("cat", "fact")

        assert text == "Cats sleep most of the day."
        assert member.get_cached_content("cat", "fact") == text
        assert len(backend.calls_to("generate_content")) == 2

    @pytest.mark.asyncio
    async def test_network_failure_becomes_last_error(self, member, backend):
        backend.fail("generate_content", TransientNetworkError("server down"))

        assert await member.explore("cat") is None
        assert member.last_error == "server down"
        assert member.get_live_streak().words == ["cat"]

    @pytest.mark.asyncio
    async def test_unknown_mode(self, member):
        with pytest.raises(ValueError):
            await member.generate("cat", "poem")


class TestQuiz:
    """Tests for quiz loading and answering."""

    @pytest.mark.asyncio
    async def test_load_quiz_parses_valid_blocks(self, member):
        view = await member.load_quiz("cat")

        assert view.question_count == 2
        assert view.current_index == 0
        assert not view.is_complete

    @pytest.mark.asyncio
    async def test_answer_and_retake(self, member, backend):
        await member.load_quiz("cat")

        member.answer("cat", 0, "B")
        member.answer("cat", 0, "A")
        member.answer("cat", 1, "A")
        view = member.quiz_view("cat")
        assert view.is_complete
        assert view.score == 1

        view = member.retake("cat")
        assert view.current_index == 0
        assert view.question_count == 2
        await member.close()
        assert len(backend.calls_to("save_quiz_attempt")) == 2

    @pytest.mark.asyncio
    async def test_cached_quiz_is_not_fetched_again(self, member, backend):
        await member.load_quiz("cat")
        await member.load_quiz("cat")

        assert len(backend.calls_to("generate_content")) == 1

    @pytest.mark.asyncio
    async def test_refreshed_quiz_adds_questions(self, member, backend):
        await member.load_quiz("cat")
        member.answer("cat", 0, "B")

        await member.refresh_content("cat", "quiz")
        view = member.quiz_view("cat")

        assert view.question_count == 4
        assert view.current_index == 1
        assert len(backend.calls_to("generate_content")) == 2


class TestLoginInterruption:
    """Tests for the guest snapshot carried across login."""

    @pytest.mark.asyncio
    async def test_guest_state_survives_login(self, guest, backend, store):
        await guest.explore("cat")
        await guest.click_topic("feline")
        await guest.load_quiz("cat")
        guest.answer("cat", 0, "B")

        state = await guest.toggle_favorite("feline")

        assert state.value is False
        assert guest.prompt.kind == "login"
        assert store.get(GUEST_SNAPSHOT_KEY) is not None
        assert backend.calls_to("toggle_favorite") == []

        # The front-end loses its in-memory state on the way through the login page.
        resumed = TutorSession(backend, store)
        await resumed.login("token-123")

        assert backend.token == "token-123"
        assert resumed.is_authenticated()
        assert resumed.get_live_streak().words == ["cat", "feline"]
        assert resumed.get_focus_topic() == "feline"
        assert len(resumed.quiz_state("cat").attempts) == 1
        assert resumed.get_cached_content("cat") is not None
        assert resumed.favorite_state("feline").value is True
        assert backend.calls_to("toggle_favorite") == [("feline",)]
        assert store.get(GUEST_SNAPSHOT_KEY) is None
        await resumed.close()

    @pytest.mark.asyncio
    async def test_auth_error_from_backend_captures_generation(self, guest, backend, store):
        backend.fail("generate_content", AuthRequiredError("Token is missing"))

        await guest.explore("cat")

        assert guest.prompt.kind == "login"
        backend.recover("generate_content")
        text = await guest.login("token")
        assert text is not None
        assert guest.get_cached_content("cat") == text
        assert store.get(GUEST_SNAPSHOT_KEY) is None

    @pytest.mark.asyncio
    async def test_profile_requires_login(self, guest):
        assert await guest.refresh_profile() is None
        assert guest.prompt.kind == "login"

    @pytest.mark.asyncio
    async def test_profile_reconciles_favorites_and_cache(self, member, backend):
        backend.profile = ProfileSnapshot(
            username="learner",
            explored_words=[WordEntry(id="1", word="cat", is_favorite=True, cached_content={"fact": "Cats nap."})],
        )

        profile = await member.refresh_profile()

        assert profile.username == "learner"
        assert member.favorite_state("cat").value is True
        assert member.get_cached_content("cat", "fact") == "Cats nap."

    @pytest.mark.asyncio
    async def test_failed_favorite_reverts(self, member, backend):
        backend.fail("toggle_favorite", TransientNetworkError("offline"))

        state = await member.toggle_favorite("cat")

        assert state.value is False
        assert member.last_error is not None

    @pytest.mark.asyncio
    async def test_dismissed_prompt_drops_snapshot(self, guest, store):
        await guest.toggle_favorite("cat")

        guest.dismiss_prompt()

        assert guest.prompt is None
        assert store.get(GUEST_SNAPSHOT_KEY) is None

    @pytest.mark.asyncio
    async def test_dismiss_drops_snapshot_after_prompt_was_cleared(self, guest, store):
        await guest.toggle_favorite("cat")
        guest.prompt = None

        guest.dismiss_prompt()

        assert not guest.has_pending_login()
        assert store.get(GUEST_SNAPSHOT_KEY) is None

    @pytest.mark.asyncio
    async def test_login_reads_favorites_before_replaying_toggle(self, guest, backend):
        backend.profile = ProfileSnapshot(
            username="learner",
            explored_words=[WordEntry(id="1", word="cat", is_favorite=True)],
        )
        await guest.toggle_favorite("cat")

        await guest.login("token")

        assert backend.calls_to("toggle_favorite") == [("cat",)]
        assert guest.favorite_state("cat").value is False

    @pytest.mark.asyncio
    async def test_plain_login_reads_favorites(self, guest, backend):
        backend.profile = ProfileSnapshot(
            username="learner",
            explored_words=[WordEntry(id="1", word="cat", is_favorite=True)],
        )

        assert await guest.login("token") is None

        assert guest.favorite_state("cat").value is True
        assert guest.get_profile().username == "learner"

    @pytest.mark.asyncio
    async def test_profile_failure_after_login_is_not_an_error(self, guest, backend):
        backend.fail("fetch_profile", TransientNetworkError("offline"))

        await guest.login("token")

        assert guest.is_authenticated()
        assert guest.last_error is None

    @pytest.mark.asyncio
    async def test_logout_save_is_sent_with_the_token(self, store, caplog):
        backend = TokenCheckingBackend(token="token-123")
        session = TutorSession(backend, store, authenticated=True)
        await session.explore("cat")
        await session.click_topic("feline")

        await session.logout()
        await session.close()

        assert backend.calls_to("save_streak") == [(["cat", "feline"], 2)]
        assert backend.token is None
        assert "is lost" not in caplog.text

    @pytest.mark.asyncio
    async def test_logout_finalizes_and_clears(self, member, backend, store):
        await member.explore("cat")
        await member.click_topic("feline")

        record = await member.logout()
        await member.close()

        assert record.words == ("cat", "feline")
        assert not member.is_authenticated()
        assert backend.token is None
        assert member.get_live_streak() is None
        assert store.keys() == []
        assert len(backend.calls_to("save_streak")) == 1


class TestRateLimitInterruption:
    """Tests for the pending action replayed after a rate limit."""

    @pytest.mark.asyncio
    async def test_replay_matches_uninterrupted_choice(self, member, backend, store):
        await member.start_story("atoms")
        backend.fail("generate_story_node", RateLimitedError())

        assert await member.choose_story_option(0) is None
        assert member.prompt.kind == "upgrade"
        assert store.get(PENDING_ACTION_KEY) is not None
        assert len(member.get_story().history) == 1

        backend.recover("generate_story_node")
        node = await member.resume_after_upgrade()

        reference = StoryDialogue(type(backend)(story_nodes=backend.story_nodes), "atoms")
        await reference.start()
        expected = await reference.choose(reference.option_at(0))

        assert node == expected
        assert member.get_story().history == reference.history
        assert store.get(PENDING_ACTION_KEY) is None
        assert await member.resume_after_upgrade() is None

    @pytest.mark.asyncio
    async def test_still_limited_keeps_pending_action(self, member, backend, store):
        await member.start_story("atoms")
        backend.fail("generate_story_node", RateLimitedError())
        await member.choose_story_option(0)

        assert await member.resume_after_upgrade() is None

        assert member.prompt.kind == "upgrade"
        assert store.get(PENDING_ACTION_KEY) is not None

    @pytest.mark.asyncio
    async def test_rate_limited_generation_is_replayed(self, member, backend, store):
        backend.fail("generate_content", RateLimitedError())
        await member.generate("cat", "deep_dive")
        assert member.prompt.kind == "upgrade"

        backend.recover("generate_content")
        text = await member.resume_after_upgrade()

        assert text == member.get_cached_content("cat", "deep_dive")
        assert store.get(PENDING_ACTION_KEY) is None

    @pytest.mark.asyncio
    async def test_rate_limited_story_start_is_replayed(self, member, backend, store):
        backend.fail("generate_story_node", RateLimitedError())

        assert await member.start_story("atoms") is None
        assert member.prompt.kind == "upgrade"
        assert store.get(PENDING_ACTION_KEY) is not None

        backend.recover("generate_story_node")
        node = await member.resume_after_upgrade()

        assert node.dialogue == "You stand at the gate of the atom."
        assert member.get_story().current_node == node
        assert member.get_story().topic == "atoms"
        assert store.get(PENDING_ACTION_KEY) is None

    @pytest.mark.asyncio
    async def test_choice_without_story(self, member):
        with pytest.raises(RuntimeError):
            await member.choose_story_option(0)
