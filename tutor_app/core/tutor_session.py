"""Session context tying the engine services together for one user session."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from tutor_app.constants.tutor_constants import (
    CONTENT_MODES,
    DEFAULT_CONTENT_MODE,
    DEFAULT_LANGUAGE,
    NETWORK_ERROR_MESSAGE,
)
from tutor_app.core.backend import TutorBackend
from tutor_app.core.errors import AuthRequiredError, RateLimitedError, TransientNetworkError, TutorError
from tutor_app.core.models import (
    FavoriteState,
    LiveStreak,
    ProfileSnapshot,
    QuizAttempt,
    StoryNode,
    StreakRecord,
    TopicQuizState,
    normalize_topic,
)
from tutor_app.core.quiz_text_parser import parse_quiz_blocks, split_quiz_text
from tutor_app.core.services.background import BackgroundCalls
from tutor_app.core.services.content_cache import ContentCache
from tutor_app.core.services.favorite_toggle import FavoriteToggleController
from tutor_app.core.services.quiz_progress import QuizProgressTracker, current_index, is_complete, score
from tutor_app.core.services.session_bridge import InterruptSignal, auth_bridge, rate_limit_bridge
from tutor_app.core.services.session_store import SessionStore
from tutor_app.core.services.story_dialogue import StoryDialogue
from tutor_app.core.services.streak_tracker import StreakTracker
from tutor_app.core.snapshots import (
    GuestSnapshot,
    IntendedAction,
    PendingInterruptedAction,
    TopicQuizPayload,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class QuizView:
    """What the quiz panel needs to render a topic."""

    topic: str
    question_count: int
    current_index: int
    score: int
    is_complete: bool


class TutorSession:
    """Facade for the engine services: streaks, quizzes, favorites, content and interrupts.

    One instance lives from session start to ``close()``. Collaborator failures
    never escape: they become ``last_error`` (network trouble) or ``prompt``
    (login wall, rate limit) and the triggering action is captured for replay.
    """

    def __init__(
        self,
        backend: TutorBackend,
        store: SessionStore,
        authenticated: bool = False,
        language: str = DEFAULT_LANGUAGE,
    ) -> None:
        self._backend = backend
        self._language = language
        self._authenticated = authenticated

        self._background = BackgroundCalls()
        self._streaks = StreakTracker(backend, self._background)
        self._quizzes = QuizProgressTracker(backend, self._background)
        self._favorites = FavoriteToggleController(backend)
        self._content = ContentCache()
        self._auth_bridge = auth_bridge(store)
        self._rate_bridge = rate_limit_bridge(store)

        self._focus_topic: str | None = None
        self._story: StoryDialogue | None = None
        self._profile: ProfileSnapshot | None = None
        self.last_error: str | None = None
        self.prompt: InterruptSignal | None = None

    # --- Session state ---

    def is_authenticated(self) -> bool:
        return self._authenticated

    def get_focus_topic(self) -> str | None:
        return self._focus_topic

    def get_live_streak(self) -> LiveStreak | None:
        return self._streaks.get_live_streak()

    def get_streak_history(self) -> list[StreakRecord]:
        return self._streaks.get_history()

    def get_review_topic(self) -> str | None:
        return self._streaks.get_review_topic()

    def get_profile(self) -> ProfileSnapshot | None:
        return self._profile

    def get_cached_content(self, topic: str, mode: str = DEFAULT_CONTENT_MODE) -> str | None:
        return self._content.get(topic, mode)

    def has_pending_login(self) -> bool:
        return self._auth_bridge.has_pending()

    def has_pending_upgrade(self) -> bool:
        return self._rate_bridge.has_pending()

    def dismiss_error(self) -> None:
        self.last_error = None

    def dismiss_prompt(self) -> None:
        """End the interruption cycle without resuming it.

        Both store slots are emptied whether or not a prompt is still showing,
        so a dismissed or abandoned capture can never be restored later.
        """
        self._auth_bridge.discard()
        self._rate_bridge.discard()
        self.prompt = None

    # --- Exploration and streaks ---

    async def explore(self, topic: str) -> str | None:
        """Search a new root topic: the live streak is finalized and a new one starts."""
        self._streaks.start_new_streak(topic, persist=self._authenticated)
        self._focus_topic = topic.strip()
        return await self.generate(topic, DEFAULT_CONTENT_MODE)

    async def click_topic(self, topic: str) -> str | None:
        """Follow a topic link inside the focused explanation, extending the streak."""
        review_topic = self._streaks.get_review_topic()
        if review_topic is not None:
            self._streaks.finalize_streak(persist=self._authenticated)
        self._streaks.explore_from(review_topic or self._focus_topic, topic)
        self._focus_topic = topic.strip()
        return await self.generate(topic, DEFAULT_CONTENT_MODE)

    async def review_streak_word(self, topic: str) -> str | None:
        """Revisit a topic of the live streak. The streak itself is left as it is."""
        self._streaks.begin_review(topic)
        self._focus_topic = topic.strip()
        return await self.generate(topic, DEFAULT_CONTENT_MODE)

    async def search_during_review(self, topic: str) -> str | None:
        """Typing a different topic while reviewing ends the review and the streak."""
        self._streaks.end_review()
        return await self.explore(topic)

    def clear_input(self) -> StreakRecord | None:
        self._focus_topic = None
        self.last_error = None
        if self._streaks.get_review_topic() is not None:
            self._streaks.end_review()
            return None
        return self._streaks.finalize_streak(persist=self._authenticated)

    def end_streak(self) -> StreakRecord | None:
        return self._streaks.finalize_streak(persist=self._authenticated)

    # --- Content ---

    async def generate(self, topic: str, mode: str = DEFAULT_CONTENT_MODE, force: bool = False) -> str | None:
        """Fetch (or reuse) content for ``topic`` in ``mode``.

        Quiz content is parsed into questions and appended to the topic's quiz
        queue. With ``force`` the cache is bypassed. Returns the content text,
        or None when the call was interrupted or failed.
        """
        if mode not in CONTENT_MODES:
            raise ValueError(f"Unknown content mode '{mode}'.")
        try:
            return await self._fetch_content(topic, mode, force)
        except AuthRequiredError:
            self._authenticated = False
            self._interrupt_for_login(IntendedAction(kind="generate", topic=topic, mode=mode, force=force))
        except RateLimitedError:
            self._interrupt_for_rate_limit(PendingInterruptedAction.for_generation(topic, mode, force))
        except TransientNetworkError as exc:
            self._report(exc)
        return None

    async def refresh_content(self, topic: str, mode: str = DEFAULT_CONTENT_MODE) -> str | None:
        """Regenerate content even when it is cached. A refreshed quiz adds its questions to the queue."""
        return await self.generate(topic, mode, force=True)

    async def _fetch_content(self, topic: str, mode: str, force: bool = False) -> str:
        cached = self._content.get(topic, mode)
        if not force and cached is not None and (mode != "quiz" or self._quizzes.get_state(topic).questions):
            return cached

        generated = await self._backend.generate_content(
            topic,
            mode,
            self._language,
            prior_explanation=None if mode == DEFAULT_CONTENT_MODE else self._content.get(topic, DEFAULT_CONTENT_MODE),
        )
        if mode == "quiz":
            blocks = [block for raw in generated.quiz_raw for block in split_quiz_text(raw)]
            questions = parse_quiz_blocks(blocks)
            total = self._quizzes.load_questions(topic, questions)
            logger.info("Loaded %d of %d quiz blocks for %r (%d queued)", len(questions), len(blocks), topic, total)
            text = "\n\n".join(generated.quiz_raw)
        else:
            text = generated.explanation or ""
        self._content.put(topic, mode, text)
        return text

    # --- Quiz ---

    async def load_quiz(self, topic: str) -> QuizView:
        await self.generate(topic, "quiz")
        return self.quiz_view(topic)

    def quiz_state(self, topic: str) -> TopicQuizState:
        return self._quizzes.get_state(topic)

    def quiz_view(self, topic: str) -> QuizView:
        state = self._quizzes.get_state(topic)
        return QuizView(
            topic=topic,
            question_count=len(state.questions),
            current_index=current_index(state),
            score=score(state),
            is_complete=is_complete(state),
        )

    def answer(self, topic: str, question_index: int, selected_option_key: str) -> QuizAttempt:
        return self._quizzes.submit_attempt(
            topic,
            question_index,
            selected_option_key,
            forward=self._authenticated,
        )

    def retake(self, topic: str) -> QuizView:
        self._quizzes.reset(topic)
        return self.quiz_view(topic)

    # --- Favorites and profile ---

    def favorite_state(self, topic: str) -> FavoriteState:
        return self._favorites.get_state(topic)

    async def toggle_favorite(self, topic: str) -> FavoriteState:
        prior = self._favorites.get_state(topic).value
        if not self._authenticated:
            self._interrupt_for_login(IntendedAction(kind="toggle_favorite", topic=topic, prior_value=prior))
            return self._favorites.get_state(topic)
        try:
            return await self._favorites.toggle(topic, prior)
        except AuthRequiredError:
            self._authenticated = False
            self._interrupt_for_login(IntendedAction(kind="toggle_favorite", topic=topic, prior_value=prior))
        except (TransientNetworkError, RateLimitedError) as exc:
            self._report(exc, "Could not update favorite status.")
        return self._favorites.get_state(topic)

    async def refresh_profile(self) -> ProfileSnapshot | None:
        """Read the authoritative profile and reconcile local favorites with it."""
        if not self._authenticated:
            self._interrupt_for_login(IntendedAction(kind="open_profile"))
            return None
        try:
            profile = await self._backend.fetch_profile()
        except AuthRequiredError:
            self._authenticated = False
            self._interrupt_for_login(IntendedAction(kind="open_profile"))
            return None
        except (TransientNetworkError, RateLimitedError) as exc:
            self._report(exc)
            return None
        self._apply_profile(profile)
        return profile

    async def _sync_profile(self) -> None:
        """Read the profile right after login so favorites start from the server's values."""
        try:
            profile = await self._backend.fetch_profile()
        except TutorError as exc:
            logger.warning("Profile not loaded after login: %s", exc)
            return
        self._apply_profile(profile)

    def _apply_profile(self, profile: ProfileSnapshot) -> None:
        self._profile = profile
        self._favorites.reconcile(profile)
        for entry in profile.explored_words:
            self._content.merge_topic(entry.word, entry.cached_content)

    # --- Branching dialogue ---

    def get_story(self) -> StoryDialogue | None:
        return self._story

    async def start_story(self, topic: str) -> StoryNode | None:
        story = StoryDialogue(self._backend, topic)
        self._story = story
        try:
            return await story.start()
        except AuthRequiredError:
            self._authenticated = False
            self._interrupt_for_login(None)
        except RateLimitedError:
            self._interrupt_for_rate_limit(PendingInterruptedAction.for_story_start(topic))
        except TransientNetworkError as exc:
            self._report(exc)
        return None

    async def choose_story_option(self, index: int) -> StoryNode | None:
        """Pick an option of the current node; rate limits capture the choice for replay."""
        if self._story is None:
            raise RuntimeError("No story is in progress.")
        story = self._story
        option = story.option_at(index)
        try:
            return await story.choose(option)
        except AuthRequiredError:
            self._authenticated = False
            self._interrupt_for_login(None)
        except RateLimitedError:
            self._interrupt_for_rate_limit(PendingInterruptedAction.for_choice(story.topic, option))
        except TransientNetworkError as exc:
            self._report(exc)
        return None

    async def resume_after_upgrade(self) -> StoryNode | str | None:
        """Replay the action rejected by the rate limiter, exactly once."""
        self.prompt = None
        try:
            return await self._rate_bridge.resume(self._replay_pending)
        except AuthRequiredError:
            self._authenticated = False
            self._interrupt_for_login(None)
        except RateLimitedError:
            self.prompt = self._rate_bridge.signal
        except TransientNetworkError as exc:
            self._report(exc)
        return None

    async def _replay_pending(self, pending: PendingInterruptedAction) -> StoryNode | str | None:
        if pending.kind == "generate":
            return await self._fetch_content(pending.topic, pending.mode or DEFAULT_CONTENT_MODE, pending.force)
        if pending.kind == "story_start":
            story = StoryDialogue(self._backend, pending.topic)
            self._story = story
            return await story.start()
        story = self._story
        if story is None or normalize_topic(story.topic) != normalize_topic(pending.topic):
            logger.warning("Dropping story choice for %r: that story is no longer open", pending.topic)
            return None
        return await story.choose(pending.to_option())

    # --- Login and logout ---

    async def login(self, token: str) -> object | None:
        """Switch to the authenticated user and resume where the guest left off."""
        self._backend.set_auth_token(token)
        self._authenticated = True
        self.prompt = None
        self.last_error = None
        if not self._auth_bridge.has_pending():
            await self._sync_profile()
            return None
        return await self._auth_bridge.resume(self._restore_guest)

    async def _restore_guest(self, snapshot: GuestSnapshot) -> object | None:
        self._streaks.restore(snapshot.restored_streak())
        self._quizzes.replace_all(snapshot.restored_queues())
        self._content.replace_all(snapshot.cached_content)
        self._focus_topic = snapshot.focus_topic
        logger.info("Restored guest state (focus %r)", snapshot.focus_topic)

        action = snapshot.intended_action
        if action is None or action.kind != "open_profile":
            await self._sync_profile()
        if action is None:
            return None
        if action.kind == "generate" and action.topic:
            return await self.generate(action.topic, action.mode or DEFAULT_CONTENT_MODE, force=action.force)
        if action.kind == "toggle_favorite" and action.topic:
            return await self.toggle_favorite(action.topic)
        if action.kind == "open_profile":
            return await self.refresh_profile()
        return None

    async def logout(self) -> StreakRecord | None:
        """End the authenticated session: the streak is finalized and pending interrupts dropped."""
        record = self._streaks.finalize_streak(persist=self._authenticated)
        # Scheduled saves read the token when they are sent.
        await self._background.drain()
        self.dismiss_prompt()
        self._backend.set_auth_token(None)
        self._authenticated = False
        self._favorites.clear()
        self._profile = None
        self._story = None
        self._focus_topic = None
        return record

    async def close(self) -> None:
        """Tear the session down and wait for outstanding saves."""
        self._streaks.finalize_streak(persist=self._authenticated)
        self._auth_bridge.discard()
        self._rate_bridge.discard()
        await self._background.drain()

    # --- Interrupt helpers ---

    def _interrupt_for_login(self, intended: IntendedAction | None) -> None:
        live = self._streaks.get_live_streak()
        snapshot = GuestSnapshot(
            live_streak=list(live.words) if live else None,
            quiz_queues={
                topic: TopicQuizPayload.from_state(state)
                for topic, state in self._quizzes.export_all().items()
            },
            focus_topic=self._focus_topic,
            cached_content=self._content.export(),
            intended_action=intended,
        )
        self.prompt = self._auth_bridge.capture(snapshot)

    def _interrupt_for_rate_limit(self, pending: PendingInterruptedAction) -> None:
        self.prompt = self._rate_bridge.capture(pending)

    def _report(self, exc: Exception, message: str | None = None) -> None:
        logger.warning("Recoverable failure: %s", exc)
        self.last_error = message or str(exc) or NETWORK_ERROR_MESSAGE
