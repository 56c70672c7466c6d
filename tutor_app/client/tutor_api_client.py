"""
HTTP client for the TinyTutor backend API.

Every failure is translated into the engine's error taxonomy:
401/403 become AuthRequiredError, 429 becomes RateLimitedError, and any
other failure (transport errors, timeouts, non-2xx statuses, unreadable
bodies) becomes TransientNetworkError. Nothing is retried here.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Sequence

import httpx

from tutor_app.constants.network_constants import API_BASE_URL, STORY_REQUEST_TIMEOUT_SECONDS
from tutor_app.core.backend import GeneratedContent
from tutor_app.core.errors import AuthRequiredError, RateLimitedError, TransientNetworkError
from tutor_app.core.models import (
    ProfileSnapshot,
    StoryNode,
    StoryOption,
    StoryTurn,
    StreakRecord,
    WordEntry,
)

logger = logging.getLogger(__name__)


class TutorApiClient:
    """Async client for content generation and profile persistence."""

    def __init__(
        self,
        api_url: str = API_BASE_URL,
        story_timeout_seconds: float = STORY_REQUEST_TIMEOUT_SECONDS,
        token: str | None = None,
    ):
        """
        Initialize the client.

        Args:
            api_url: Base URL of the backend
            story_timeout_seconds: Timeout for branching-dialogue requests;
                explanation and quiz requests wait without a limit
            token: Bearer token of an authenticated user, if any
        """
        self.api_url = api_url.rstrip("/")
        self.story_timeout = httpx.Timeout(story_timeout_seconds)
        self.token = token
        self.client = httpx.AsyncClient(timeout=None, follow_redirects=True)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    def set_auth_token(self, token: str | None) -> None:
        self.token = token

    # --- Authentication ---

    async def login(self, username_or_email: str, password: str) -> str:
        """Exchange credentials for a bearer token."""
        data = await self._post("/login", {"usernameOrEmail": username_or_email, "password": password})
        token = data.get("token")
        if not isinstance(token, str) or not token:
            raise TransientNetworkError("Login response did not include a token.")
        return token

    # --- Content ---

    async def generate_content(
        self,
        topic: str,
        mode: str,
        language: str,
        prior_explanation: str | None = None,
    ) -> GeneratedContent:
        payload: dict[str, Any] = {"question": topic, "mode": mode, "language": language}
        if prior_explanation:
            payload["prior_explanation"] = prior_explanation
        data = await self._post("/generate_explanation", payload)

        explanation = data.get("explanation")
        quiz = data.get("quiz")
        content = data.get("content")
        if quiz is None and mode == "quiz":
            quiz = content
        elif explanation is None and mode != "quiz":
            explanation = content

        if isinstance(quiz, str):
            quiz_raw = [quiz]
        elif isinstance(quiz, list):
            quiz_raw = [block for block in quiz if isinstance(block, str)]
        else:
            quiz_raw = []
        return GeneratedContent(
            explanation=explanation if isinstance(explanation, str) else None,
            quiz_raw=quiz_raw,
        )

    async def generate_story_node(
        self,
        topic: str,
        history: Sequence[StoryTurn],
        chosen: StoryOption | None,
    ) -> StoryNode:
        payload = {
            "topic": topic,
            "history": [{"type": turn.speaker, "text": turn.text} for turn in history],
            "leads_to": chosen.leads_to if chosen else None,
        }
        data = await self._post("/generate_story_node", payload, timeout=self.story_timeout)
        return parse_story_node(data)

    # --- Persistence ---

    async def save_streak(self, words: Sequence[str], score: int) -> str | None:
        data = await self._post("/save_streak", {"words": list(words), "score": score})
        streak_id = data.get("streak_id")
        return str(streak_id) if streak_id else None

    async def save_quiz_attempt(
        self,
        topic: str,
        question_index: int,
        selected_option_key: str,
        is_correct: bool,
    ) -> None:
        await self._post(
            "/save_quiz_attempt",
            {
                "word": topic,
                "question_index": question_index,
                "selected_option_key": selected_option_key,
                "is_correct": is_correct,
            },
        )

    async def toggle_favorite(self, topic: str) -> None:
        await self._post("/toggle_favorite", {"word": topic})

    async def fetch_profile(self) -> ProfileSnapshot:
        data = await self._get("/profile")
        return parse_profile(data)

    # --- Transport ---

    def _headers(self) -> dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        timeout: httpx.Timeout | None = None,
    ) -> dict[str, Any]:
        url = f"{self.api_url}{path}"
        try:
            if timeout is None:
                response = await self.client.post(url, json=payload, headers=self._headers())
            else:
                response = await self.client.post(url, json=payload, headers=self._headers(), timeout=timeout)
        except httpx.TimeoutException as e:
            logger.warning(f"Request to {path} timed out")
            raise TransientNetworkError(f"The server took too long to answer {path}.") from e
        except httpx.RequestError as e:
            logger.warning(f"Request to {path} failed: {e}")
            raise TransientNetworkError(f"Could not reach the server: {e}") from e
        return _read_body(path, response)

    async def _get(self, path: str) -> dict[str, Any]:
        url = f"{self.api_url}{path}"
        try:
            response = await self.client.get(url, headers=self._headers())
        except httpx.TimeoutException as e:
            logger.warning(f"Request to {path} timed out")
            raise TransientNetworkError(f"The server took too long to answer {path}.") from e
        except httpx.RequestError as e:
            logger.warning(f"Request to {path} failed: {e}")
            raise TransientNetworkError(f"Could not reach the server: {e}") from e
        return _read_body(path, response)


def _read_body(path: str, response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    status = response.status_code
    message = data.get("error") or f"HTTP error! status: {status}"
    if status in (401, 403):
        raise AuthRequiredError(message)
    if status == 429:
        retry_after = response.headers.get("Retry-After")
        raise RateLimitedError(
            message,
            retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if status >= 400:
        logger.error(f"Backend error on {path}: {status}")
        raise TransientNetworkError(message)
    return data


def parse_story_node(data: dict[str, Any]) -> StoryNode:
    """Build a StoryNode from the story service body.

    Bodies that do not have the expected shape raise TransientNetworkError.
    """
    dialogue = data.get("dialogue")
    if not isinstance(dialogue, str) or not dialogue.strip():
        raise TransientNetworkError("The story service returned an empty dialogue.")
    try:
        interaction = data.get("interaction") or {}
        options = [
            StoryOption(text=str(option.get("text") or ""), leads_to=_optional_str(option.get("leads_to")))
            for option in interaction.get("options") or []
            if isinstance(option, dict)
        ]
        return StoryNode(
            dialogue=dialogue,
            image_prompts=[str(prompt) for prompt in data.get("image_prompts") or []],
            interaction_type=str(interaction.get("type") or "Text Choice"),
            options=options,
        )
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning(f"Unreadable story node: {e}")
        raise TransientNetworkError("The story service returned an unreadable node.") from e


def parse_profile(data: dict[str, Any]) -> ProfileSnapshot:
    """Build a ProfileSnapshot; unreadable bodies raise TransientNetworkError."""
    try:
        return _build_profile(data)
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning(f"Unreadable profile: {e}")
        raise TransientNetworkError("The profile service returned an unreadable profile.") from e


def _build_profile(data: dict[str, Any]) -> ProfileSnapshot:
    raw_words = data.get("explored_words_list") or data.get("explored_words") or []
    words = [
        WordEntry(
            id=str(item.get("id") or item.get("word")),
            word=str(item.get("word")),
            is_favorite=bool(item.get("is_favorite", False)),
            last_explored_at=item.get("last_explored_at"),
            cached_content={
                mode: text
                for mode, text in (item.get("generated_content_cache") or {}).items()
                if isinstance(text, str)
            },
        )
        for item in raw_words
        if isinstance(item, dict) and item.get("word")
    ]
    streaks = [
        StreakRecord(
            id=str(item.get("id") or ""),
            words=tuple(item.get("words", [])),
            score=int(item.get("score", len(item.get("words", [])))),
            completed_at=_parse_timestamp(item.get("completed_at")),
        )
        for item in data.get("streak_history") or []
        if isinstance(item, dict)
    ]
    return ProfileSnapshot(
        username=str(data.get("username", "")),
        tier=str(data.get("tier", "free")),
        explored_words=words,
        streak_history=streaks,
    )


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.fromtimestamp(0, tz=timezone.utc)


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)
