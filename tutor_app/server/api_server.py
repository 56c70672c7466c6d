"""FastAPI server that exposes the tutor session to a front-end."""

from __future__ import annotations

from contextlib import asynccontextmanager
import inspect
import logging
from threading import Thread
from typing import Any, Callable

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field
import uvicorn

from tutor_app.client.tutor_api_client import TutorApiClient
from tutor_app.constants.about import APP_NAME, APP_VERSION
from tutor_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from tutor_app.constants.tutor_constants import DEFAULT_CONTENT_MODE
from tutor_app.core.content_renderer import extract_topics, renderer
from tutor_app.core.errors import AuthRequiredError, RateLimitedError, TransientNetworkError
from tutor_app.core.models import LiveStreak, StoryNode, StreakRecord, TopicQuizState
from tutor_app.core.tutor_session import TutorSession

logger = logging.getLogger(__name__)


class TopicPayload(BaseModel):
    """Payload schema for actions on a single topic."""

    topic: str = Field(min_length=1)


class GeneratePayload(BaseModel):
    topic: str = Field(min_length=1)
    mode: str = DEFAULT_CONTENT_MODE


class AnswerPayload(BaseModel):
    """Payload schema for submitted quiz answers."""

    question_index: int
    selected_option_key: str


class LoginPayload(BaseModel):
    username_or_email: str
    password: str


class StoryChoicePayload(BaseModel):
    option_index: int


def _get_session_dependency(session: TutorSession):
    def dependency() -> TutorSession:
        return session

    return dependency


async def _perform(session: TutorSession, action: Callable[[], Any], resumes: bool = False) -> Any:
    """Run one session action and translate its outcome into HTTP errors.

    Any action other than a resume (login, upgrade) closes the open
    interruption cycle first, dropping whatever it had captured.
    """
    session.dismiss_error()
    if resumes:
        session.prompt = None
    else:
        session.dismiss_prompt()
    try:
        result = action()
        if inspect.isawaitable(result):
            result = await result
    except AuthRequiredError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except RateLimitedError as exc:
        raise HTTPException(status_code=429, detail=str(exc)) from exc
    except TransientNetworkError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except IndexError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    if session.prompt is not None:
        status = 401 if session.prompt.kind == "login" else 429
        raise HTTPException(status_code=status, detail=session.prompt.message)
    if session.last_error is not None:
        raise HTTPException(status_code=503, detail=session.last_error)
    return result


def _streak_to_dict(streak: LiveStreak | None) -> dict[str, object] | None:
    if streak is None:
        return None
    return {"words": list(streak.words), "score": streak.score}


def _record_to_dict(record: StreakRecord | None) -> dict[str, object] | None:
    if record is None:
        return None
    return {
        "id": record.id,
        "words": list(record.words),
        "score": record.score,
        "completed_at": record.completed_at.isoformat(),
    }


def _content_to_dict(session: TutorSession, topic: str, text: str | None) -> dict[str, object]:
    return {
        "topic": topic,
        "content_html": renderer.render_fragment(text or ""),
        "topics": extract_topics(text or ""),
        "live_streak": _streak_to_dict(session.get_live_streak()),
        "review_topic": session.get_review_topic(),
    }


def _quiz_to_dict(session: TutorSession, topic: str) -> dict[str, object]:
    view = session.quiz_view(topic)
    state: TopicQuizState = session.quiz_state(topic)
    questions = []
    for index, question in enumerate(state.questions):
        attempt = state.attempt_for(index)
        entry: dict[str, object] = {
            "question_html": renderer.render_fragment(question.question),
            "options": dict(question.options),
            "selected_option_key": attempt.selected_option_key if attempt else None,
        }
        # The answer is only revealed once the question has been attempted.
        if attempt is not None:
            entry["is_correct"] = attempt.is_correct
            entry["correct_option_key"] = question.correct_option_key
            entry["explanation"] = question.explanation
        questions.append(entry)
    return {
        "topic": view.topic,
        "question_count": view.question_count,
        "current_index": view.current_index,
        "score": view.score,
        "is_complete": view.is_complete,
        "questions": questions,
    }


def _story_to_dict(session: TutorSession, node: StoryNode | None) -> dict[str, object]:
    story = session.get_story()
    current = node or (story.current_node if story else None)
    return {
        "topic": story.topic if story else None,
        "ended": story.is_ended() if story else False,
        "node": None
        if current is None
        else {
            "dialogue": current.dialogue,
            "image_prompts": list(current.image_prompts),
            "interaction_type": current.interaction_type,
            "options": [{"text": option.text, "leads_to": option.leads_to} for option in current.options],
        },
    }


def create_api_app(session: TutorSession, api_client: TutorApiClient | None = None) -> FastAPI:
    """Create a FastAPI application wired to the provided tutor session."""

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await session.close()
        if api_client is not None:
            await api_client.close()

    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION, lifespan=lifespan)
    session_dep = _get_session_dependency(session)

    @app.get("/state")
    def get_state(current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        return {
            "authenticated": current.is_authenticated(),
            "focus_topic": current.get_focus_topic(),
            "live_streak": _streak_to_dict(current.get_live_streak()),
            "review_topic": current.get_review_topic(),
            "prompt": None
            if current.prompt is None
            else {"kind": current.prompt.kind, "message": current.prompt.message},
            "last_error": current.last_error,
        }

    # --- Exploration ---

    @app.post("/explore")
    async def explore(payload: TopicPayload, current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        text = await _perform(current, lambda: current.explore(payload.topic))
        return _content_to_dict(current, payload.topic, text)

    @app.post("/click")
    async def click_topic(payload: TopicPayload, current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        text = await _perform(current, lambda: current.click_topic(payload.topic))
        return _content_to_dict(current, payload.topic, text)

    @app.post("/review")
    async def review(payload: TopicPayload, current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        text = await _perform(current, lambda: current.review_streak_word(payload.topic))
        return _content_to_dict(current, payload.topic, text)

    @app.post("/generate")
    async def generate(payload: GeneratePayload, current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        text = await _perform(current, lambda: current.generate(payload.topic, payload.mode))
        return _content_to_dict(current, payload.topic, text)

    @app.post("/refresh")
    async def refresh(payload: GeneratePayload, current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        text = await _perform(current, lambda: current.refresh_content(payload.topic, payload.mode))
        return _content_to_dict(current, payload.topic, text)

    @app.post("/clear")
    async def clear_input(current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        record = await _perform(current, current.clear_input)
        return {"finalized": _record_to_dict(record)}

    @app.get("/streak")
    def get_streak(current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        return {
            "live_streak": _streak_to_dict(current.get_live_streak()),
            "review_topic": current.get_review_topic(),
            "history": [_record_to_dict(record) for record in current.get_streak_history()],
        }

    # --- Quiz ---

    @app.get("/quiz/{topic}")
    async def get_quiz(topic: str, current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        await _perform(current, lambda: current.load_quiz(topic))
        return _quiz_to_dict(current, topic)

    @app.post("/quiz/{topic}/answer", status_code=201)
    async def submit_answer(
        topic: str,
        payload: AnswerPayload,
        current: TutorSession = Depends(session_dep),
    ) -> dict[str, object]:
        attempt = await _perform(
            current,
            lambda: current.answer(topic, payload.question_index, payload.selected_option_key),
        )
        return {
            "question_index": attempt.question_index,
            "selected_option_key": attempt.selected_option_key,
            "is_correct": attempt.is_correct,
            "submitted_at": attempt.timestamp.isoformat(),
            "quiz": _quiz_to_dict(current, topic),
        }

    @app.post("/quiz/{topic}/retake")
    async def retake(topic: str, current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        await _perform(current, lambda: current.retake(topic))
        return _quiz_to_dict(current, topic)

    # --- Favorites and profile ---

    @app.post("/favorite")
    async def toggle_favorite(payload: TopicPayload, current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        state = await _perform(current, lambda: current.toggle_favorite(payload.topic))
        return {"topic": payload.topic, "is_favorite": state.value, "pending": state.pending}

    @app.get("/profile")
    async def get_profile(current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        profile = await _perform(current, current.refresh_profile)
        return {
            "username": profile.username,
            "tier": profile.tier,
            "explored_words": [entry.word for entry in profile.explored_words],
            "favorite_words": [entry.word for entry in profile.favorite_words],
            "streak_history": [_record_to_dict(record) for record in profile.streak_history],
        }

    # --- Login ---

    @app.post("/login")
    async def login(payload: LoginPayload, current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        if api_client is None:
            raise HTTPException(status_code=503, detail="Login is not available.")

        async def log_in() -> None:
            token = await api_client.login(payload.username_or_email, payload.password)
            await current.login(token)

        await _perform(current, log_in, resumes=True)
        return {
            "authenticated": current.is_authenticated(),
            "focus_topic": current.get_focus_topic(),
            "live_streak": _streak_to_dict(current.get_live_streak()),
        }

    @app.post("/logout")
    async def logout(current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        record = await _perform(current, current.logout)
        return {"finalized": _record_to_dict(record)}

    @app.post("/prompt/dismiss", status_code=204)
    def dismiss_prompt(current: TutorSession = Depends(session_dep)) -> None:
        current.dismiss_prompt()

    # --- Branching dialogue ---

    @app.post("/story/start")
    async def start_story(payload: TopicPayload, current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        node = await _perform(current, lambda: current.start_story(payload.topic))
        return _story_to_dict(current, node)

    @app.post("/story/choose")
    async def choose_story_option(
        payload: StoryChoicePayload,
        current: TutorSession = Depends(session_dep),
    ) -> dict[str, object]:
        node = await _perform(current, lambda: current.choose_story_option(payload.option_index))
        return _story_to_dict(current, node)

    @app.post("/story/resume")
    async def resume_story(current: TutorSession = Depends(session_dep)) -> dict[str, object]:
        result = await _perform(current, current.resume_after_upgrade, resumes=True)
        node = result if isinstance(result, StoryNode) else None
        return _story_to_dict(current, node)

    return app


def start_api_server(
    session: TutorSession,
    api_client: TutorApiClient | None = None,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> tuple[uvicorn.Server, Thread]:
    """Start the FastAPI server in a background daemon thread.

    Setting ``should_exit`` on the returned server runs the lifespan shutdown,
    which closes the session.
    """
    app = create_api_app(session, api_client)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)

    def run_server() -> None:
        server.run()

    thread = Thread(target=run_server, name="TutorApiServer", daemon=True)
    thread.start()
    logger.info("Serving %s API on http://%s:%d", APP_NAME, host, port)
    return server, thread
