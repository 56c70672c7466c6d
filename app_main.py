"""Application entry point for the TinyTutor session engine."""

from __future__ import annotations

from tutor_app.client.tutor_api_client import TutorApiClient
from tutor_app.constants.about import APP_NAME, APP_VERSION
from tutor_app.constants.network_constants import API_BASE_URL, DEFAULT_HOST, DEFAULT_PORT
from tutor_app.core.services.session_store import InMemorySessionStore
from tutor_app.core.tutor_session import TutorSession
from tutor_app.server.api_server import start_api_server
from tutor_app.utils.logging_config import configure_logging


def main() -> None:
    """Initialize logging, build one guest session, and serve it until interrupted."""
    logger = configure_logging()
    logger.info("Starting %s %s against %s", APP_NAME, APP_VERSION, API_BASE_URL)

    api_client = TutorApiClient(api_url=API_BASE_URL)
    session = TutorSession(backend=api_client, store=InMemorySessionStore())
    server, server_thread = start_api_server(session, api_client, host=DEFAULT_HOST, port=DEFAULT_PORT)
    try:
        server_thread.join()
    except KeyboardInterrupt:
        logger.info("Shutting down")
        # The session is closed by the server's lifespan shutdown.
        server.should_exit = True
        server_thread.join()


if __name__ == "__main__":
    main()
