"""Network configuration constants for the tutor engine."""

import os

API_BASE_URL: str = os.environ.get("TINYTUTOR_API_BASE_URL", "https://tiny-tutor-app.onrender.com")
STORY_REQUEST_TIMEOUT_SECONDS: float = 30.0

DEFAULT_HOST: str = "127.0.0.1"
DEFAULT_PORT: int = int(os.environ.get("TINYTUTOR_PORT", "8000"))
