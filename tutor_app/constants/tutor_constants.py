"""Content and session constants shared across the engine and API layers."""

CONTENT_MODES: tuple[str, ...] = ("explain", "fact", "quiz", "deep_dive")
DEFAULT_CONTENT_MODE: str = "explain"
DEFAULT_LANGUAGE: str = "en"

MIN_RECORDED_STREAK_SCORE: int = 2

GUEST_SNAPSHOT_KEY: str = "tinyTutorGuestSnapshot"
PENDING_ACTION_KEY: str = "tinyTutorPendingAction"

LOGIN_PROMPT_MESSAGE: str = "Please login to continue exploring."
RATE_LIMIT_PROMPT_MESSAGE: str = (
    "You have reached the free usage limit. Upgrade or add your own API key to continue."
)
NETWORK_ERROR_MESSAGE: str = "Something went wrong talking to the server. Please try again."
