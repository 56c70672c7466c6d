"""Static metadata describing TinyTutor."""

APP_NAME = "TinyTutor"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "TinyTutor explains words and concepts with an AI tutor, quizzes you on them, "
    "and keeps track of the chains of related topics you explore."
)
