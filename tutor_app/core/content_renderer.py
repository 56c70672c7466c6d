"""Markdown rendering and topic-link extraction for generated explanations.

Architecture note:
    The content service marks follow-up topics inline as
    ``<click>topic</click>``. Raw HTML is disabled in the markdown renderer, so
    the markers are first rewritten into ordinary markdown links using the
    ``topic:`` scheme; the front-end intercepts those links and turns a click
    into a streak extension. Keeping the rewrite here means every client gets
    the same links and the same list of clickable topics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from urllib.parse import quote

from markdown_it import MarkdownIt

_CLICK_PATTERN = re.compile(r"<click>(.*?)</click>", re.IGNORECASE | re.DOTALL)
TOPIC_LINK_SCHEME = "topic:"


@dataclass(slots=True)
class ContentRenderer:
    """Converts explanation markdown into HTML fragments with topic links."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str) -> str:
        """Render an explanation into an HTML fragment."""

        sanitized = markdown_text.strip() or ""
        if not sanitized:
            return "<p><em>No content provided.</em></p>"
        return self._markdown.render(_CLICK_PATTERN.sub(_to_topic_link, sanitized))


def extract_topics(text: str) -> list[str]:
    """Clickable topics in order of first appearance, without duplicates."""
    seen: set[str] = set()
    topics: list[str] = []
    for match in _CLICK_PATTERN.finditer(text):
        topic = " ".join(match.group(1).split())
        if topic and topic.lower() not in seen:
            seen.add(topic.lower())
            topics.append(topic)
    return topics


def strip_click_markup(text: str) -> str:
    return _CLICK_PATTERN.sub(lambda match: match.group(1), text)


def _to_topic_link(match: re.Match[str]) -> str:
    topic = " ".join(match.group(1).split())
    if not topic:
        return ""
    label = topic.replace("[", r"\[").replace("]", r"\]")
    return f"[{label}](<{TOPIC_LINK_SCHEME}{quote(topic)}>)"


renderer = ContentRenderer()
