"""Markdown + LaTeX rendering helpers for question and option text.

The renderer converts the source markup into HTML fragments and leaves the
math to MathJax on the client, so the stored question text stays plain
markdown and is not tied to a particular math engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt

from exam_app.core.models import Question


@dataclass(slots=True)
class MarkdownMathRenderer:
    """Converts markdown-with-math into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str) -> str:
        """Render a markdown string into an HTML fragment."""

        sanitized = markdown_text.strip()
        if not sanitized:
            return "<p><em>No content provided.</em></p>"
        return self._markdown.render(sanitized)

    def render_question(self, question: Question) -> dict[str, object]:
        """Render a question and its labelled options for the student view."""

        return {
            "question_html": self.render_fragment(question.question_text),
            "options": [
                {"label": label.value, "html": self.render_fragment(text)}
                for label, text in question.options_by_label().items()
            ],
        }


# MarkdownIt is safe for concurrent read-only renders, so one shared
# instance serves every request.
renderer = MarkdownMathRenderer()
