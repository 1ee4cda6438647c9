"""Review panel for plans and walkthroughs."""

from __future__ import annotations

from textual.containers import Horizontal, VerticalScroll
from textual.message import Message
from textual.widget import Widget
from textual.widgets import Button, Input, Markdown, Static


class PlanReviewWidget(Widget):
    """Shows a plan as markdown with comment entry and decision buttons.

    Review mode offers Approve and Request changes; walkthrough mode
    offers Acknowledge. Every decision posts ``Decided`` carrying the
    panel id it was shown with, so a stale panel cannot settle a
    reopened review.
    """

    class Decided(Message):
        def __init__(
            self,
            interaction_id: str,
            panel_id: int,
            action: str,
            comments: list[dict[str, str]],
        ) -> None:
            super().__init__()
            self.interaction_id = interaction_id
            self.panel_id = panel_id
            self.action = action
            self.comments = comments

    class CommentAdded(Message):
        def __init__(self, interaction_id: str, revised_part: str, revisor_instructions: str) -> None:
            super().__init__()
            self.interaction_id = interaction_id
            self.revised_part = revised_part
            self.revisor_instructions = revisor_instructions

    DEFAULT_CSS = """
    PlanReviewWidget {
        layout: vertical;
        height: 1fr;
        border: round $accent;
        padding: 0 1;
    }

    PlanReviewWidget .review-title {
        text-style: bold;
        color: $accent;
        height: auto;
    }

    PlanReviewWidget .review-body {
        height: 1fr;
    }

    PlanReviewWidget .review-comments {
        color: $warning;
        height: auto;
    }

    PlanReviewWidget .review-actions {
        height: auto;
    }

    PlanReviewWidget.read-only {
        border: round $surface-lighten-2;
    }
    """

    def __init__(
        self,
        interaction_id: str,
        panel_id: int,
        title: str,
        plan: str,
        mode: str = "review",
        read_only: bool = False,
        status: str = "pending",
        comments: list[dict[str, str]] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.interaction_id = interaction_id
        self.panel_id = panel_id
        self._title = title
        self._plan = plan
        self._mode = mode
        self._read_only = read_only
        self._status = status
        self._comments = list(comments or [])
        self._decided = False
        if read_only:
            self.add_class("read-only")

    def compose(self):
        label = self._title.replace("[", "\\[")
        if self._read_only:
            label += f" [dim]({self._status})[/dim]"
        yield Static(label, classes="review-title", markup=True)
        with VerticalScroll(classes="review-body"):
            yield Markdown(self._plan)
        yield Static(self._comments_text(), classes="review-comments", id="review-comments", markup=False)
        if self._read_only:
            return
        yield Input(placeholder="Comment: <quoted part> | <what to change>", id="comment-input")
        with Horizontal(classes="review-actions"):
            if self._mode == "walkthrough":
                yield Button("Acknowledge", variant="success", id="btn-acknowledge")
            else:
                yield Button("Approve", variant="success", id="btn-approve")
                yield Button("Request changes", variant="warning", id="btn-reject")
            yield Button("Close", id="btn-close")

    def set_comments(self, comments: list[dict[str, str]]) -> None:
        self._comments = list(comments)
        if self.is_mounted:
            self.query_one("#review-comments", Static).update(self._comments_text())

    def _comments_text(self) -> str:
        if not self._comments:
            return ""
        lines = [f"{len(self._comments)} comment(s):"]
        for c in self._comments:
            lines.append(f"  - {c.get('revisedPart', '')}: {c.get('revisorInstructions', '')}")
        return "\n".join(lines)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        text = event.value.strip()
        if not text:
            return
        part, sep, instructions = text.partition("|")
        if not sep:
            part, instructions = "", text
        event.input.value = ""
        self.post_message(self.CommentAdded(self.interaction_id, part.strip(), instructions.strip()))

    def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        if self._decided:
            return
        action = {
            "btn-approve": "approved",
            "btn-reject": "recreateWithChanges",
            "btn-acknowledge": "acknowledged",
            "btn-close": "closed",
        }.get(event.button.id or "")
        if action is None:
            return
        self._decided = True
        self.post_message(self.Decided(self.interaction_id, self.panel_id, action, list(self._comments)))
