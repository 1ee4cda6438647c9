"""Question widget: one pending ask_user request with a free-text answer."""

from __future__ import annotations

from textual.containers import Horizontal
from textual.message import Message
from textual.widget import Widget
from textual.widgets import Button, Input, Static


class QuestionWidget(Widget):
    """Renders a pending question with an answer box.

    Submitting posts ``Answered``; the cancel button posts ``Dismissed``.
    Either way the widget locks itself so it cannot answer twice.
    """

    class Answered(Message):
        """Posted when the user submits an answer."""

        def __init__(self, request_id: str, answer: str) -> None:
            super().__init__()
            self.request_id = request_id
            self.answer = answer

    class Dismissed(Message):
        """Posted when the user cancels the request."""

        def __init__(self, request_id: str) -> None:
            super().__init__()
            self.request_id = request_id

    DEFAULT_CSS = """
    QuestionWidget {
        layout: vertical;
        margin: 1 0 1 2;
        padding: 1 2;
        background: $surface-darken-1;
        border: round $warning;
        height: auto;
    }

    QuestionWidget .question-title {
        color: $warning;
        text-style: bold;
        height: auto;
    }

    QuestionWidget .question-text {
        margin: 1 0;
        height: auto;
        width: 100%;
    }

    QuestionWidget .question-attachments {
        color: $text-muted;
        height: auto;
    }

    QuestionWidget .question-actions {
        height: auto;
        margin-top: 1;
    }

    QuestionWidget.answered {
        border: round $success-darken-1;
        background: $surface-darken-2;
    }

    QuestionWidget .selected-answer {
        color: $success;
        text-style: italic;
        margin-top: 1;
    }
    """

    def __init__(
        self,
        request_id: str,
        title: str,
        question: str,
        attachments: list[dict] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._request_id = request_id
        self._title = title
        self._question = question
        self._attachments = attachments or []
        self._answered = False

    @property
    def request_id(self) -> str:
        return self._request_id

    def compose(self):
        yield Static(self._title.replace("[", "\\["), classes="question-title", markup=True)
        yield Static(self._question.replace("[", "\\["), classes="question-text", markup=True)
        if self._attachments:
            names = ", ".join(a.get("name", "?") for a in self._attachments)
            yield Static(f"Attached: {names}", classes="question-attachments", markup=False)
        yield Input(placeholder="Type your response and press Enter", id="answer-input")
        with Horizontal(classes="question-actions"):
            yield Button("Submit", variant="primary", id="btn-submit")
            yield Button("Cancel", variant="error", id="btn-cancel")

    def on_mount(self) -> None:
        self.query_one("#answer-input", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        self._submit(event.value)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        if event.button.id == "btn-submit":
            self._submit(self.query_one("#answer-input", Input).value)
        elif event.button.id == "btn-cancel" and not self._answered:
            self._lock("(cancelled)")
            self.post_message(self.Dismissed(self._request_id))

    def _submit(self, text: str) -> None:
        answer = text.strip()
        if self._answered or not answer:
            return
        self._lock(answer)
        self.post_message(self.Answered(request_id=self._request_id, answer=answer))

    def _lock(self, label: str) -> None:
        self._answered = True
        self.add_class("answered")
        safe = label.replace("[", "\\[")
        self.mount(Static(f"[green]\\> {safe}[/green]", classes="selected-answer", markup=True))
