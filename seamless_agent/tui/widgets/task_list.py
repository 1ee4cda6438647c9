"""Task list panel with per-task reviewer comments."""

from __future__ import annotations

from textual.message import Message
from textual.widget import Widget
from textual.widgets import Input, OptionList, Static
from textual.widgets.option_list import Option

_STATUS_ICONS = {
    "pending": "○",
    "in-progress": "◐",
    "completed": "●",
    "blocked": "✗",
}


class TaskListWidget(Widget):
    """Shows a task list; Enter on a task then typing a comment posts ``Commented``."""

    class Commented(Message):
        def __init__(self, list_id: str, task_id: str, instructions: str, reopened: bool) -> None:
            super().__init__()
            self.list_id = list_id
            self.task_id = task_id
            self.instructions = instructions
            self.reopened = reopened

    DEFAULT_CSS = """
    TaskListWidget {
        layout: vertical;
        height: 1fr;
        border: round $primary;
        padding: 0 1;
    }

    TaskListWidget .task-list-title {
        text-style: bold;
        height: auto;
    }

    TaskListWidget OptionList {
        height: 1fr;
    }
    """

    def __init__(self, list_id: str, title: str, closed: bool, tasks: list[dict], **kwargs) -> None:
        super().__init__(**kwargs)
        self.list_id = list_id
        self._title = title
        self._closed = closed
        self._tasks = tasks
        self._selected_task: dict | None = None

    def compose(self):
        yield Static(self._heading(), classes="task-list-title", id="task-list-title", markup=True)
        yield OptionList(*self._options(), id="task-options")
        yield Input(placeholder="Select a task, then type a comment", id="task-comment", disabled=self._closed)

    def update_tasks(self, closed: bool, tasks: list[dict]) -> None:
        self._closed = closed
        self._tasks = tasks
        if not self.is_mounted:
            return
        self.query_one("#task-list-title", Static).update(self._heading())
        options = self.query_one("#task-options", OptionList)
        options.clear_options()
        options.add_options(self._options())
        self.query_one("#task-comment", Input).disabled = closed

    def _heading(self) -> str:
        done = sum(1 for t in self._tasks if t.get("status") == "completed")
        state = " [dim](closed)[/dim]" if self._closed else ""
        return f"{self._title.replace('[', chr(92) + '[')} {done}/{len(self._tasks)}{state}"

    def _options(self) -> list[Option]:
        options = []
        for task in self._tasks:
            icon = _STATUS_ICONS.get(task.get("status", ""), "?")
            pending = sum(1 for c in task.get("comments", []) if c.get("status") == "pending")
            suffix = f"  ({pending} comment(s))" if pending else ""
            options.append(Option(f"{icon} {task.get('title', '')}{suffix}", id=task.get("id")))
        return options

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        event.stop()
        task_id = event.option.id
        self._selected_task = next((t for t in self._tasks if t.get("id") == task_id), None)
        if not self._closed:
            self.query_one("#task-comment", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        text = event.value.strip()
        if not text or self._selected_task is None:
            return
        event.input.value = ""
        reopened = self._selected_task.get("status") == "completed"
        self.post_message(self.Commented(self.list_id, self._selected_task["id"], text, reopened))
