"""Home and list views: pending requests, pending reviews, task lists, history."""

from __future__ import annotations

from textual.message import Message
from textual.widget import Widget
from textual.widgets import OptionList, Static
from textual.widgets.option_list import Option


class RequestListWidget(Widget):
    """Selectable overview. Posts ``Picked`` with the kind and id of the entry."""

    class Picked(Message):
        def __init__(self, kind: str, item_id: str) -> None:
            super().__init__()
            self.kind = kind
            self.item_id = item_id

    DEFAULT_CSS = """
    RequestListWidget {
        layout: vertical;
        height: 1fr;
    }

    RequestListWidget .list-heading {
        text-style: bold;
        height: auto;
        margin: 1 0 0 0;
    }

    RequestListWidget OptionList {
        height: 1fr;
    }
    """

    def __init__(
        self,
        heading: str,
        requests: list[dict],
        plan_reviews: list[dict] | None = None,
        task_lists: list[dict] | None = None,
        history: list[dict] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._heading = heading
        self._requests = requests
        self._plan_reviews = plan_reviews or []
        self._task_lists = task_lists or []
        self._history = history or []

    def compose(self):
        yield Static(self._heading, classes="list-heading", markup=False)
        yield OptionList(*self.build_options())

    def build_options(self) -> list[Option]:
        options: list[Option] = []
        for r in self._requests:
            options.append(Option(f"? {r.get('title', '')}: {r.get('question', '')[:60]}", id=f"request:{r['id']}"))
        for p in self._plan_reviews:
            options.append(Option(f"▤ {p.get('title', '')} (awaiting review)", id=f"review:{p['id']}"))
        for t in self._task_lists:
            options.append(Option(f"☐ {t.get('title', '')}", id=f"tasks:{t['id']}"))
        for h in self._history:
            label = h.get("title") or h.get("question") or ""
            status = h.get("status", "")
            options.append(Option(f"  {label[:60]} ({status})", id=f"history:{h['id']}"))
        if not options:
            options.append(Option("Nothing pending", id="empty:", disabled=True))
        return options

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        event.stop()
        kind, _, item_id = (event.option.id or "").partition(":")
        if item_id:
            self.post_message(self.Picked(kind, item_id))
