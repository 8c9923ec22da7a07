from __future__ import annotations

from ..index import IndexEntry
from .state import CandidateInfo, filter_candidates
from .textual import App, ComposeResult, Footer, Header, Input, Label, ListItem, ListView, Static, Vertical


APP_CSS = """
Screen {
    padding: 0;
}

#picker-shell {
    padding: 1 2;
}

#picker-filter {
    margin-bottom: 1;
}
"""


class CandidateItem(ListItem):
    def __init__(self, info: CandidateInfo) -> None:
        super().__init__(Label(info.display()))
        self.info = info


class PickerApp(App[IndexEntry]):
    """Let the user choose one recipe out of an ambiguous resolution."""

    TITLE = "cookshelf"
    CSS = APP_CSS
    BINDINGS = [("escape", "cancel", "Cancel"), ("q", "cancel", "Cancel")]

    def __init__(self, reference: str, candidates: list[CandidateInfo]) -> None:
        super().__init__()
        self.reference = reference
        self.candidates = candidates
        self.shown = list(candidates)

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical(id="picker-shell"):
            yield Static(f"{self.reference!r} matches several recipes. Pick one:", id="picker-title")
            yield Input(placeholder="filter", id="picker-filter")
            yield ListView(*[CandidateItem(info) for info in self.shown], id="picker-list")
        yield Footer()

    def on_mount(self) -> None:
        self.query_one("#picker-list", ListView).focus()

    async def on_input_changed(self, event: Input.Changed) -> None:
        self.shown = filter_candidates(self.candidates, event.value)
        list_view = self.query_one("#picker-list", ListView)
        await list_view.clear()
        for info in self.shown:
            await list_view.append(CandidateItem(info))

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if self.shown:
            self.exit(self.shown[0].entry)

    def on_list_view_selected(self, event: ListView.Selected) -> None:
        item = event.item
        if isinstance(item, CandidateItem):
            self.exit(item.info.entry)

    def action_cancel(self) -> None:
        self.exit(None)
