# ui.py
from typing import List, Optional

from textual.app import ComposeResult
from textual.message import Message
from textual.widgets import (Button, DataTable, Input, Label, Markdown, RichLog,
                             Select, Static)

from models import CatalogItem, Category, ClassificationRecord, PlaybackState, PlaybackStatus

SEARCHABLE_CATEGORIES = [c for c in Category if not c.is_local_only]


class SearchControls(Static):
    """Widget for the search input, category picker and button."""
    class SearchRequested(Message):
        def __init__(self, query: str, category: Category) -> None:
            self.query = query
            self.category = category
            super().__init__()

    def __init__(self, category: Category = Category.MUSIC, **kwargs) -> None:
        super().__init__(**kwargs)
        self.category = category

    def compose(self) -> ComposeResult:
        yield Label("Search the archive (leave empty to browse):")
        yield Input(id="search-input")
        yield Select(
            [(c.display_name, c) for c in SEARCHABLE_CATEGORIES],
            value=self.category,
            allow_blank=False,
            id="category-select",
        )
        yield Button("Search", variant="primary")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.post_search_message()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self.post_search_message()

    def on_select_changed(self, event: Select.Changed) -> None:
        # Select also posts Changed when it mounts with its initial value.
        if event.value == self.category:
            return
        self.post_search_message()

    def post_search_message(self) -> None:
        query = self.query_one(Input).value.strip()
        category = self.query_one(Select).value
        if isinstance(category, Category):
            self.category = category
            self.post_message(self.SearchRequested(query, category))


class DetailsPane(Static):
    """Widget to display details of the highlighted item."""
    def __init__(self, base_url: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.base_url = base_url

    def on_mount(self) -> None:
        self.update_details(None)

    def update_details(self, item: Optional[CatalogItem], tags: Optional[ClassificationRecord] = None) -> None:
        if item:
            content = (
                f"## {item.title}\n\n"
                f"- **Creator**: {item.creator or 'Unknown'}\n"
                f"- **Date**: {item.date or 'Unknown'}\n"
                f"- **Type**: {item.media_kind.value}\n"
                f"- **Identifier**: `{item.identifier}`\n"
                f"- **Cover**: {item.thumbnail_url(self.base_url)}"
            )
            if tags:
                content += (
                    f"\n- **Genre**: {tags.genre or '-'}"
                    f"\n- **Source**: {tags.source_type}"
                    f"\n- **Content**: {tags.content_type}"
                )
            if item.description:
                content += f"\n\n{item.description[:600]}"
        else:
            content = "## Details\n\n*Select an item to see its details.*"
        self.query_one(Markdown).update(content)

    def compose(self) -> ComposeResult:
        yield Markdown()


class ResultsDisplay(DataTable):
    """Widget for the main results table."""
    class RowSelected(Message):
        def __init__(self, key: str) -> None:
            self.key = key
            super().__init__()

    class RowHighlighted(Message):
        def __init__(self, key: Optional[str]) -> None:
            self.key = key
            super().__init__()

    class EndReached(Message):
        """Posted when the cursor lands on the last row."""

    def on_mount(self) -> None:
        self.add_columns("Title", "Creator", "Type")
        self.cursor_type = "row"

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        if event.row_key.value is not None:
            self.post_message(self.RowSelected(event.row_key.value))

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        self.post_message(self.RowHighlighted(event.row_key.value))
        if self.row_count and event.cursor_row == self.row_count - 1:
            self.post_message(self.EndReached())

    def update_results(self, results: List[CatalogItem]) -> None:
        """Appends new rows in place when the old results are a prefix of the new."""
        existing = [row_key.value for row_key in self.rows]
        if existing and existing == [item.identifier for item in results[:len(existing)]]:
            fresh = results[len(existing):]
        else:
            self.clear()
            fresh = results
        for item in fresh:
            self.add_row(item.title, item.creator or "", item.media_kind.value, key=item.identifier)


class NowPlayingBar(Static):
    """The compact playback surface; renders the arbiter's projection."""
    def on_mount(self) -> None:
        self.update_state(PlaybackState())

    def update_state(self, state: PlaybackState) -> None:
        if state.status == PlaybackStatus.FAILED:
            self.update(f"[red]❌ {state.error}[/red]")
            return
        if state.status == PlaybackStatus.IDLE:
            self.update("[dim]Nothing playing[/dim]")
            return
        icon = {
            PlaybackStatus.STARTING: "⏳",
            PlaybackStatus.PLAYING: "▶",
            PlaybackStatus.PAUSED: "⏸",
        }[state.status]
        prev_hint = "⏮ " if state.has_previous_track else "  "
        next_hint = " ⏭" if state.has_next_track else ""
        position = f" ({state.queue_position + 1}/{state.queue_length})" if state.queue_length else ""
        self.update(f"{prev_hint}{icon} [b]{state.current_title}[/b]{position}{next_hint}")


class LogPane(RichLog):
    """A dedicated widget for logging application events."""
    def add_message(self, message: str) -> None:
        self.write(message)
