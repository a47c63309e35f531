# main.py
import argparse
import logging
from dataclasses import replace
try:
    import pyperclip
except ImportError:
    pyperclip = None

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.reactive import reactive
from textual.widgets import Footer, Header, Input

from classifier import ContentClassifier, is_explicit
from config import Config
from models import AppState, CatalogItem, Category, PlaybackState, SearchSession
from playback import PlaybackArbiter, PlayerEngineFactory
from resolver import AssetResolver
from services import ArchiveSearchService, Downloader
from storage import DatabaseService, LocalBlobStore
from ui import DetailsPane, LogPane, NowPlayingBar, ResultsDisplay, SearchControls

LOGGER = logging.getLogger("archivedeck.app")


class ArchiveDeckApp(App):
    BINDINGS = [
        ("q", "quit", "Quit"),
        ("d", "download", "Download"),
        ("space", "toggle_pause", "Pause/Resume"),
        ("n", "next_track", "Next"),
        ("b", "previous_track", "Previous"),
        ("s", "stop", "Stop"),
        ("m", "load_more", "More"),
        ("l", "view_library", "Library"),
        ("c", "copy_link", "Copy Link"),
        ("a", "add_to_queue", "Queue"),
        ("f", "toggle_favorite", "Favorite"),
        ("v", "view_favorites", "Favorites"),
        ("p", "add_to_playlist", "Add to Playlist"),
        ("o", "view_playlist", "Playlist"),
    ]
    CSS_PATH = "archive_deck.tcss"

    app_state = reactive(AppState(), always_update=True)

    def __init__(
        self,
        search_service: ArchiveSearchService,
        arbiter: PlaybackArbiter,
        downloader: Downloader,
        classifier: ContentClassifier,
        db_service: DatabaseService,
        engine_factory: PlayerEngineFactory,
        config: Config,
    ):
        super().__init__()
        self.search_service = search_service
        self.arbiter = arbiter
        self.downloader = downloader
        self.classifier = classifier
        self.db_service = db_service
        self.engine_factory = engine_factory
        self.config = config
        self.category = Category(config.DEFAULT_CATEGORY)

    def compose(self) -> ComposeResult:
        yield Header()
        with Container(id="main-container"):
            with Horizontal(id="app-grid"):
                with Vertical(id="left-pane"):
                    yield SearchControls(self.category)
                    yield ResultsDisplay(id="results-table")
                with Vertical(id="right-pane"):
                    yield DetailsPane(self.config.ARCHIVE_BASE_URL, id="details-pane")
            yield NowPlayingBar(id="now-playing")
            yield LogPane(id="log", wrap=True, highlight=True, markup=True)
        yield Footer()

    def on_mount(self) -> None:
        log = self.query_one(LogPane)
        self.query_one(Input).focus()
        if self.engine_factory.is_available:
            log.add_message(f"[green]✅ Audio player '{self.engine_factory.command_name}' found.[/green]")
        else:
            log.add_message("[yellow]⚠️ No audio player found (mpv, ffplay or VLC); streaming is disabled.[/yellow]")
        if not pyperclip:
            log.add_message("[yellow]⚠️ 'pyperclip' not installed.[/yellow]")

        self.arbiter.subscribe(self.on_playback_changed)
        self.search_service.subscribe(self.on_search_changed)
        self.set_interval(self.config.PLAYBACK_POLL_INTERVAL, self.poll_playback)

        previous = self.db_service.load_last_results()
        if previous:
            self.app_state = AppState(results=previous)
            log.add_message(f"💿 Loaded {len(previous)} results from your last session.")
        else:
            self.start_search("", self.category)

    async def on_unmount(self) -> None:
        await self.arbiter.stop()
        self.db_service.save_last_results(self.app_state.results)

    def watch_app_state(self, old_state: AppState, new_state: AppState) -> None:
        if old_state.results != new_state.results:
            self.query_one(ResultsDisplay).update_results(new_state.results)
        tags = None
        if new_state.selected_item is not None:
            tags = self.classifier.classify(new_state.selected_item, self.category)
        self.query_one(DetailsPane).update_details(new_state.selected_item, tags)

    # --- projections ---
    def on_playback_changed(self, state: PlaybackState) -> None:
        self.query_one(NowPlayingBar).update_state(state)

    def on_search_changed(self, session: SearchSession) -> None:
        if session.is_loading or session.is_loading_more:
            self.sub_title = "Loading…"
        else:
            self.sub_title = f"{len(session.results)} items"

    async def poll_playback(self) -> None:
        await self.arbiter.check_finished()

    def _find(self, key: str):
        return next((i for i in self.app_state.results if i.identifier == key), None)

    # --- actions ---
    def action_copy_link(self) -> None:
        log = self.query_one(LogPane)
        if not pyperclip:
            log.add_message("[red]❌ 'pyperclip' not installed.[/red]")
            return
        item = self.app_state.selected_item
        if item:
            pyperclip.copy(item.details_url(self.config.ARCHIVE_BASE_URL))
            log.add_message(f"📋 Copied link for '[b]{item.title}[/b]'.")
        else:
            log.add_message("[yellow]⚠️ No item selected.[/yellow]")

    def action_view_library(self) -> None:
        log = self.query_one(LogPane)
        library = self.db_service.load_library()
        self.app_state = AppState(results=library)
        log.add_message(f"📚 Displaying {len(library)} items from your local library.")

    def action_view_favorites(self) -> None:
        favorites = self.db_service.favorite_library_items()
        self.app_state = AppState(results=favorites)
        self.query_one(LogPane).add_message(f"⭐ Displaying {len(favorites)} favorites.")

    def action_toggle_favorite(self) -> None:
        log = self.query_one(LogPane)
        item = self.app_state.selected_item
        if not item:
            log.add_message("[yellow]⚠️ No item selected.[/yellow]")
            return
        if not self.db_service.is_in_library(item.identifier):
            self.db_service.add_to_library(item)
        if self.db_service.toggle_favorite(item.identifier):
            log.add_message(f"⭐ Marked '[b]{item.title}[/b]' as a favorite.")
        else:
            log.add_message(f"Removed '[b]{item.title}[/b]' from favorites.")

    def _default_playlist(self):
        name = self.config.DEFAULT_PLAYLIST
        return self.db_service.playlist_named(name) or self.db_service.create_playlist(name)

    def action_add_to_playlist(self) -> None:
        log = self.query_one(LogPane)
        item = self.app_state.selected_item
        if not item:
            log.add_message("[yellow]⚠️ No item selected.[/yellow]")
            return
        playlist = self._default_playlist()
        if self.db_service.add_to_playlist(playlist.id, item):
            log.add_message(f"➕ Added '[b]{item.title}[/b]' to {playlist.name}.")
        else:
            log.add_message(f"[yellow]⚠️ '{item.title}' is already in {playlist.name}.[/yellow]")

    def action_view_playlist(self) -> None:
        playlist = self._default_playlist()
        self.app_state = AppState(results=playlist.items)
        self.query_one(LogPane).add_message(f"🎼 Displaying {len(playlist.items)} items from {playlist.name}.")

    def action_add_to_queue(self) -> None:
        item = self.app_state.selected_item
        if item:
            self.query_one(LogPane).add_message(f"Queued '[b]{item.title}[/b]'.")
            self.run_worker(self.arbiter.add_to_queue(item), group="playback_worker")

    def action_download(self) -> None:
        item = self.app_state.selected_item
        if item:
            self.run_worker(self.perform_download(item), group="download_worker")

    def action_load_more(self) -> None:
        if not self.app_state.is_live_search:
            self.query_one(LogPane).add_message("[yellow]⚠️ Run a search to load more results.[/yellow]")
            return
        self.run_worker(self.perform_load_more(), group="search_worker")

    def action_toggle_pause(self) -> None:
        self.arbiter.toggle_pause()

    def action_next_track(self) -> None:
        self.run_worker(self.arbiter.next(), group="playback_worker")

    def action_previous_track(self) -> None:
        self.run_worker(self.arbiter.previous(), group="playback_worker")

    def action_stop(self) -> None:
        self.run_worker(self.arbiter.stop(), group="playback_worker")

    # --- message handlers ---
    def on_search_controls_search_requested(self, message: SearchControls.SearchRequested) -> None:
        self.start_search(message.query, message.category)

    def start_search(self, query: str, category: Category) -> None:
        self.category = category
        label = f"'{query}'" if query else f"curated {category.display_name.lower()}"
        self.query_one(LogPane).add_message(f"🔎 Searching for {label}...")
        self.run_worker(self.perform_search(query, category), group="search_worker")

    def on_results_display_row_selected(self, message: ResultsDisplay.RowSelected) -> None:
        selected = self._find(message.key)
        if selected:
            self.run_worker(self.perform_play(selected), group="playback_worker")

    def on_results_display_row_highlighted(self, message: ResultsDisplay.RowHighlighted) -> None:
        selected = self._find(message.key) if message.key else None
        self.app_state = replace(self.app_state, selected_item=selected)

    def on_results_display_end_reached(self, message: ResultsDisplay.EndReached) -> None:
        if self.app_state.is_live_search:
            self.action_load_more()

    # --- worker methods ---
    async def perform_search(self, query: str, category: Category) -> None:
        log = self.query_one(LogPane)
        label = f"'{query}'" if query else category.display_name.lower()
        session = await self.search_service.search(query, category.archive_media_kind, category)
        if session.error:
            log.add_message("[red]❌ An error occurred during search.[/red]")
            log.add_message(f"[dim]{session.error}[/dim]")
            return
        if session.query != query or session.category != category:
            return
        self.app_state = AppState(results=session.results, is_live_search=True)
        if not session.results:
            log.add_message(f"🤷 Nothing found for {label}.")
        else:
            log.add_message(f"🎶 Found {len(session.results)} results.")

    async def perform_load_more(self) -> None:
        before = len(self.search_service.snapshot().results)
        session = await self.search_service.load_more()
        if session.error:
            self.query_one(LogPane).add_message(f"[red]❌ {session.error}[/red]")
        if len(session.results) > before and self.app_state.is_live_search:
            self.app_state = replace(self.app_state, results=session.results)

    async def perform_play(self, item: CatalogItem) -> None:
        if not self.engine_factory.is_available:
            self.query_one(LogPane).add_message("[red]❌ Playback failed: no audio player installed.[/red]")
            return
        self.query_one(LogPane).add_message(f"🎧 Opening '[b]{item.title}[/b]'...")
        self.db_service.update_last_accessed(item.identifier)
        await self.arbiter.start_in_context(item, self.app_state.results)

    async def perform_download(self, item: CatalogItem) -> None:
        log = self.query_one(LogPane)
        log.add_message(f"📥 Queueing '[b]{item.title}[/b]' for download...")
        success, message = await self.downloader.download(item)
        if success:
            log.add_message(f"[green]✅ {message}[/green]")
        else:
            log.add_message(f"[red]❌ {message}[/red]")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Browse, stream and download from the Internet Archive.")
    parser.add_argument("--db", help="SQLite database file.")
    parser.add_argument("--downloads", help="Directory for downloaded files.")
    parser.add_argument("--category", choices=[c.value for c in Category if not c.is_local_only],
                        help="Library section to open first.")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, ...).")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    config = Config.from_env()
    overrides = {
        "DATABASE_FILENAME": args.db,
        "DOWNLOAD_DIR": args.downloads,
        "DEFAULT_CATEGORY": args.category,
        "LOG_LEVEL": args.log_level,
    }
    return replace(config, **{k: v for k, v in overrides.items() if v})


def main(argv=None) -> None:
    app_config = build_config(parse_args(argv))
    logging.basicConfig(
        filename=app_config.LOG_FILE,
        level=app_config.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db_service = DatabaseService(app_config.DATABASE_FILENAME)
    blob_store = LocalBlobStore(app_config.DOWNLOAD_DIR)
    resolver = AssetResolver(app_config.ARCHIVE_BASE_URL, timeout=app_config.REQUEST_TIMEOUT)
    search_service = ArchiveSearchService(
        app_config.ARCHIVE_BASE_URL,
        page_size=app_config.SEARCH_PAGE_SIZE,
        timeout=app_config.REQUEST_TIMEOUT,
        item_filter=is_explicit if app_config.FILTER_EXPLICIT else None,
    )
    engine_factory = PlayerEngineFactory(app_config.PLAYER_COMMANDS)
    arbiter = PlaybackArbiter(
        resolver, engine_factory, library=db_service, blob_store=blob_store,
        file_open_timeout=app_config.FILE_OPEN_TIMEOUT,
    )
    downloader = Downloader(resolver, blob_store, db_service, timeout=app_config.REQUEST_TIMEOUT)
    classifier = ContentClassifier(db_service)

    app = ArchiveDeckApp(search_service, arbiter, downloader, classifier,
                         db_service, engine_factory, app_config)
    LOGGER.info("Starting with category %s", app_config.DEFAULT_CATEGORY)
    try:
        app.run()
    finally:
        classifier.close()
        db_service.close()


if __name__ == "__main__":
    main()
