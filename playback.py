# playback.py
"""Arbitrates the one shared audio output between every playback surface.

`PlaybackArbiter` owns at most one live engine handle. Every operation that
creates or releases a handle runs under one asyncio lock, and the old handle
is always stopped before a new one is created.
"""
import asyncio
import logging
import shutil
import signal
import subprocess
from typing import Callable, List, Optional, Sequence

from errors import ArchiveError, PlaybackFailure
from models import CatalogItem, MediaKind, PlaybackState, PlaybackStatus
from resolver import AssetResolver
from storage import DatabaseService, LocalBlobStore

LOGGER = logging.getLogger("archivedeck.playback")

PLAYER_ARGS = {
    "mpv": ["--no-video", "--really-quiet"],
    "ffplay": ["-nodisp", "-autoexit", "-loglevel", "quiet"],
    "cvlc": ["--play-and-exit", "--quiet"],
}

STOP_TIMEOUT = 2.0


class CommandPlayer:
    """One engine handle: an external player process streaming a single source."""

    def __init__(self, command_path: str, args: Sequence[str], source: str):
        self.command_path = command_path
        self.args = list(args)
        self.source = source
        self.process: Optional[subprocess.Popen] = None

    def play(self) -> None:
        try:
            self.process = subprocess.Popen(
                [self.command_path, *self.args, self.source],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            raise PlaybackFailure(f"Could not start the audio player: {exc}") from exc
        LOGGER.debug("Player started (PID %s) for %s", self.process.pid, self.source)

    def _send(self, signal_name: str) -> None:
        sig = getattr(signal, signal_name, None)
        if sig is None:
            raise PlaybackFailure("Pausing is not supported on this platform.")
        if self.process is not None and self.process.poll() is None:
            self.process.send_signal(sig)

    def pause(self) -> None:
        self._send("SIGSTOP")

    def resume(self) -> None:
        self._send("SIGCONT")

    def stop(self) -> None:
        process = self.process
        if process is None or process.poll() is not None:
            return
        # A stopped process only acts on SIGTERM once continued.
        if hasattr(signal, "SIGCONT"):
            process.send_signal(signal.SIGCONT)
        process.terminate()
        try:
            process.wait(timeout=STOP_TIMEOUT)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait(timeout=STOP_TIMEOUT)

    def poll(self) -> Optional[int]:
        return self.process.poll() if self.process is not None else None


class PlayerEngineFactory:
    """Creates engine handles for the first installed player command."""

    def __init__(self, commands: Sequence[str]):
        self.command_name: Optional[str] = None
        self.command_path: Optional[str] = None
        for command in commands:
            path = shutil.which(command)
            if path:
                self.command_name, self.command_path = command, path
                break

    @property
    def is_available(self) -> bool:
        return self.command_path is not None

    def __call__(self, source: str) -> CommandPlayer:
        if not self.is_available:
            raise PlaybackFailure("No audio player found. Install mpv, ffplay or VLC.")
        return CommandPlayer(self.command_path, PLAYER_ARGS.get(self.command_name, []), source)


class PlaybackArbiter:
    """Single owner of the live audio session, shared by every UI surface."""

    def __init__(
        self,
        resolver: AssetResolver,
        engine_factory: Callable[[str], CommandPlayer],
        library: Optional[DatabaseService] = None,
        blob_store: Optional[LocalBlobStore] = None,
        file_open_timeout: float = 5.0,
    ):
        self.resolver = resolver
        self.engine_factory = engine_factory
        self.library = library
        self.blob_store = blob_store
        self.file_open_timeout = file_open_timeout
        self._lock = asyncio.Lock()
        self._engine: Optional[CommandPlayer] = None
        self._status = PlaybackStatus.IDLE
        self._current: Optional[CatalogItem] = None
        self._queue: List[CatalogItem] = []
        self._index = 0
        self._error: Optional[str] = None
        self._listeners: List[Callable[[PlaybackState], None]] = []

    # --- projection ---
    @property
    def state(self) -> PlaybackState:
        last = len(self._queue) - 1
        return PlaybackState(
            status=self._status,
            current_title=self._current.title if self._current else "",
            current_item_identifier=self._current.identifier if self._current else "",
            has_next_track=bool(self._queue) and self._index < last,
            has_previous_track=bool(self._queue) and self._index > 0,
            queue_position=self._index if self._queue else 0,
            queue_length=len(self._queue),
            error=self._error,
        )

    @property
    def has_live_engine(self) -> bool:
        return self._engine is not None

    @property
    def queue(self) -> List[CatalogItem]:
        return list(self._queue)

    def subscribe(self, listener: Callable[[PlaybackState], None]) -> None:
        self._listeners.append(listener)

    def _publish(self) -> None:
        state = self.state
        for listener in self._listeners:
            listener(state)

    # --- internals, called with the lock held ---
    async def _release_engine(self) -> None:
        engine, self._engine = self._engine, None
        if engine is None:
            return
        # Stopping reaps the player process and may wait for it.
        try:
            await asyncio.to_thread(engine.stop)
        except (PlaybackFailure, OSError, subprocess.SubprocessError) as exc:
            LOGGER.warning("Error while stopping the player: %s", exc)

    def _reset(self, status: PlaybackStatus, error: Optional[str] = None) -> None:
        self._status = status
        self._current = None
        self._queue = []
        self._index = 0
        self._error = error

    async def _fail(self, message: str) -> None:
        LOGGER.warning("Playback failed: %s", message)
        await self._release_engine()
        self._reset(PlaybackStatus.FAILED, message)
        self._publish()

    async def _source_for(self, item: CatalogItem) -> str:
        if self.library is not None and self.blob_store is not None:
            path = self.library.local_path_for(item.identifier)
            if path and self.blob_store.exists(path):
                if await asyncio.to_thread(self.blob_store.validate, path, self.file_open_timeout):
                    return path
                LOGGER.warning("Local copy of %s is unreadable, streaming instead", item.identifier)
        return await self.resolver.resolve_streamable(item)

    async def _start_locked(self, item: CatalogItem, queue: List[CatalogItem], index: int) -> None:
        await self._release_engine()
        self._queue = queue
        self._index = index
        self._current = item
        self._error = None
        self._status = PlaybackStatus.STARTING
        LOGGER.info("Starting %s (%d of %d)", item.identifier, index + 1, max(len(queue), 1))
        self._publish()

        try:
            source = await self._source_for(item)
            engine = self.engine_factory(source)
            try:
                engine.play()
            except PlaybackFailure:
                await asyncio.to_thread(engine.stop)
                raise
        except ArchiveError as exc:
            await self._fail(str(exc))
            return
        except asyncio.CancelledError:
            await self._fail("Playback was cancelled.")
            raise

        self._engine = engine
        self._status = PlaybackStatus.PLAYING
        LOGGER.info("Playing %s", item.identifier)
        self._publish()

    @staticmethod
    def _index_of(item: CatalogItem, queue: Sequence[CatalogItem]) -> Optional[int]:
        for index, candidate in enumerate(queue):
            if candidate.identifier == item.identifier:
                return index
        return None

    # --- operations ---
    async def start(self, item: CatalogItem, queue: Sequence[CatalogItem] = ()) -> None:
        """Stops whatever is playing, then plays `item`, optionally within a queue."""
        async with self._lock:
            queue = list(queue)
            index = self._index_of(item, queue)
            if index is None:
                if queue:
                    LOGGER.warning("%s is not part of its queue, playing it alone", item.identifier)
                queue, index = [], 0
            await self._start_locked(item, queue, index)

    async def start_in_context(self, item: CatalogItem, items: Sequence[CatalogItem]) -> None:
        """Plays `item` with the audio items of a result list as its queue."""
        await self.start(item, [candidate for candidate in items if candidate.media_kind == MediaKind.AUDIO])

    async def add_to_queue(self, item: CatalogItem) -> None:
        """Appends `item` after the last queued track without interrupting playback."""
        async with self._lock:
            if not self._queue and self._current is not None:
                self._queue = [self._current]
                self._index = 0
            self._queue.append(item)
            LOGGER.info("Queued %s (%d in queue)", item.identifier, len(self._queue))
            self._publish()

    async def next(self) -> None:
        async with self._lock:
            if not self._queue or self._index >= len(self._queue) - 1:
                return
            index = self._index + 1
            await self._start_locked(self._queue[index], self._queue, index)

    async def previous(self) -> None:
        async with self._lock:
            if not self._queue or self._index <= 0:
                return
            index = self._index - 1
            await self._start_locked(self._queue[index], self._queue, index)

    def pause(self) -> None:
        if self._status != PlaybackStatus.PLAYING or self._engine is None:
            return
        try:
            self._engine.pause()
        except PlaybackFailure as exc:
            self._error = str(exc)
        else:
            self._status = PlaybackStatus.PAUSED
        self._publish()

    def resume(self) -> None:
        if self._status != PlaybackStatus.PAUSED or self._engine is None:
            return
        try:
            self._engine.resume()
        except PlaybackFailure as exc:
            self._error = str(exc)
        else:
            self._status = PlaybackStatus.PLAYING
        self._publish()

    def toggle_pause(self) -> None:
        if self._status == PlaybackStatus.PAUSED:
            self.resume()
        else:
            self.pause()

    async def stop(self) -> None:
        async with self._lock:
            await self._release_engine()
            self._reset(PlaybackStatus.IDLE)
            LOGGER.info("Playback stopped")
            self._publish()

    async def check_finished(self) -> None:
        """Advances the queue when the live engine has finished its source."""
        async with self._lock:
            if self._engine is None or self._status != PlaybackStatus.PLAYING:
                return
            code = self._engine.poll()
            if code is None:
                return
            if code != 0:
                await self._fail(f"The audio player stopped unexpectedly (exit code {code}).")
                return
            await self._release_engine()
            if self._queue and self._index < len(self._queue) - 1:
                index = self._index + 1
                await self._start_locked(self._queue[index], self._queue, index)
            else:
                self._reset(PlaybackStatus.IDLE)
                self._publish()
