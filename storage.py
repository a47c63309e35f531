# storage.py
import json
import logging
import os
import sqlite3
import threading
import unicodedata
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Dict, List, Optional

from models import CatalogItem, MediaKind, Playlist

LOGGER = logging.getLogger("archivedeck.storage")

LAST_RESULTS_KEY = "session:last_results"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DatabaseService:
    """A service to manage all SQLite database interactions.

    Holds the opaque key-value table used for classifications and session
    bookkeeping, the user's local library of saved items and their playlists.
    """
    def __init__(self, db_name: str):
        self.db_name = db_name
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(db_name, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.create_tables()

    def create_tables(self):
        """Creates the tables if they don't exist."""
        with self._lock, self.conn:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL
                )
            """)
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS library (
                    identifier TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    creator TEXT,
                    date TEXT,
                    description TEXT,
                    media_kind TEXT NOT NULL,
                    local_path TEXT,
                    added_at TEXT NOT NULL,
                    last_accessed TEXT,
                    is_favorite INTEGER NOT NULL DEFAULT 0
                )
            """)
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS playlists (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS playlist_items (
                    playlist_id TEXT NOT NULL,
                    identifier TEXT NOT NULL,
                    title TEXT NOT NULL,
                    creator TEXT,
                    date TEXT,
                    description TEXT,
                    media_kind TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    added_at TEXT NOT NULL,
                    PRIMARY KEY (playlist_id, identifier)
                )
            """)

    # --- key-value store ---
    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return bytes(row["value"]) if row else None

    def set(self, key: str, value: bytes) -> None:
        with self._lock, self.conn:
            self.conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)", (key, sqlite3.Binary(value))
            )

    # --- session bookkeeping ---
    def save_last_results(self, items: List[CatalogItem]) -> None:
        payload = json.dumps([item.to_dict() for item in items])
        self.set(LAST_RESULTS_KEY, payload.encode("utf-8"))

    def load_last_results(self) -> List[CatalogItem]:
        raw = self.get(LAST_RESULTS_KEY)
        if not raw:
            return []
        try:
            return [CatalogItem.from_dict(data) for data in json.loads(raw.decode("utf-8"))]
        except (ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Discarding unreadable session snapshot: %s", exc)
            return []

    # --- library ---
    def add_to_library(self, item: CatalogItem, local_path: Optional[str] = None) -> None:
        """Saves an item to the library, keeping a known local path if none is given."""
        with self._lock, self.conn:
            self.conn.execute("""
                INSERT INTO library
                (identifier, title, creator, date, description, media_kind, local_path, added_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(identifier) DO UPDATE SET
                    local_path = COALESCE(excluded.local_path, library.local_path)
            """, (
                item.identifier, item.title, item.creator, item.date, item.description,
                item.media_kind.value, local_path, _utc_now(),
            ))

    def remove_from_library(self, identifier: str) -> None:
        with self._lock, self.conn:
            self.conn.execute("DELETE FROM library WHERE identifier = ?", (identifier,))

    def is_in_library(self, identifier: str) -> bool:
        with self._lock:
            row = self.conn.execute("SELECT 1 FROM library WHERE identifier = ?", (identifier,)).fetchone()
        return row is not None

    def local_path_for(self, identifier: str) -> Optional[str]:
        with self._lock:
            row = self.conn.execute(
                "SELECT local_path FROM library WHERE identifier = ?", (identifier,)
            ).fetchone()
        return row["local_path"] if row else None

    def load_library(self) -> List[CatalogItem]:
        """Loads the whole library, most recently added first."""
        return self._library_query()

    def _library_query(self, where: str = "", params: tuple = (), limit: Optional[int] = None) -> List[CatalogItem]:
        sql = f"SELECT * FROM library {where} ORDER BY added_at DESC, rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [CatalogItem.from_dict(dict(row)) for row in rows]

    def recent_library_items(self, limit: int = 10) -> List[CatalogItem]:
        return self._library_query(limit=limit)

    def favorite_library_items(self) -> List[CatalogItem]:
        return self._library_query("WHERE is_favorite = 1")

    def library_items_for(self, media_kind: MediaKind) -> List[CatalogItem]:
        return self._library_query("WHERE media_kind = ?", (media_kind.value,))

    def toggle_favorite(self, identifier: str) -> Optional[bool]:
        """Flips the favorite flag; returns the new value, or None if the item is not saved."""
        with self._lock, self.conn:
            cursor = self.conn.execute(
                "UPDATE library SET is_favorite = 1 - is_favorite WHERE identifier = ?", (identifier,)
            )
            if cursor.rowcount == 0:
                return None
            row = self.conn.execute(
                "SELECT is_favorite FROM library WHERE identifier = ?", (identifier,)
            ).fetchone()
        return bool(row["is_favorite"])

    def update_last_accessed(self, identifier: str) -> None:
        with self._lock, self.conn:
            self.conn.execute(
                "UPDATE library SET last_accessed = ? WHERE identifier = ?", (_utc_now(), identifier)
            )

    # --- playlists ---
    def create_playlist(self, name: str, description: Optional[str] = None) -> Playlist:
        now = _utc_now()
        playlist = Playlist(id=uuid.uuid4().hex, name=name, description=description,
                            created_at=now, updated_at=now)
        with self._lock, self.conn:
            self.conn.execute(
                "INSERT INTO playlists (id, name, description, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (playlist.id, name, description, now, now),
            )
        LOGGER.info("Created playlist %r", name)
        return playlist

    def delete_playlist(self, playlist_id: str) -> None:
        with self._lock, self.conn:
            self.conn.execute("DELETE FROM playlist_items WHERE playlist_id = ?", (playlist_id,))
            self.conn.execute("DELETE FROM playlists WHERE id = ?", (playlist_id,))

    def add_to_playlist(self, playlist_id: str, item: CatalogItem) -> bool:
        """Appends an item once. Returns False for an unknown playlist or an item already in it."""
        with self._lock, self.conn:
            if self.conn.execute("SELECT 1 FROM playlists WHERE id = ?", (playlist_id,)).fetchone() is None:
                return False
            position = self.conn.execute(
                "SELECT COALESCE(MAX(position) + 1, 0) FROM playlist_items WHERE playlist_id = ?",
                (playlist_id,),
            ).fetchone()[0]
            cursor = self.conn.execute("""
                INSERT OR IGNORE INTO playlist_items
                (playlist_id, identifier, title, creator, date, description, media_kind, position, added_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                playlist_id, item.identifier, item.title, item.creator, item.date,
                item.description, item.media_kind.value, position, _utc_now(),
            ))
            if cursor.rowcount == 0:
                return False
            self.conn.execute("UPDATE playlists SET updated_at = ? WHERE id = ?", (_utc_now(), playlist_id))
        return True

    def remove_from_playlist(self, playlist_id: str, identifier: str) -> None:
        with self._lock, self.conn:
            cursor = self.conn.execute(
                "DELETE FROM playlist_items WHERE playlist_id = ? AND identifier = ?", (playlist_id, identifier)
            )
            if cursor.rowcount:
                self.conn.execute("UPDATE playlists SET updated_at = ? WHERE id = ?", (_utc_now(), playlist_id))

    def load_playlists(self) -> List[Playlist]:
        """Loads every playlist with its items in insertion order."""
        with self._lock:
            rows = self.conn.execute("SELECT * FROM playlists ORDER BY created_at, name").fetchall()
            item_rows = self.conn.execute(
                "SELECT * FROM playlist_items ORDER BY playlist_id, position"
            ).fetchall()
        items: Dict[str, List[CatalogItem]] = {}
        for row in item_rows:
            items.setdefault(row["playlist_id"], []).append(CatalogItem.from_dict(dict(row)))
        return [
            Playlist(id=row["id"], name=row["name"], description=row["description"],
                     items=items.get(row["id"], []),
                     created_at=row["created_at"], updated_at=row["updated_at"])
            for row in rows
        ]

    def playlist_named(self, name: str) -> Optional[Playlist]:
        return next((p for p in self.load_playlists() if p.name == name), None)

    def music_playlists(self) -> List[Playlist]:
        return [p for p in self.load_playlists() if p.is_music]

    def close(self):
        self.conn.close()


def sanitise_filename(name: str) -> str:
    """NFC-normalized, filesystem-safe file name."""
    name = unicodedata.normalize("NFC", name)
    unsafe = set('<>:"/\\|?*')
    return "".join(c if c not in unsafe else "_" for c in name).strip()


class LocalBlobStore:
    """Materializes downloaded assets as files under one directory."""
    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def write(self, data: bytes, name: Optional[str] = None) -> str:
        filename = sanitise_filename(name) if name else ""
        if not filename:
            filename = uuid.uuid4().hex
        path = os.path.join(self.directory, filename)
        with open(path, "wb") as f:
            f.write(data)
        LOGGER.info("Stored %d bytes at %s", len(data), path)
        return path

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)

    def validate(self, path: str, timeout: float) -> bool:
        """Checks that the file opens and is non-empty within `timeout` seconds."""
        def probe() -> bool:
            with open(path, "rb") as f:
                return bool(f.read(16))

        executor = ThreadPoolExecutor(max_workers=1)
        try:
            return executor.submit(probe).result(timeout=timeout)
        except FutureTimeout:
            LOGGER.warning("Timed out after %.1fs opening %s", timeout, path)
            return False
        except OSError as exc:
            LOGGER.warning("Could not open %s: %s", path, exc)
            return False
        finally:
            executor.shutdown(wait=False)
