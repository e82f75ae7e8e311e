from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional
import asyncio
import json
import logging
import time

from image_processor import ImageProcessor

AssetFetch = Callable[[], Awaitable[Optional[str]]]


class EmojiCache:
    """
    Persistent, time-bound map from custom emoji ID to an encoded image.

    Entries live in memory and are mirrored to ``cache.json`` after every
    mutation. Expired entries are evicted the first time they are read.
    """

    def __init__(self, cache_dir: Path, expiration: float = 86400,
                 clock: Callable[[], float] = time.time):
        self.cache_dir = Path(cache_dir)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            # Keep working in memory, saves retry the mkdir
            logging.error(f"Error creating emoji cache directory {self.cache_dir}: {str(e)}")
        self.cache_file = self.cache_dir / "cache.json"
        self.expiration = expiration
        self._clock = clock
        self._pending: Dict[str, asyncio.Task] = {}
        self.entries: Dict[str, dict] = self._load_entries()

    def _load_entries(self) -> Dict[str, dict]:
        """Load cache entries from the cache file."""
        if not self.cache_file.exists():
            return {}
        try:
            with open(self.cache_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except Exception as e:
            logging.error(f"Error loading emoji cache: {str(e)}")
            return {}

        raw_entries = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(raw_entries, dict):
            return {}

        entries = {}
        for emoji_id, entry in raw_entries.items():
            if not isinstance(entry, dict):
                continue
            timestamp = entry.get("timestamp")
            encoded = entry.get("base64")
            path = entry.get("path")
            if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
                continue
            if not isinstance(encoded, str) or not encoded:
                continue
            if path is not None and not isinstance(path, str):
                continue
            entries[str(emoji_id)] = {"path": path, "timestamp": float(timestamp), "base64": encoded}
        return entries

    def _save_entries(self) -> None:
        """Save cache entries to the cache file."""
        tmp_file = self.cache_file.with_suffix(".tmp")
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_file, 'w', encoding='utf-8') as f:
                json.dump({"entries": self.entries}, f, ensure_ascii=False)
            tmp_file.replace(self.cache_file)
        except Exception as e:
            logging.error(f"Error saving emoji cache: {str(e)}")

    def set_expiration(self, seconds: float) -> None:
        self.expiration = seconds

    def _is_valid(self, entry: dict) -> bool:
        if self._clock() - entry["timestamp"] > self.expiration:
            return False
        # Entries backed by a file are only good while the file is there
        path = entry.get("path")
        return path is None or Path(path).exists()

    def read(self, emoji_id: str) -> Optional[str]:
        """Return the encoded image for emoji_id, or None on a miss."""
        entry = self.entries.get(emoji_id)
        if entry is None:
            return None
        if not self._is_valid(entry):
            logging.debug(f"Evicting stale emoji {emoji_id}")
            self.remove(emoji_id)
            return None
        return entry["base64"]

    def set(self, emoji_id: str, file_path: Path) -> Optional[str]:
        """Encode a downloaded artifact and store it. Returns the data URI."""
        encoded = ImageProcessor.encode_data_uri(file_path)
        if encoded is None:
            return None

        self.entries[emoji_id] = {
            "path": str(file_path),
            "timestamp": self._clock(),
            "base64": encoded,
        }
        self._save_entries()
        return encoded

    def _unlink(self, entry: dict) -> None:
        path = entry.get("path")
        if not path:
            return
        try:
            Path(path).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logging.warning(f"Could not delete cached file {path}: {str(e)}")

    def remove(self, emoji_id: str) -> None:
        entry = self.entries.pop(emoji_id, None)
        if entry is None:
            return
        self._unlink(entry)
        self._save_entries()

    def clear(self) -> None:
        """Drop every entry and its backing file."""
        for entry in self.entries.values():
            self._unlink(entry)
        self.entries = {}
        self._save_entries()
        logging.info("Emoji cache cleared")

    def pending_ids(self) -> List[str]:
        return list(self._pending)

    async def resolve(self, emoji_id: str, fetch: AssetFetch) -> Optional[str]:
        """
        Get the encoded image for emoji_id, fetching it at most once at a time.

        Concurrent callers for the same missing ID share one call to fetch.
        Failures are not cached, so the next call after a failure retries.
        """
        cached = self.read(emoji_id)
        if cached is not None:
            return cached

        task = self._pending.get(emoji_id)
        if task is None:
            task = asyncio.ensure_future(self._resolve(emoji_id, fetch))
            self._pending[emoji_id] = task
        # A cancelled waiter must not cancel the shared fetch
        return await asyncio.shield(task)

    async def _resolve(self, emoji_id: str, fetch: AssetFetch) -> Optional[str]:
        try:
            file_path = await fetch()
            if not file_path:
                logging.warning(f"No image available for emoji {emoji_id}")
                return None
            return self.set(emoji_id, Path(file_path))
        except Exception as e:
            logging.warning(f"Error fetching emoji {emoji_id}: {str(e)}")
            return None
        finally:
            self._pending.pop(emoji_id, None)

    def __contains__(self, emoji_id: str) -> bool:
        entry = self.entries.get(emoji_id)
        return entry is not None and self._is_valid(entry)

    def __len__(self) -> int:
        return sum(1 for entry in self.entries.values() if self._is_valid(entry))
