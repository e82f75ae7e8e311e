from pathlib import Path
from typing import Callable, Optional, Set
import argparse
import asyncio
import json
import logging
import os
import sys

from cache_manager import EmojiCache
from config import Config
from decoration_engine import DecorationEngine
from decoration_result import RenderResult
from emoji_detector import EmojiDetector, MARKDOWN_EMOJI_PATTERN
from telegram_api import AssetFetcher

RenderCallback = Callable[[RenderResult], None]


class PreviewSession:
    """
    Owns the cache, detector and decoration engine for one host.

    Use as an async context manager, or call open() and close() explicitly.
    Document updates are debounced; each finished pass is handed to on_render.
    """

    def __init__(self, config: Config, on_render: Optional[RenderCallback] = None,
                 fetcher: Optional[AssetFetcher] = None):
        self.config = config
        self.on_render = on_render
        self._fetcher = fetcher
        self.cache: Optional[EmojiCache] = None
        self.engine: Optional[DecorationEngine] = None
        self.detector: Optional[EmojiDetector] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._updates: Set[asyncio.Task] = set()
        self._generation = 0
        self._last_document: Optional[tuple] = None

    async def open(self) -> "PreviewSession":
        self.cache = EmojiCache(self.config.CACHE_DIR, expiration=self.config.CACHE_EXPIRATION)
        self.engine = DecorationEngine(self.cache, self.config, self._fetcher)
        self.detector = self._build_detector(self.config)
        logging.info(f"Preview session opened with cache at {self.cache.cache_dir}")
        return self

    async def close(self) -> None:
        """
        Stop pending and running update passes.

        Fetches already handed to the cache are shared with other waiters and
        keep running, so they may still fill the cache after close() returns.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in list(self._updates):
            task.cancel()
        if self._updates:
            await asyncio.gather(*self._updates, return_exceptions=True)
        self._updates.clear()
        logging.info("Preview session closed")

    async def __aenter__(self) -> "PreviewSession":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @staticmethod
    def _build_detector(config: Config) -> EmojiDetector:
        extra = (MARKDOWN_EMOJI_PATTERN,) if config.DETECT_MARKDOWN else ()
        return EmojiDetector(extra)

    def _require_open(self) -> None:
        if self.engine is None:
            raise RuntimeError("Preview session is not open")

    def schedule_update(self, text: str, cursor_line: Optional[int]) -> None:
        """Queue a render of text, replacing any request still waiting on the debounce."""
        self._require_open()
        self._last_document = (text, cursor_line)
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.config.DEBOUNCE_DELAY, self._start_update, text, cursor_line)

    def _start_update(self, text: str, cursor_line: Optional[int]) -> None:
        self._timer = None
        self._generation += 1
        task = asyncio.ensure_future(self._run_update(self._generation, text, cursor_line))
        self._updates.add(task)
        task.add_done_callback(self._updates.discard)

    async def _run_update(self, generation: int, text: str, cursor_line: Optional[int]) -> None:
        try:
            matches = self.detector.detect(text)
            result = self.engine.render(matches, cursor_line)
            self._publish(generation, result)
            if result.pending is None:
                return
            await result.pending
            self._publish(generation, self.engine.render(matches, cursor_line, schedule=False))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logging.error(f"Error updating emoji decorations: {e}")

    def _publish(self, generation: int, result: RenderResult) -> None:
        if generation != self._generation:
            logging.debug(f"Dropping stale render {generation}, latest is {self._generation}")
            return
        if self.on_render is not None:
            self.on_render(result)

    async def wait_idle(self) -> None:
        """Wait until no debounce timer or update pass is outstanding."""
        while self._timer is not None or self._updates:
            if self._updates:
                await asyncio.gather(*list(self._updates), return_exceptions=True)
            else:
                await asyncio.sleep(self.config.DEBOUNCE_DELAY)

    def refresh(self) -> None:
        """Re-render the most recent document."""
        if self._last_document is not None:
            self.schedule_update(*self._last_document)

    def clear_cache(self) -> None:
        self._require_open()
        self.cache.clear()
        self.refresh()

    def update_settings(self, config: Config) -> None:
        self._require_open()
        self.config = config
        self.engine.update_settings(config, self._fetcher)
        self.detector = self._build_detector(config)
        self.refresh()


async def preview_file(path: Path, cursor_line: Optional[int], config: Config,
                       clear_cache: bool = False) -> RenderResult:
    """Detect and resolve every emoji reference in a file."""
    text = path.read_text(encoding='utf-8')
    async with PreviewSession(config) as session:
        if clear_cache:
            session.cache.clear()
        matches = session.detector.detect(text)
        logging.info(f"Found {len(matches)} custom emoji references in {path}")
        return await session.engine.update(matches, cursor_line)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Preview Telegram custom emoji references in a file.")
    parser.add_argument('file', type=Path)
    parser.add_argument('--line', type=int, default=None, help="Zero-based cursor line")
    parser.add_argument('--token', default=os.environ.get('TELEGRAM_BOT_TOKEN', ''))
    parser.add_argument('--cache-dir', type=Path, default=Config.CACHE_DIR)
    parser.add_argument('--markdown', action='store_true', help="Also detect tg://emoji links")
    parser.add_argument('--clear-cache', action='store_true')
    args = parser.parse_args(argv)

    config = Config(BOT_TOKEN=args.token, CACHE_DIR=args.cache_dir, DETECT_MARKDOWN=args.markdown)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.LOG_FILE),
            logging.StreamHandler()
        ]
    )

    result = asyncio.run(preview_file(args.file, args.line, config, args.clear_cache))
    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
