from typing import Dict, Optional, Sequence
import asyncio
import logging
import emoji

from cache_manager import EmojiCache
from config import Config
from decoration_result import HoverContent, HoverStatus, IconPlacement, MatchState, RenderResult
from emoji_detector import EmojiMatch, Position, Range
from telegram_api import AssetFetcher, TelegramApi


class DecorationEngine:
    """Decides how every emoji reference is drawn for a given cursor line."""

    SEPARATOR = "│"
    ICON_MARGIN = 4

    def __init__(self, cache: EmojiCache, config: Optional[Config] = None,
                 fetcher: Optional[AssetFetcher] = None):
        self.cache = cache
        self.update_settings(config or Config(), fetcher)

    def update_settings(self, config: Config, fetcher: Optional[AssetFetcher] = None) -> None:
        """Apply settings; without an explicit fetcher one is built from the bot token."""
        self.enabled = config.ENABLE_INLINE_PREVIEW
        self.hover_size = config.HOVER_PREVIEW_SIZE
        self.icon_size = config.FONT_SIZE
        self.cache.set_expiration(config.CACHE_EXPIRATION)

        if fetcher is None and config.BOT_TOKEN:
            fetcher = TelegramApi(config.BOT_TOKEN, self.cache.cache_dir, timeout=config.TIMEOUT)
        self.fetcher = fetcher
        logging.info(f"Decoration settings applied: inline={self.enabled} fetcher={fetcher is not None}")

    @property
    def configured(self) -> bool:
        return self.fetcher is not None

    def _schedule(self, emoji_id: str) -> Optional[asyncio.Future]:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logging.debug(f"No running event loop, not resolving emoji {emoji_id}")
            return None
        fetcher = self.fetcher
        return asyncio.ensure_future(self.cache.resolve(emoji_id, lambda: fetcher.fetch_asset(emoji_id)))

    def render(self, matches: Sequence[EmojiMatch], cursor_line: Optional[int],
               schedule: bool = True) -> RenderResult:
        """
        Build decorations from the current cache state without waiting.

        Cache misses start background resolutions when schedule is true; the
        returned result's ``pending`` settles once all of them have. Re-render
        afterwards to pick up the fetched images.
        """
        result = RenderResult()
        scheduled: Dict[str, asyncio.Future] = {}
        in_flight = set(self.cache.pending_ids())

        for match in matches:
            image_uri = None
            resolving = False
            if self.configured:
                image_uri = self.cache.read(match.emoji_id)
                if image_uri is None:
                    if schedule and match.emoji_id not in scheduled:
                        task = self._schedule(match.emoji_id)
                        if task is not None:
                            scheduled[match.emoji_id] = task
                    resolving = match.emoji_id in scheduled or match.emoji_id in in_flight

            state = self._classify(match, cursor_line, image_uri, resolving)
            result.states[match] = state
            result.hover_by_match[match] = self._hover(match, image_uri, resolving)
            if self.enabled:
                self._decorate(result, match, state, image_uri, resolving)

        if scheduled:
            result.pending = asyncio.gather(*scheduled.values(), return_exceptions=True)
        return result

    async def update(self, matches: Sequence[EmojiMatch], cursor_line: Optional[int]) -> RenderResult:
        """Resolve every match concurrently, then render once all have settled."""
        result = self.render(matches, cursor_line)
        if result.pending is None:
            return result
        await result.pending
        return self.render(matches, cursor_line, schedule=False)

    @staticmethod
    def _classify(match: EmojiMatch, cursor_line: Optional[int],
                  image_uri: Optional[str], resolving: bool) -> MatchState:
        if cursor_line is not None and match.line == cursor_line:
            return MatchState.EXPANDED
        if image_uri is None and resolving:
            return MatchState.RESOLVING
        return MatchState.COLLAPSED

    @staticmethod
    def _insertion_point(match: EmojiMatch) -> Position:
        if match.fallback_range is not None:
            return match.fallback_range.start
        return match.attr_range.start

    def _decorate(self, result: RenderResult, match: EmojiMatch, state: MatchState,
                  image_uri: Optional[str], resolving: bool) -> None:
        size = self.icon_size

        if state is MatchState.EXPANDED:
            # Source stays editable, the preview goes after the tag
            if image_uri is None and not resolving:
                return
            result.icon_placements.append(IconPlacement(
                emoji_id=match.emoji_id,
                position=match.full_range.end,
                kind='composite' if image_uri else 'composite_skeleton',
                width=size * 2 + self.ICON_MARGIN,
                height=size,
                image_uri=image_uri,
                separator=self.SEPARATOR,
            ))
            return

        point = self._insertion_point(match)
        if state is MatchState.RESOLVING:
            result.icon_placements.append(IconPlacement(
                emoji_id=match.emoji_id, position=point, kind='skeleton', width=size, height=size,
            ))
            return

        result.hidden_ranges.append(match.attr_with_trailing_space_range)
        if match.lead_range is not None:
            result.hidden_ranges.append(match.lead_range)
        if image_uri is None:
            # Nothing to show instead, keep the fallback glyph visible
            return
        result.icon_placements.append(IconPlacement(
            emoji_id=match.emoji_id, position=point, kind='icon', width=size, height=size,
            image_uri=image_uri,
        ))
        if match.fallback_range is not None:
            result.hidden_ranges.append(match.fallback_range)
        result.highlight_ranges.append(Range.empty(point))

    def _hover(self, match: EmojiMatch, image_uri: Optional[str], resolving: bool) -> HoverContent:
        if not self.configured:
            status = HoverStatus.NOT_CONFIGURED
        elif image_uri is not None:
            status = HoverStatus.LOADED
        elif resolving:
            status = HoverStatus.LOADING
        else:
            status = HoverStatus.FAILED

        glyph = match.fallback_glyph
        fallback_name = emoji.demojize(glyph) if glyph and emoji.is_emoji(glyph) else None
        return HoverContent(
            emoji_id=match.emoji_id,
            fallback_glyph=glyph,
            fallback_name=fallback_name,
            status=status,
            size=self.hover_size,
            image_uri=image_uri,
        )
