from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence, Set, Tuple
import re


@dataclass(frozen=True, order=True)
class Position:
    """Zero-based line/character location in a document."""
    line: int
    character: int


@dataclass(frozen=True)
class Range:
    start: Position
    end: Position

    @classmethod
    def empty(cls, position: Position) -> "Range":
        return cls(position, position)

    def contains(self, other: "Range") -> bool:
        return self.start <= other.start and other.end <= self.end


@dataclass(frozen=True)
class EmojiMatch:
    """One custom emoji reference found in a document."""
    emoji_id: str
    fallback_glyph: Optional[str]
    full_range: Range
    attr_range: Range
    attr_with_trailing_space_range: Range
    fallback_range: Optional[Range]
    line: int
    start_offset: int
    # Opening markup before the fallback that is hidden along with head
    lead_range: Optional[Range] = None


# <tg-emoji emoji-id="123">😀</tg-emoji>
PAIRED_TAG_PATTERN = re.compile(
    r'<tg-emoji(?P<head>\s+(?P<attr>emoji[-_]id=(?P<quote>["\'])(?P<id>\d+)(?P=quote))\s*)>'
    r'(?P<fallback>[^<]*)</tg-emoji\s*>',
    re.IGNORECASE,
)

# <tg-emoji emoji-id="123"/>
SELF_CLOSING_TAG_PATTERN = re.compile(
    r'<tg-emoji(?P<head>\s+(?P<attr>emoji[-_]id=(?P<quote>["\'])(?P<id>\d+)(?P=quote))\s*)/>',
    re.IGNORECASE,
)

# ![😀](tg://emoji?id=123) or [😀](tg://emoji?id=123), the Markdown spellings
MARKDOWN_EMOJI_PATTERN = re.compile(
    r'(?P<lead>!?\[)(?P<fallback>[^\]\[]*)(?P<head>\]\((?P<attr>tg://emoji\?id=(?P<id>\d+))\))',
    re.IGNORECASE,
)

DEFAULT_PATTERNS: Tuple[Pattern, ...] = (PAIRED_TAG_PATTERN, SELF_CLOSING_TAG_PATTERN)


class TextPositionMapper:
    """Maps character offsets of one text snapshot to line/character positions."""

    def __init__(self, text: str):
        self._line_starts = [0]
        i = 0
        length = len(text)
        while i < length:
            char = text[i]
            if char == '\r':
                if i + 1 < length and text[i + 1] == '\n':
                    i += 1
                self._line_starts.append(i + 1)
            elif char == '\n':
                self._line_starts.append(i + 1)
            i += 1
        self._length = length

    def position_at(self, offset: int) -> Position:
        offset = max(0, min(offset, self._length))
        line = bisect_right(self._line_starts, offset) - 1
        return Position(line, offset - self._line_starts[line])

    def range_at(self, start: int, end: int) -> Range:
        return Range(self.position_at(start), self.position_at(end))


class EmojiDetector:
    REQUIRED_GROUPS = ('head', 'attr', 'id')

    def __init__(self, extra_patterns: Sequence[Pattern] = ()):
        for pattern in extra_patterns:
            missing = [g for g in self.REQUIRED_GROUPS if g not in pattern.groupindex]
            if missing:
                raise ValueError(f"Pattern {pattern.pattern!r} lacks groups: {', '.join(missing)}")
        self.patterns: Tuple[Pattern, ...] = DEFAULT_PATTERNS + tuple(extra_patterns)

    def detect(self, text: str) -> List[EmojiMatch]:
        """Find every emoji reference in text, ordered by position."""
        if not text:
            return []

        mapper = TextPositionMapper(text)
        found: List[EmojiMatch] = []
        seen: Set[Tuple[str, int]] = set()

        for pattern in self.patterns:
            for m in pattern.finditer(text):
                emoji_id = m.group('id')
                if not emoji_id or not emoji_id.isdigit():
                    continue

                key = (emoji_id, m.start())
                if key in seen:
                    continue
                seen.add(key)
                found.append(self._build_match(m, mapper))

        found.sort(key=lambda match: match.start_offset)
        return found

    @staticmethod
    def _build_match(m: re.Match, mapper: TextPositionMapper) -> EmojiMatch:
        start = m.start()
        full_range = mapper.range_at(start, m.end())

        fallback_glyph = None
        fallback_range = None
        if 'fallback' in m.re.groupindex and m.group('fallback') is not None:
            raw = m.group('fallback')
            stripped = raw.strip()
            if stripped:
                # Range covers the glyph only, not the padding around it
                glyph_start = m.start('fallback') + (len(raw) - len(raw.lstrip()))
                fallback_glyph = stripped
                fallback_range = mapper.range_at(glyph_start, glyph_start + len(stripped))

        lead_range = None
        if 'lead' in m.re.groupindex and m.group('lead') is not None:
            lead_range = mapper.range_at(m.start('lead'), m.end('lead'))

        return EmojiMatch(
            emoji_id=m.group('id'),
            fallback_glyph=fallback_glyph,
            full_range=full_range,
            attr_range=mapper.range_at(m.start('attr'), m.end('attr')),
            attr_with_trailing_space_range=mapper.range_at(m.start('head'), m.end('head')),
            fallback_range=fallback_range,
            line=full_range.start.line,
            start_offset=start,
            lead_range=lead_range,
        )


def detect_emojis(text: str, detect_markdown: bool = False) -> List[EmojiMatch]:
    """Detect references with the built-in patterns."""
    extra = (MARKDOWN_EMOJI_PATTERN,) if detect_markdown else ()
    return EmojiDetector(extra).detect(text)
