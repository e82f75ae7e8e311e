from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Dict, List, Optional

from emoji_detector import EmojiMatch, Position, Range


class MatchState(Enum):
    RESOLVING = "resolving"
    COLLAPSED = "collapsed"
    EXPANDED = "expanded"


class HoverStatus(Enum):
    LOADED = "loaded"
    LOADING = "loading"
    FAILED = "failed"
    NOT_CONFIGURED = "not_configured"


@dataclass
class IconPlacement:
    """An image (or its placeholder) to draw at a position in the document."""
    emoji_id: str
    position: Position
    kind: str                       # icon | skeleton | composite | composite_skeleton
    width: int
    height: int
    image_uri: Optional[str] = None
    separator: Optional[str] = None


@dataclass
class HoverContent:
    """Tooltip payload for one match."""
    emoji_id: str
    fallback_glyph: Optional[str]
    fallback_name: Optional[str]
    status: HoverStatus
    size: int
    image_uri: Optional[str] = None

    def to_markdown(self) -> str:
        fallback = self.fallback_glyph or "none"
        if self.fallback_name:
            fallback = f"{fallback} `{self.fallback_name}`"
        table = (
            "| Property | Value |\n|:--|:--|\n"
            f"| ID | `{self.emoji_id}` |\n"
            f"| Fallback | {fallback} |"
        )

        if self.status is HoverStatus.LOADED:
            return (
                f'<img src="{self.image_uri}" width="{self.size}" height="{self.size}"/>\n\n'
                f"**Telegram Custom Emoji**\n\n{table}"
            )
        if self.status is HoverStatus.LOADING:
            note = "*Loading preview...*"
        elif self.status is HoverStatus.FAILED:
            note = "*Failed to fetch from Telegram API*"
        else:
            note = "*Configure a bot token to enable previews*"
        return f"**Telegram Custom Emoji**\n\n⚠️ Could not load preview\n\n{table}\n\n{note}"


@dataclass
class RenderResult:
    """Decorations for one document, split by how the host applies them."""
    icon_placements: List[IconPlacement] = field(default_factory=list)
    hidden_ranges: List[Range] = field(default_factory=list)
    highlight_ranges: List[Range] = field(default_factory=list)
    hover_by_match: Dict[EmojiMatch, HoverContent] = field(default_factory=dict)
    states: Dict[EmojiMatch, MatchState] = field(default_factory=dict)
    # Settles once every resolution started by this render has settled
    pending: Optional[Awaitable] = None

    def to_dict(self) -> dict:
        """Plain JSON-friendly view of the decorations."""
        def pos(p: Position) -> List[int]:
            return [p.line, p.character]

        def rng(r: Range) -> List[List[int]]:
            return [pos(r.start), pos(r.end)]

        return {
            'icons': [
                {
                    'emoji_id': icon.emoji_id,
                    'position': pos(icon.position),
                    'kind': icon.kind,
                    'width': icon.width,
                    'height': icon.height,
                    'loaded': icon.image_uri is not None,
                }
                for icon in self.icon_placements
            ],
            'hidden': [rng(r) for r in self.hidden_ranges],
            'highlights': [rng(r) for r in self.highlight_ranges],
            'matches': [
                {
                    'emoji_id': match.emoji_id,
                    'range': rng(match.full_range),
                    'fallback': match.fallback_glyph,
                    'state': self.states[match].value if match in self.states else None,
                    'hover': hover.status.value,
                }
                for match, hover in self.hover_by_match.items()
            ],
        }
