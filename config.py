from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping
import logging


@dataclass
class Config:
    """Configuration settings for custom emoji previews."""
    BOT_TOKEN: str = ""                 # Telegram bot token, empty disables fetching
    CACHE_EXPIRATION: float = 86400     # Cache entry lifetime in seconds
    ENABLE_INLINE_PREVIEW: bool = True  # Render inline icons and hide source markup
    HOVER_PREVIEW_SIZE: int = 128       # Hover image width/height in pixels
    FONT_SIZE: int = 14                 # Editor font size, used for icon geometry
    DETECT_MARKDOWN: bool = False       # Also recognise ![x](tg://emoji?id=...) links
    DEBOUNCE_DELAY: float = 0.05        # Seconds to wait before re-rendering
    MAX_RETRIES: int = 3                # Maximum number of Bot API attempts
    TIMEOUT: int = 25                   # Request timeout in seconds
    CACHE_DIR: Path = Path("emoji_cache")  # Cached artifacts and cache.json
    LOG_FILE: Path = Path("emoji_preview.log")  # Log file location

    # Host setting name -> field name
    SETTING_KEYS = {
        "botToken": "BOT_TOKEN",
        "cacheExpiration": "CACHE_EXPIRATION",
        "enableInlinePreview": "ENABLE_INLINE_PREVIEW",
        "hoverPreviewSize": "HOVER_PREVIEW_SIZE",
        "fontSize": "FONT_SIZE",
        "detectMarkdown": "DETECT_MARKDOWN",
    }

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any], **overrides) -> "Config":
        """Build a config from host editor settings, keeping defaults for bad values."""
        config = cls(**overrides)
        types = {f.name: type(getattr(config, f.name)) for f in fields(cls)}
        for key, value in settings.items():
            name = cls.SETTING_KEYS.get(key)
            if name is None:
                continue
            expected = types[name]
            if expected in (int, float):
                expected = (int, float)
            # bool is an int subclass, reject it for numeric settings
            if isinstance(expected, tuple) and isinstance(value, bool):
                logging.warning(f"Ignoring setting {key}: expected a number")
                continue
            if not isinstance(value, expected):
                logging.warning(f"Ignoring setting {key}: unexpected type {type(value).__name__}")
                continue
            setattr(config, name, value)
        return config
