import logging
import aiohttp
import aiofiles
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional, Protocol
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential
from config import Config


class AssetFetcher(Protocol):
    async def fetch_asset(self, emoji_id: str) -> Optional[str]:
        """Return a local path to the emoji image, or None."""
        ...


class TelegramApiError(Exception):
    """The Bot API answered with ok=false."""


def _is_transient(error: BaseException) -> bool:
    """Network trouble and 5xx answers are worth retrying, 4xx answers are not."""
    if isinstance(error, aiohttp.ClientResponseError):
        return error.status >= 500
    return isinstance(error, aiohttp.ClientError)


class TelegramApi:
    API_URL = "https://api.telegram.org"

    def __init__(self, bot_token: str, cache_dir: Path, timeout: int = Config.TIMEOUT):
        self.bot_token = bot_token
        self.cache_dir = Path(cache_dir)
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }

    @retry(retry=retry_if_exception(_is_transient),
           stop=stop_after_attempt(Config.MAX_RETRIES),
           wait=wait_exponential(multiplier=1, min=1, max=10),
           reraise=True)
    async def _request(self, method: str, params: Dict[str, Any]) -> Any:
        """Call a Bot API method and return its result field."""
        url = f"{self.API_URL}/bot{self.bot_token}/{method}"
        logging.debug(f"Calling Bot API method {method}")

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(url, json=params, headers=self.headers) as response:
                payload = await response.json(content_type=None)
                if not payload.get('ok'):
                    raise TelegramApiError(payload.get('description', f"HTTP {response.status}"))
                return payload.get('result')

    @retry(retry=retry_if_exception(_is_transient),
           stop=stop_after_attempt(Config.MAX_RETRIES),
           wait=wait_exponential(multiplier=1, min=1, max=10),
           reraise=True)
    async def _download(self, file_path: str, dest: Path) -> None:
        """Download a file from the Bot API file storage."""
        url = f"{self.API_URL}/file/bot{self.bot_token}/{file_path}"
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp_dest = dest.with_name(dest.name + ".part")

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url) as response:
                    response.raise_for_status()
                    async with aiofiles.open(tmp_dest, 'wb') as f:
                        async for chunk in response.content.iter_chunked(64 * 1024):
                            await f.write(chunk)
            tmp_dest.replace(dest)
        finally:
            tmp_dest.unlink(missing_ok=True)

    async def fetch_asset(self, emoji_id: str) -> Optional[str]:
        """Resolve a custom emoji ID to a downloaded image file."""
        try:
            stickers = await self._request('getCustomEmojiStickers', {'custom_emoji_ids': [emoji_id]})
            if not stickers:
                logging.warning(f"No sticker found for custom emoji {emoji_id}")
                return None

            sticker = stickers[0]
            # Static thumbnails render everywhere, animated originals do not
            file_id = (sticker.get('thumbnail') or {}).get('file_id') or sticker.get('file_id')
            file_info = await self._request('getFile', {'file_id': file_id})
            remote_path = (file_info or {}).get('file_path')
            if not remote_path:
                return None

            ext = PurePosixPath(remote_path).suffix or '.webp'
            local_path = self.cache_dir / f"{emoji_id}{ext}"
            if not local_path.exists():
                await self._download(remote_path, local_path)
            return str(local_path)

        except Exception as e:
            logging.error(f"Error fetching custom emoji {emoji_id}: {str(e)}")
            return None
