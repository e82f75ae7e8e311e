from typing import Optional
from pathlib import Path
from PIL import Image, UnidentifiedImageError
from io import BytesIO
import base64
import logging

MIME_TYPES = {
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
}
DEFAULT_MIME_TYPE = 'image/webp'


class ImageProcessor:
    @staticmethod
    def mime_type_for(path: Path) -> str:
        """Guess the MIME type from the file extension."""
        return MIME_TYPES.get(Path(path).suffix.lower(), DEFAULT_MIME_TYPE)

    @staticmethod
    def _verify(image_data: bytes) -> None:
        """Raise if Pillow cannot make sense of the bytes."""
        with Image.open(BytesIO(image_data)) as img:
            img.verify()

    @staticmethod
    def encode_data_uri(path: Path) -> Optional[str]:
        """Read a downloaded artifact and encode it as a data URI."""
        try:
            image_data = Path(path).read_bytes()
            ImageProcessor._verify(image_data)
            mime = ImageProcessor.mime_type_for(path)
            encoded = base64.b64encode(image_data).decode('ascii')
            return f"data:{mime};base64,{encoded}"

        except UnidentifiedImageError:
            logging.error(f"Unidentified image file {path}")
        except OSError as e:
            logging.error(f"Error reading image {path}: {str(e)}")
        except Exception as e:
            logging.error(f"Image encoding error for {path}: {str(e)}")

        return None
