import logging
import os
import secrets
import time
from typing import Optional

import config

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads/"
IMAGE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def check_image(content_type: Optional[str], data: bytes, max_size: int) -> Optional[str]:
    """Reason the upload is refused, or None when it is an acceptable image."""
    if content_type not in IMAGE_EXTENSIONS:
        return "Unsupported file type. Upload a JPEG, PNG or WebP image."
    if not data:
        return "No file provided"
    if len(data) > max_size:
        return f"File is too large. Maximum size is {max_size // (1024 * 1024)}MB."
    return None


def save_bytes(data: bytes, content_type: str, subdir: str = "", prefix: Optional[str] = None) -> str:
    """Write ``data`` under the upload directory and return its public URL."""
    unique = prefix or secrets.token_hex(8)
    name = f"{unique}-{int(time.time() * 1000)}.{IMAGE_EXTENSIONS[content_type]}"
    directory = os.path.join(config.UPLOAD_DIR, subdir) if subdir else config.UPLOAD_DIR
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, name), "wb") as f:
        f.write(data)
    relative = f"{subdir}/{name}" if subdir else name
    logger.info("Stored upload %s (%d bytes)", relative, len(data))
    return URL_PREFIX + relative


def path_for(url: str) -> Optional[str]:
    if not url or not url.startswith(URL_PREFIX):
        return None
    return os.path.join(config.UPLOAD_DIR, *url[len(URL_PREFIX):].split("/"))


def remove_upload(url: str) -> bool:
    path = path_for(url)
    if path and os.path.exists(path):
        os.remove(path)
        logger.info("Removed upload %s", url)
        return True
    return False
