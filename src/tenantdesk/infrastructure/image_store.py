from __future__ import annotations

import logging
import os
import re
import time
from pathlib import Path
from threading import RLock
from typing import Optional, Protocol

from ..domain.tokens import TokenTarget

logger = logging.getLogger("tenantdesk.uploads")

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png"}
ALLOWED_MIME_TYPES = {"image/jpeg", "image/png"}
MAX_IMAGE_BYTES = 5 * 1024 * 1024


class ImageRejected(ValueError):
    pass


def validate_image(filename: Optional[str], mime_type: Optional[str], size: int) -> None:
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS or (mime_type or "").lower() not in ALLOWED_MIME_TYPES:
        raise ImageRejected("Only JPG and PNG images are allowed")
    if size <= 0:
        raise ImageRejected("Empty file")
    if size > MAX_IMAGE_BYTES:
        raise ImageRejected("Image exceeds the 5 MB limit")


class ImageStore(Protocol):
    def save(self, target: TokenTarget, filename: str, content: bytes, mime_type: str) -> str: ...


def _safe_name(filename: str) -> str:
    base = Path(filename).name
    return re.sub(r"[^A-Za-z0-9._-]", "_", base) or "image"


class LocalImageStore:
    """Stores images on disk as ``<root>/<entity_type>/<entity_id>/<ms>-<name>``."""

    def __init__(self, root: Optional[Path] = None) -> None:
        self.root = Path(root or os.getenv("TENANTDESK_UPLOAD_DIR", "uploads"))
        self._lock = RLock()

    def _dir(self, target: TokenTarget) -> Path:
        if target.entity_type is None or not target.entity_id:
            raise ValueError("image target requires entity_type and entity_id")
        return self.root / target.entity_type.value / _safe_name(target.entity_id)

    def save(self, target: TokenTarget, filename: str, content: bytes, mime_type: str) -> str:
        folder = self._dir(target)
        name = f"{int(time.time() * 1000)}-{_safe_name(filename)}"
        with self._lock:
            folder.mkdir(parents=True, exist_ok=True)
            path = folder / name
            path.write_bytes(content)
        logger.info("image_stored", extra={"target": target.label(), "size": len(content), "mime_type": mime_type})
        return str(path.relative_to(self.root).as_posix())


_store: Optional[ImageStore] = None


def get_image_store() -> ImageStore:
    global _store
    if _store is None:
        _store = LocalImageStore()
    return _store


def set_image_store(store: Optional[ImageStore]) -> None:
    global _store
    _store = store


def reset_image_store() -> None:
    set_image_store(None)
