"""Side-output store for images and SVGs localized during conversion."""

from __future__ import annotations

import io
import logging
import mimetypes
import threading
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Optional, Tuple, Union

from .text import clean_url, content_hash

LOG = logging.getLogger("csdn2md")

ALLOWED_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "svg", "bmp", "ico", "avif")
PIL_FORMAT_EXTENSIONS = {
    "JPEG": ".jpg",
    "PNG": ".png",
    "GIF": ".gif",
    "WEBP": ".webp",
    "BMP": ".bmp",
    "ICO": ".ico",
    "AVIF": ".avif",
}

Fetcher = Callable[[str], bytes]
Payload = Union[bytes, str, None]


@dataclass
class AssetEntry:
    logical_path: str
    payload: Payload
    mime_type: str
    sort_index: int
    source_url: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.payload is None


@dataclass
class AssetOwnerScope:
    prefix: str
    directory: str
    counter: int = 0
    paths_by_key: Dict[str, str] = field(default_factory=dict)

    def next_path(self, extension: str) -> Tuple[int, str]:
        self.counter += 1
        parts = [part for part in (self.directory.strip("/"), f"{self.prefix}{self.counter}{extension}") if part]
        return self.counter, "./" + str(PurePosixPath(*parts))


def _url_extension(url: str) -> str:
    tail = url.rsplit("/", 1)[-1]
    if "." not in tail:
        return ""
    ext = tail.rsplit(".", 1)[-1]
    if ext.lower() not in ALLOWED_IMAGE_EXTENSIONS:
        LOG.warning("Unsupported image format '%s' for %s", ext, url)
        return ""
    return f".{ext}"


def _sniff_extension(payload: bytes) -> str:
    try:
        from PIL import Image  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"Pillow not available: {exc}") from exc

    try:
        with Image.open(io.BytesIO(payload)) as image:
            image_format = image.format or ""
    except Exception as exc:
        LOG.debug("Unable to identify image bytes: %s", exc)
        return ""
    return PIL_FORMAT_EXTENSIONS.get(image_format.upper(), "")


class AssetSink:
    """Deduplicating asset store shared by one or more document conversions.

    Each ``(prefix, directory)`` pair owns its own counter and dedup table, so
    documents that share a sink in merge mode never collide on filenames.
    """

    def __init__(self, fetcher: Optional[Fetcher] = None) -> None:
        self._fetcher = fetcher
        self._lock = threading.RLock()
        self._scopes: Dict[Tuple[str, str], AssetOwnerScope] = {}
        self._entries: List[AssetEntry] = []

    def scope(self, directory: str, prefix: str = "") -> AssetOwnerScope:
        key = (prefix, directory)
        with self._lock:
            owner = self._scopes.get(key)
            if owner is None:
                owner = AssetOwnerScope(prefix=prefix, directory=directory)
                self._scopes[key] = owner
            return owner

    def localize_image(self, url: str, directory: str, prefix: str = "") -> str:
        if not isinstance(url, str):
            raise TypeError(f"Image URL must be a string, got {type(url).__name__}")
        url = clean_url(url)
        owner = self.scope(directory, prefix)
        with self._lock:
            known = owner.paths_by_key.get(url)
        if known is not None:
            return known

        extension = _url_extension(url)
        payload: Payload = None
        if self._fetcher is not None:
            payload = self._fetcher(url)
            if not extension and payload:
                extension = _sniff_extension(payload)

        with self._lock:
            known = owner.paths_by_key.get(url)
            if known is not None:
                return known
            index, path = owner.next_path(extension)
            owner.paths_by_key[url] = path
            mime_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
            self._entries.append(AssetEntry(path, payload, mime_type, index, source_url=url))
        LOG.debug("Registered image %s -> %s", url, path)
        return path

    def localize_svg(self, svg_markup: str, directory: str, prefix: str = "") -> str:
        if not isinstance(svg_markup, str):
            raise TypeError(f"SVG markup must be a string, got {type(svg_markup).__name__}")
        key = content_hash(svg_markup, 16)
        owner = self.scope(directory, prefix)
        with self._lock:
            known = owner.paths_by_key.get(key)
            if known is not None:
                return known
            index, path = owner.next_path(".svg")
            owner.paths_by_key[key] = path
            self._entries.append(AssetEntry(path, svg_markup, "image/svg+xml", index))
        LOG.debug("Registered inline SVG %s -> %s", key, path)
        return path

    def entries(self) -> List[AssetEntry]:
        with self._lock:
            return sorted(self._entries, key=lambda entry: entry.sort_index)

    def drain(self) -> List[AssetEntry]:
        with self._lock:
            drained = sorted(self._entries, key=lambda entry: entry.sort_index)
            self._entries = []
        return drained

    def reset(self) -> None:
        with self._lock:
            self._entries = []
            self._scopes = {}

    def write_to(self, out_dir: Path) -> List[Path]:
        written: List[Path] = []
        for entry in self.drain():
            if entry.is_pending:
                LOG.warning("Skipping unfetched image %s (%s)", entry.logical_path, entry.source_url)
                continue
            relative = entry.logical_path[2:] if entry.logical_path.startswith("./") else entry.logical_path
            target = out_dir.joinpath(*PurePosixPath(relative).parts)
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(entry.payload, bytes):
                target.write_bytes(entry.payload)
            else:
                target.write_text(str(entry.payload), encoding="utf-8", newline="\n")
            written.append(target)
        return written


__all__ = ["AssetEntry", "AssetOwnerScope", "AssetSink", "Fetcher"]
