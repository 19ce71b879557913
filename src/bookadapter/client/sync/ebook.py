"""EPUB container reading: book details and cover extraction.

This module provides:
- BookInfo: Title and authors read from the container
- read_book_info: Read BookInfo, falling back to the file stem
- extract_cover: Pick a cover image and encode it as JPEG

Cover selection order:
1. An image declared as the cover (cover item, OPF cover meta, or an
   image whose name says "cover")
2. The first embedded image taller than it is wide
3. The first embedded image
"""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import ebooklib
from ebooklib import epub
from PIL import Image, UnidentifiedImageError

from bookadapter.client.sync.types import FilesystemError, NoCoverImageError

logger = logging.getLogger(__name__)

COVER_JPEG_QUALITY = 90

# ebooklib raises a mix of its own and zip/lxml errors for broken containers
_READ_ERRORS: tuple[type[Exception], ...] = (
    epub.EpubException,
    zipfile.BadZipFile,
    KeyError,
    ValueError,
    AttributeError,
)


@dataclass
class BookInfo:
    """Details of a book read from its container."""

    title: str
    authors: str = ""


def _open(path: Path) -> epub.EpubBook:
    try:
        return epub.read_epub(str(path), options={"ignore_ncx": True})
    except OSError as e:
        raise FilesystemError(f"Cannot read {path}: {e}", e.__class__.__name__) from e


def read_book_info(path: Path) -> BookInfo:
    """Read title and authors from an EPUB.

    Unparseable containers fall back to the file stem as title.

    Raises:
        FilesystemError: If the file cannot be read at all.
    """
    fallback = BookInfo(title=path.stem)
    try:
        book = _open(path)
    except _READ_ERRORS as e:
        logger.warning("Cannot parse %s as EPUB, using filename: %s", path.name, e)
        return fallback

    titles = book.get_metadata("DC", "title")
    creators = book.get_metadata("DC", "creator")
    title = titles[0][0].strip() if titles and titles[0][0] else ""
    authors = ", ".join(c[0].strip() for c in creators if c and c[0])
    return BookInfo(title=title or fallback.title, authors=authors)


def _is_image(item: Any) -> bool:
    return (getattr(item, "media_type", None) or "").startswith("image/")


def _declared_covers(book: epub.EpubBook, images: list[Any]) -> list[Any]:
    """Images the container declares (or names) as its cover."""
    candidates = [i for i in book.get_items_of_type(ebooklib.ITEM_COVER) if _is_image(i)]

    # <meta name="cover" content="item-id"/> lands under varying namespaces
    for namespace in book.metadata.values():
        for _, attrs in namespace.get("cover", []):
            item = book.get_item_with_id((attrs or {}).get("content", ""))
            if item is not None and _is_image(item):
                candidates.append(item)

    candidates.extend(
        i for i in images
        if "cover" in (i.get_name() or "").lower() or "cover" in (i.get_id() or "").lower()
    )
    return candidates


def _load_image(item: Any) -> Image.Image | None:
    try:
        image = Image.open(io.BytesIO(item.get_content()))
        image.load()
        return image
    except (UnidentifiedImageError, OSError) as e:
        logger.debug("Skipping unreadable image %s: %s", item.get_name(), e)
        return None


def _to_jpeg(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=COVER_JPEG_QUALITY)
    return buffer.getvalue()


def extract_cover(path: Path) -> bytes:
    """Extract a cover image from an EPUB as JPEG bytes.

    Args:
        path: Local EPUB file.

    Returns:
        JPEG-encoded cover.

    Raises:
        NoCoverImageError: If the container has no usable image or cannot
            be parsed.
        FilesystemError: If the file cannot be read.
    """
    try:
        book = _open(path)
    except _READ_ERRORS as e:
        raise NoCoverImageError(f"Cannot parse {path.name}: {e}", "unparseable") from e

    images = [i for i in book.get_items() if _is_image(i)]
    if not images:
        raise NoCoverImageError("Book has no images", "no-images")

    for item in _declared_covers(book, images):
        image = _load_image(item)
        if image is not None:
            logger.debug("Using declared cover %s", item.get_name())
            return _to_jpeg(image)

    loaded = [(item, img) for item in images if (img := _load_image(item)) is not None]
    if not loaded:
        raise NoCoverImageError("Book has no readable images", "no-images")

    for item, image in loaded:
        width, height = image.size
        if height > width:
            logger.debug("Using first portrait image %s", item.get_name())
            return _to_jpeg(image)

    item, image = loaded[0]
    logger.debug("Using first image %s", item.get_name())
    return _to_jpeg(image)
