"""Shared fixtures for the bookadapter test suite."""

from __future__ import annotations

import io
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest
from ebooklib import epub
from PIL import Image


def image_bytes(size: tuple[int, int], fmt: str = "PNG", color: str = "navy") -> bytes:
    """Encode a solid-colour image."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


EpubFactory = Callable[..., Path]


@pytest.fixture
def make_epub(tmp_path: Path) -> EpubFactory:
    """Factory writing small but valid EPUB files.

    Args (of the returned callable):
        name: File name under tmp_path/books.
        title: dc:title.
        authors: dc:creator entries.
        images: (file name, (width, height)) of embedded PNG images.
        cover: (width, height) of a declared JPEG cover, or None.
    """

    def _make(
        name: str = "book.epub",
        title: str = "A Test Book",
        authors: Sequence[str] = ("Jane Roe",),
        images: Sequence[tuple[str, tuple[int, int]]] = (),
        cover: tuple[int, int] | None = None,
    ) -> Path:
        book = epub.EpubBook()
        book.set_identifier(f"id-{name}")
        book.set_title(title)
        book.set_language("en")
        for author in authors:
            book.add_author(author)

        if cover is not None:
            book.set_cover("cover.jpg", image_bytes(cover, fmt="JPEG"), create_page=False)

        for index, (file_name, size) in enumerate(images):
            book.add_item(
                epub.EpubItem(
                    uid=f"img{index}",
                    file_name=f"images/{file_name}",
                    media_type="image/png",
                    content=image_bytes(size),
                )
            )

        chapter = epub.EpubHtml(title="Intro", file_name="chap_01.xhtml", lang="en")
        chapter.content = "<h1>Intro</h1><p>Once upon a time.</p>"
        book.add_item(chapter)
        book.toc = (epub.Link("chap_01.xhtml", "Intro", "intro"),)
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())
        book.spine = ["nav", chapter]

        path = tmp_path / "books" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        epub.write_epub(str(path), book, {})
        return path

    return _make
