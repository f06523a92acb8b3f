"""Tests for listing media storage on disk."""

from pathlib import Path

import pytest

from homeboard.utils.media import (
    clear_listing_media,
    content_filename,
    delete_media_file,
    get_listing_media_dir,
    media_extension,
    resolve_media_path,
    safe_dir_name,
    save_media_bytes,
)


class TestMediaExtension:
    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("photo.JPG", ".jpg"),
            ("clip.mov", ".mov"),
            ("plan.webp", ".webp"),
            ("notes.pdf", None),
            ("noext", None),
        ],
    )
    def test_accepted_types(self, filename: str, expected: str | None) -> None:
        assert media_extension(filename) == expected


def test_safe_dir_name() -> None:
    assert safe_dir_name("abc-123_x") == "abc-123_x"
    assert safe_dir_name("../etc/passwd") == "___etc_passwd"


def test_content_filename_is_deterministic() -> None:
    assert content_filename(b"data", ".png") == content_filename(b"data", ".png")
    assert content_filename(b"data", ".png") != content_filename(b"other", ".png")
    assert len(content_filename(b"data", ".png")) == 16 + 4


class TestSaveAndDelete:
    def test_save_returns_url_and_writes(self, tmp_path: Path) -> None:
        url = save_media_bytes(str(tmp_path), "listing-1", b"bytes", ".jpg")
        filename = content_filename(b"bytes", ".jpg")
        assert url == f"/media/listings/listing-1/{filename}"
        assert (tmp_path / "listings" / "listing-1" / filename).read_bytes() == b"bytes"

    def test_same_content_same_file(self, tmp_path: Path) -> None:
        first = save_media_bytes(str(tmp_path), "listing-1", b"bytes", ".jpg")
        second = save_media_bytes(str(tmp_path), "listing-1", b"bytes", ".jpg")
        assert first == second
        assert len(list(get_listing_media_dir(str(tmp_path), "listing-1").iterdir())) == 1

    def test_delete(self, tmp_path: Path) -> None:
        url = save_media_bytes(str(tmp_path), "listing-1", b"bytes", ".jpg")
        assert delete_media_file(str(tmp_path), url) is True
        assert delete_media_file(str(tmp_path), url) is False

    @pytest.mark.parametrize("url", ["/other/listings/x/y.jpg", "/media/listings/x", ""])
    def test_delete_rejects_foreign_urls(self, tmp_path: Path, url: str) -> None:
        assert delete_media_file(str(tmp_path), url) is False

    def test_clear(self, tmp_path: Path) -> None:
        save_media_bytes(str(tmp_path), "listing-1", b"a", ".jpg")
        save_media_bytes(str(tmp_path), "listing-1", b"b", ".jpg")
        assert clear_listing_media(str(tmp_path), "listing-1") is True
        assert clear_listing_media(str(tmp_path), "listing-1") is False


@pytest.mark.parametrize("filename", ["", "../secret", "a/b.jpg", "a\\b.jpg"])
def test_resolve_rejects_traversal(tmp_path: Path, filename: str) -> None:
    assert resolve_media_path(str(tmp_path), "listing-1", filename) is None
