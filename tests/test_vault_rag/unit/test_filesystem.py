"""Unit tests for local vault file access."""

import pytest

from vault_rag.filesystem import LocalNoteFileSystem, compute_file_hash


@pytest.fixture
def vault(tmp_path):
    (tmp_path / "daily").mkdir()
    (tmp_path / ".obsidian").mkdir()
    (tmp_path / "index.md").write_text("# Index\n", encoding="utf-8")
    (tmp_path / "daily" / "2026-01-01.md").write_text("New year", encoding="utf-8")
    (tmp_path / "daily" / "image.png").write_bytes(b"\x89PNG")
    (tmp_path / ".obsidian" / "workspace.md").write_text("hidden", encoding="utf-8")
    return tmp_path


class TestComputeFileHash:
    """Tests for content hashing."""

    def test_known_digest(self):
        assert compute_file_hash("") == (
            "sha256:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_str_and_bytes_agree(self):
        assert compute_file_hash("note") == compute_file_hash(b"note")

    def test_content_sensitive(self):
        assert compute_file_hash("a") != compute_file_hash("b")


class TestLocalNoteFileSystem:
    """Tests for LocalNoteFileSystem."""

    def test_lists_markdown_files_relative_and_sorted(self, vault):
        assert LocalNoteFileSystem(vault).list_markdown_files() == ["daily/2026-01-01.md", "index.md"]

    def test_missing_root(self, tmp_path):
        assert LocalNoteFileSystem(tmp_path / "absent").list_markdown_files() == []

    def test_read_file(self, vault):
        assert LocalNoteFileSystem(vault).read_file("daily/2026-01-01.md") == "New year"

    def test_read_missing_file(self, vault):
        assert LocalNoteFileSystem(vault).read_file("nope.md") is None

    def test_read_outside_vault_rejected(self, vault):
        (vault.parent / "secret.md").write_text("secret", encoding="utf-8")

        assert LocalNoteFileSystem(vault).read_file("../secret.md") is None

    def test_last_modified_in_milliseconds(self, vault):
        expected = int((vault / "index.md").stat().st_mtime * 1000)

        assert LocalNoteFileSystem(vault).get_last_modified("index.md") == expected
        assert LocalNoteFileSystem(vault).get_last_modified("nope.md") is None
