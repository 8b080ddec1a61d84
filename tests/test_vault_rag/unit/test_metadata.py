"""Unit tests for vault metadata persistence."""

from datetime import UTC, datetime

import pytest

from vault_rag.metadata import VaultMetadataStore
from vault_rag.models import VaultMetadata

VAULT = "/home/user/notes"
WHEN = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def store(tmp_path) -> VaultMetadataStore:
    return VaultMetadataStore(tmp_path / "vault_metadata")


class TestVaultMetadataStore:
    """Tests for VaultMetadataStore."""

    def test_missing_record(self, store):
        assert store.load(VAULT) is None

    def test_save_and_load(self, store):
        metadata = VaultMetadata(
            vault_path=VAULT, last_indexed_time=WHEN, indexed_file_hashes={"a.md": "sha256:1"}
        )

        path = store.save(metadata)

        assert path.exists()
        assert path.parent == store.directory
        assert store.load(VAULT) == metadata

    def test_record_name_is_stable_per_vault(self, store):
        assert store.path_for(VAULT) == store.path_for(VAULT + "/")
        assert store.path_for(VAULT) != store.path_for("/other")

    def test_corrupt_record_ignored(self, store):
        store.directory.mkdir(parents=True)
        store.path_for(VAULT).write_text("{not json")

        assert store.load(VAULT) is None

    def test_record_indexing_merges_previous_hashes(self, store):
        store.record_indexing(VAULT, {"a.md": "sha256:1", "b.md": "sha256:2"}, now=WHEN)

        metadata = store.record_indexing(VAULT, {"b.md": "sha256:3"}, now=WHEN)

        assert metadata.indexed_file_hashes == {"a.md": "sha256:1", "b.md": "sha256:3"}
        assert store.load(VAULT).indexed_file_hashes == metadata.indexed_file_hashes

    def test_record_indexing_without_merge_replaces(self, store):
        store.record_indexing(VAULT, {"a.md": "sha256:1"}, now=WHEN)

        metadata = store.record_indexing(VAULT, {"b.md": "sha256:2"}, merge=False, now=WHEN)

        assert metadata.indexed_file_hashes == {"b.md": "sha256:2"}

    def test_forget_files(self, store):
        store.record_indexing(VAULT, {"a.md": "sha256:1", "b.md": "sha256:2"}, now=WHEN)

        metadata = store.forget_files(VAULT, ["a.md"])

        assert metadata.indexed_file_hashes == {"b.md": "sha256:2"}
        assert store.load(VAULT).indexed_file_hashes == {"b.md": "sha256:2"}

    def test_forget_files_without_record(self, store):
        assert store.forget_files(VAULT, ["a.md"]) is None

    def test_delete(self, store):
        store.record_indexing(VAULT, {"a.md": "sha256:1"}, now=WHEN)

        assert store.delete(VAULT) is True
        assert store.load(VAULT) is None
        assert store.delete(VAULT) is False
