"""Unit tests for query rewriting and multi-query expansion."""

from unittest.mock import AsyncMock

import pytest

from vault_rag.errors import CompletionError
from vault_rag.preprocessing import QueryPreprocessor, clean_alternative_lines


@pytest.fixture
def completion_client() -> AsyncMock:
    return AsyncMock()


class TestCleanAlternativeLines:
    """Tests for model output cleanup."""

    def test_strips_numbering_and_bullets(self):
        response = "1. backup strategy for laptop\n2) laptop backup plan\n- how to back up laptop"
        assert clean_alternative_lines(response) == [
            "backup strategy for laptop",
            "laptop backup plan",
            "how to back up laptop",
        ]

    def test_drops_commentary_and_short_lines(self):
        response = (
            "Here are some options:\n"
            "* ok\n"
            "Original query: foo bar\n"
            "Another phrasing of it\n"
            "\n"
            "notes about sourdough starter"
        )
        assert clean_alternative_lines(response) == ["notes about sourdough starter"]


class TestRewriteQuery:
    """Tests for QueryPreprocessor.rewrite_query."""

    @pytest.mark.asyncio
    async def test_returns_rewritten_query(self, completion_client):
        completion_client.complete.return_value = "  laptop backup strategy \n"

        result = await QueryPreprocessor(completion_client).rewrite_query("hey, how do i back up?")

        assert result == "laptop backup strategy"
        prompt = completion_client.complete.await_args.args[0]
        assert "Original query: hey, how do i back up?" in prompt

    @pytest.mark.asyncio
    async def test_blank_output_keeps_original(self, completion_client):
        completion_client.complete.return_value = "   "

        assert await QueryPreprocessor(completion_client).rewrite_query("q1") == "q1"

    @pytest.mark.asyncio
    async def test_failure_keeps_original(self, completion_client):
        completion_client.complete.side_effect = CompletionError("model down")

        assert await QueryPreprocessor(completion_client).rewrite_query("q1") == "q1"


class TestGenerateAlternativeQueries:
    """Tests for QueryPreprocessor.generate_alternative_queries."""

    @pytest.mark.asyncio
    async def test_original_first_then_up_to_three(self, completion_client):
        completion_client.complete.return_value = (
            "1. backing up my notes\n"
            "2. saving copies of notes\n"
            "3. archiving the vault\n"
            "4. restoring from snapshots"
        )

        queries = await QueryPreprocessor(completion_client).generate_alternative_queries("backup")

        assert queries == [
            "backup",
            "backing up my notes",
            "saving copies of notes",
            "archiving the vault",
        ]

    @pytest.mark.asyncio
    async def test_duplicates_removed(self, completion_client):
        completion_client.complete.return_value = "laptop backup plan\nlaptop backup plan\nbackup of my laptop"

        queries = await QueryPreprocessor(completion_client).generate_alternative_queries(
            "laptop backup plan"
        )

        assert queries == ["laptop backup plan", "backup of my laptop"]

    @pytest.mark.asyncio
    async def test_failure_returns_original_only(self, completion_client):
        completion_client.complete.side_effect = RuntimeError("boom")

        assert await QueryPreprocessor(completion_client).generate_alternative_queries("q1") == ["q1"]
