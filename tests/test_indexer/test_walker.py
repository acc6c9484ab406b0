"""Tests for the file walker."""

from pathlib import Path

import pytest

from convo_search.indexer.walker import decode_project_name, iter_conversation_files


async def collect(projects_root: Path) -> list:
    return [f async for f in iter_conversation_files(projects_root)]


class TestDecodeProjectName:
    def test_plain_path(self):
        assert decode_project_name("-Users-jane-code-webapp") == "Users/jane/code/webapp"

    def test_numbered_folder_gets_its_space_back(self):
        assert (
            decode_project_name("-Users-jane-work-04-clients-acme")
            == "Users/jane/work/04 clients/acme"
        )

    def test_capitalizes_known_folders(self):
        assert decode_project_name("-Users-jane-clients-acme") == "Users/jane/Clients/acme"

    def test_dropbox_and_domain(self):
        assert (
            decode_project_name("-Users-jane-Dropbox-ai-value-to-site")
            == "Users/jane/Dropbox/ai.value.to/site"
        )

    def test_compound_path_keeps_its_hyphens(self):
        assert (
            decode_project_name("-Users-jane-code-claude-mcp-servers-conversation-search")
            == "Users/jane/code/claude-mcp-servers/conversation-search"
        )

    def test_does_not_capitalize_other_folders(self):
        assert decode_project_name("-Users-jane-projects-api") == "Users/jane/projects/api"

    def test_collapses_repeated_slashes(self):
        assert decode_project_name("-Users--jane") == "Users/jane"

    def test_name_without_users_prefix(self):
        assert decode_project_name("-home-jane-api") == "home/jane/api"


class TestIterConversationFiles:
    @pytest.fixture
    def fixtures_root(self) -> Path:
        return Path(__file__).parent.parent / "fixtures" / "projects"

    @pytest.mark.asyncio
    async def test_discovers_transcripts(self, fixtures_root: Path):
        files = await collect(fixtures_root)
        assert [f.path.name for f in files] == [
            "11111111-1111-4111-8111-111111111111.jsonl",
            "22222222-2222-4222-8222-222222222222.jsonl",
        ]

    @pytest.mark.asyncio
    async def test_skips_other_files(self, fixtures_root: Path):
        files = await collect(fixtures_root)
        assert all(f.path.suffix == ".jsonl" for f in files)
        assert all(f.path.parent != fixtures_root for f in files)

    @pytest.mark.asyncio
    async def test_decodes_project_name(self, fixtures_root: Path):
        files = await collect(fixtures_root)
        assert files[0].project_name == "Users/jane/code/billing/service"
        assert files[1].project_name == "Users/jane/code/webapp"

    @pytest.mark.asyncio
    async def test_missing_root_yields_nothing(self, tmp_path: Path):
        assert await collect(tmp_path / "does-not-exist") == []

    @pytest.mark.asyncio
    async def test_empty_project_dir(self, tmp_path: Path):
        (tmp_path / "-Users-jane-empty").mkdir()
        assert await collect(tmp_path) == []
