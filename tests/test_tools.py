"""Tests for the import MCP tools.

Tools are accessed via ``m.<tool>.fn()``; each test gets a fresh session
backed by an in-memory store.
"""

import json

import pytest

import dnd_archive.main as m
from dnd_archive.review import ImportSession
from dnd_archive.store import InMemoryStore, StaticAuthSession


@pytest.fixture
def session(monkeypatch, wiki_fetcher):
    fetcher, _ = wiki_fetcher()
    fresh = ImportSession(InMemoryStore(), fetcher, StaticAuthSession("user-1"))
    monkeypatch.setattr(m, "session", fresh)
    return fresh


class TestImportTools:

    @pytest.mark.asyncio
    async def test_requires_input(self, session):
        result = await m.start_character_import.fn()
        assert result == "❌ Provide either character_json or character_url."

    @pytest.mark.asyncio
    async def test_review_flow(self, session, sample_export):
        result = await m.start_character_import.fn(character_json=json.dumps(sample_export))
        assert "Step: review" in result
        assert "• Fireball [pending]" in result

        result = await m.start_character_import.fn(character_json="{}")
        assert "already in progress" in result

        for kind, name in [
            ("spells", "Fireball"),
            ("spells", "Mage Hand"),
            ("items", "Wand of Magic Missiles"),
        ]:
            assert m.approve_reference.fn(kind=kind, name=name).startswith("✅ Approved")
        assert m.skip_reference.fn(kind="feats", name="Alert").startswith("⏭️ Skipped")

        result = await m.continue_import.fn()
        assert "Step: character-review" in result

        result = m.set_ability_score_improvement.fn(
            source="Level 4",
            source_type="level",
            increases={"Intelligence": 2},
        )
        assert "`Level 4::level`: Level 4 (level): intelligence +2" in result

        assert "Step: saved" in m.confirm_character_review.fn()

        result = await m.save_imported_character.fn()
        assert "Step: done" in result
        assert "feat: Alert" in result

    def test_unknown_entry(self, session):
        assert "❌" in m.approve_reference.fn(kind="spells", name="Fireball")

    @pytest.mark.asyncio
    async def test_edit_reference(self, session, sample_export):
        await m.start_character_import.fn(character_json=json.dumps(sample_export))

        assert m.edit_reference.fn(kind="spells", name="Fireball", data="[1]") == "❌ Record must be a JSON object."
        assert m.edit_reference.fn(kind="spells", name="Nope", data="{}") == "❌ No spells candidate named 'Nope'."

        result = m.edit_reference.fn(
            kind="spells",
            name="Fireball",
            data=json.dumps({"name": "Fireball", "level": 3, "description": "Boom."}),
        )
        assert result == "✏️ Updated 'Fireball'"

    @pytest.mark.asyncio
    async def test_reset(self, session, sample_export):
        await m.start_character_import.fn(character_json=json.dumps(sample_export))

        assert m.reset_import.fn().startswith("🔄")
        assert m.review_status.fn() == "Step: url-input"
