"""Tests for the import review workflow."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from pydantic import ValidationError

from dnd_archive.asi import AbilityIncrease, AsiGroup
from dnd_archive.auto_import import FailEntry, ReviewBucket, ReviewData, ReviewEntry, ReviewStatus
from dnd_archive.models import ReferenceKind, SourceType, SpellRecord
from dnd_archive.review import (
    CharacterReview,
    Done,
    Error,
    ImportSession,
    Persisting,
    Review,
    Saved,
    TransitionError,
    UrlInput,
    build_import_report,
    edit_candidate,
    set_entry_status,
)
from dnd_archive.importers.dndbeyond.transformer import transform
from dnd_archive.store import InMemoryStore, RestStore, StaticAuthSession


@pytest.fixture
def review_data() -> ReviewData:
    return ReviewData(spells=ReviewBucket(
        candidates=[ReviewEntry(
            name="Shield",
            data=SpellRecord(name="Shield", level=1, description="An invisible barrier."),
            source_url="http://dnd2024.wikidot.com/spell:shield",
        )],
        failed=[FailEntry(name="Lucky Spell", error="Wiki page not found", source_url="x")],
    ))


@pytest.fixture
def session_factory(wiki_fetcher):
    def make(store, user_id: str | None = "user-1") -> ImportSession:
        fetcher, _ = wiki_fetcher()
        return ImportSession(store, fetcher, StaticAuthSession(user_id))
    return make


def approve_everything(session: ImportSession) -> None:
    for kind in ReferenceKind:
        bucket = session.state.review.bucket(kind)
        for entry in [*bucket.candidates, *bucket.failed]:
            session.approve(kind, entry.name)


class TestEntryTransitions:
    """Approve and skip are exclusive decisions."""

    def test_approve(self, review_data):
        updated = set_entry_status(review_data, ReferenceKind.SPELLS, "Shield", ReviewStatus.APPROVED)

        assert updated.spells.candidates[0].approved
        assert review_data.spells.candidates[0].status == ReviewStatus.PENDING

    def test_name_match_is_case_insensitive(self, review_data):
        updated = set_entry_status(review_data, ReferenceKind.SPELLS, "shield", ReviewStatus.SKIPPED)
        assert updated.spells.candidates[0].skipped

    def test_repeat_is_noop(self, review_data):
        once = set_entry_status(review_data, ReferenceKind.SPELLS, "Shield", ReviewStatus.APPROVED)
        twice = set_entry_status(once, ReferenceKind.SPELLS, "Shield", ReviewStatus.APPROVED)
        assert twice == once

    def test_switching_decision_refused(self, review_data):
        approved = set_entry_status(review_data, ReferenceKind.SPELLS, "Shield", ReviewStatus.APPROVED)

        with pytest.raises(TransitionError):
            set_entry_status(approved, ReferenceKind.SPELLS, "Shield", ReviewStatus.SKIPPED)

    def test_failures_can_be_decided(self, review_data):
        updated = set_entry_status(review_data, ReferenceKind.SPELLS, "Lucky Spell", ReviewStatus.SKIPPED)
        assert updated.spells.failed[0].skipped

    def test_unknown_name(self, review_data):
        with pytest.raises(KeyError):
            set_entry_status(review_data, ReferenceKind.FEATS, "Shield", ReviewStatus.APPROVED)

    def test_pending_not_allowed(self, review_data):
        with pytest.raises(ValueError):
            set_entry_status(review_data, ReferenceKind.SPELLS, "Shield", ReviewStatus.PENDING)

    def test_edit_candidate_keeps_status(self, review_data):
        approved = set_entry_status(review_data, ReferenceKind.SPELLS, "Shield", ReviewStatus.APPROVED)

        edited = edit_candidate(
            approved,
            ReferenceKind.SPELLS,
            "Shield",
            {"name": "Shield", "level": 1, "description": "Fixed text.", "school": "Abjuration"},
        )

        entry = edited.spells.candidates[0]
        assert entry.data.school == "Abjuration"
        assert entry.approved

    def test_edit_candidate_validates(self, review_data):
        with pytest.raises(ValidationError):
            edit_candidate(review_data, ReferenceKind.SPELLS, "Shield", {"name": "Shield", "level": 12, "description": "x"})


class TestImportSession:
    """Walk the session through its states."""

    @pytest.mark.asyncio
    async def test_bad_json_moves_to_error(self, session_factory):
        session = session_factory(InMemoryStore())

        state = await session.start("{nope")

        assert isinstance(state, Error)
        assert state.character is None
        assert session.status.startswith("❌ Import failed: Invalid JSON")

    @pytest.mark.asyncio
    async def test_full_flow(self, session_factory, sample_export):
        store = InMemoryStore()
        session = session_factory(store)

        state = await session.start(json.dumps(sample_export))
        assert isinstance(state, Review)
        assert session.status.startswith("⚠️ Review reference data")
        assert not session.review_ready

        with pytest.raises(TransitionError):
            await session.continue_import()

        approve_everything(session)
        assert session.review_ready

        state = await session.continue_import()
        assert isinstance(state, CharacterReview)
        assert state.commit_results[ReferenceKind.SPELLS].inserted == ["Fireball", "Mage Hand"]

        state = session.confirm_character_review()
        assert isinstance(state, Saved)

        state = await session.save()
        assert isinstance(state, Done)
        assert state.report.complete
        assert state.report.unresolved == []
        assert session.status == '✅ Character "Elira Quill" saved successfully!'
        assert store.rows("characters")[0]["user_id"] == "user-1"

    @pytest.mark.asyncio
    async def test_nothing_to_review_goes_straight_to_saved(self, session_factory, sample_export, library_store):
        session = session_factory(library_store)

        state = await session.start_export(sample_export)

        assert isinstance(state, Saved)
        assert session.status.startswith("✅ No reference data to review")

    @pytest.mark.asyncio
    async def test_skipped_references_are_unresolved_at_save(self, session_factory, sample_export):
        session = session_factory(InMemoryStore())
        await session.start_export(sample_export)
        for kind in ReferenceKind:
            for entry in session.state.review.bucket(kind).candidates:
                session.skip(kind, entry.name)

        await session.continue_import()
        session.confirm_character_review()
        state = await session.save()

        assert isinstance(state, Done)
        assert len(state.report.unresolved) == 4

    def test_review_actions_outside_review_refused(self, session_factory):
        session = session_factory(InMemoryStore())

        with pytest.raises(TransitionError) as exc_info:
            session.approve(ReferenceKind.SPELLS, "Fireball")

        assert "url-input" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_asi_management_before_save(self, session_factory, sample_export, library_store):
        session = session_factory(library_store)
        await session.start_export(sample_export)

        groups = session.add_asi_group(AsiGroup(
            source="Level 4",
            source_type=SourceType.LEVEL,
            increases=[AbilityIncrease(ability="intelligence", amount=2)],
        ))
        assert [g.key for g in groups] == ["Sage::background", "Level 4::level"]

        groups = session.remove_asi_group("Sage::background")
        assert [g.key for g in groups] == ["Level 4::level"]

        await session.save()
        row = library_store.rows("characters")[0]
        assert row["ability_score_improvements"] == [
            {"ability": "intelligence", "amount": 2, "source": "Level 4", "sourceType": "level"},
        ]

    @pytest.mark.asyncio
    async def test_not_signed_in_keeps_character_for_retry(self, session_factory, sample_export, library_store):
        session = session_factory(library_store, user_id=None)
        await session.start_export(sample_export)

        state = await session.save()
        assert isinstance(state, Error)
        assert state.character is not None
        assert not state.resumable
        assert "Not authenticated" in state.message

        session.auth = StaticAuthSession("user-2")
        state = await session.save()
        assert isinstance(state, Done)

    @pytest.mark.asyncio
    async def test_partial_save_then_resume(self, session_factory, sample_export, library_store):
        library_store.fail_tables = {"character_features"}
        session = session_factory(library_store)
        await session.start_export(sample_export)

        state = await session.save()
        assert isinstance(state, Error)
        assert state.resumable
        assert "features" in state.message

        library_store.fail_tables = set()
        state = await session.resume()

        assert isinstance(state, Done)
        assert len(library_store.rows("characters")) == 1
        assert len(library_store.rows("character_skills")) == 3

    @pytest.mark.asyncio
    async def test_resume_requires_partial_save(self, session_factory):
        session = session_factory(InMemoryStore())
        await session.start("")

        with pytest.raises(TransitionError):
            await session.resume()

    @pytest.mark.asyncio
    async def test_reset(self, session_factory, sample_export, library_store):
        session = session_factory(library_store)
        await session.start_export(sample_export)

        assert isinstance(session.reset(), UrlInput)
        assert session.character is None

    def test_reset_refused_while_in_flight(self, session_factory, sample_export):
        session = session_factory(InMemoryStore())
        session.state = Persisting(character=transform(sample_export))

        with pytest.raises(TransitionError):
            session.reset()


class TestUnexpectedFailures:
    """Any failure during an I/O step lands in error, which reset leaves."""

    @pytest.mark.asyncio
    async def test_store_returning_html_while_preparing(self, session_factory, sample_export):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
        store = RestStore("https://project.example.co", "k", client=httpx.AsyncClient(transport=transport))
        session = session_factory(store)

        state = await session.start_export(sample_export)

        assert isinstance(state, Error)
        assert "non-JSON response" in state.message
        assert state.character is None
        assert isinstance(session.reset(), UrlInput)

    @pytest.mark.asyncio
    async def test_crash_while_preparing(self, session_factory, sample_export):
        session = session_factory(InMemoryStore())

        with patch("dnd_archive.review.prepare_imports", new=AsyncMock(side_effect=RuntimeError("boom"))):
            state = await session.start_export(sample_export)

        assert isinstance(state, Error)
        assert state.message == "Import failed: boom"
        assert isinstance(session.reset(), UrlInput)

    @pytest.mark.asyncio
    async def test_crash_while_committing_references(self, session_factory, sample_export):
        session = session_factory(InMemoryStore())
        await session.start_export(sample_export)
        approve_everything(session)

        with patch("dnd_archive.review.commit_approved", new=AsyncMock(side_effect=RuntimeError("boom"))):
            state = await session.continue_import()

        assert isinstance(state, Error)
        assert state.message == "Reference import failed: boom"
        assert isinstance(session.reset(), UrlInput)

    @pytest.mark.asyncio
    async def test_crash_while_persisting(self, session_factory, sample_export, library_store):
        session = session_factory(library_store)
        await session.start_export(sample_export)

        with patch("dnd_archive.review.save_character", new=AsyncMock(side_effect=RuntimeError("boom"))):
            state = await session.save()

        assert isinstance(state, Error)
        assert state.message == "Save failed: boom"
        assert not state.resumable

        state = await session.save()
        assert isinstance(state, Done)

    @pytest.mark.asyncio
    async def test_crash_while_resuming_keeps_report(self, session_factory, sample_export, library_store):
        library_store.fail_tables = {"character_features"}
        session = session_factory(library_store)
        await session.start_export(sample_export)
        await session.save()
        library_store.fail_tables = set()

        with patch("dnd_archive.review.resume_save", new=AsyncMock(side_effect=RuntimeError("boom"))):
            state = await session.resume()

        assert isinstance(state, Error)
        assert state.message == "Resume failed: boom"
        assert state.resumable

        state = await session.resume()
        assert isinstance(state, Done)
        assert len(library_store.rows("characters")) == 1
        assert isinstance(session.reset(), UrlInput)

class TestImportReport:

    def test_build_import_report(self, sample_export):
        report = build_import_report(transform(sample_export))

        assert report.character_name == "Elira Quill"
        assert report.classes == "Wizard 5"
        assert report.counts["spells"] == 2
        assert report.ability_score_improvements == ["Sage (background): wisdom +1"]
        assert report.status == "success"

    def test_format_includes_warnings(self):
        report = build_import_report(transform({"name": "Blank"}))
        text = report.format()

        assert "D&D Beyond Import Preview - Blank" in text
        assert "SUCCESS WITH WARNINGS" in text
        assert "Warnings (" in text
