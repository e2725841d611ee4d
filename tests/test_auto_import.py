"""Tests for reference resolution, review staging and auto-import."""

from unittest.mock import AsyncMock, patch

import pytest

from dnd_archive.auto_import import (
    FailEntry,
    ReviewBucket,
    ReviewData,
    ReviewEntry,
    ReviewStatus,
    auto_import_references,
    commit_approved,
    existing_names,
    extract_reference_names,
    prepare_imports,
    scrape_reference,
)
from dnd_archive.importers.dndbeyond.transformer import transform
from dnd_archive.models import ReferenceKind, SpellRecord
from dnd_archive.store import InMemoryStore, StoreResult


def spell_entry(name: str, level: int = 1, status: ReviewStatus = ReviewStatus.PENDING) -> ReviewEntry:
    return ReviewEntry(
        name=name,
        data=SpellRecord(name=name, level=level, description=f"{name} text"),
        source_url=f"http://dnd2024.wikidot.com/spell:{name.lower()}",
        status=status,
    )


class TestReferenceNames:

    def test_sample_character(self, sample_export):
        names = extract_reference_names(transform(sample_export))

        assert names[ReferenceKind.SPELLS] == ["Fireball", "Mage Hand"]
        assert names[ReferenceKind.ITEMS] == ["Wand of Magic Missiles"]
        assert names[ReferenceKind.FEATS] == ["Alert"]

    @pytest.mark.asyncio
    async def test_existing_names(self):
        store = InMemoryStore({"spells": [{"id": "1", "name": "Fireball"}]})
        found = await existing_names(store, ReferenceKind.SPELLS, ["Fireball", "Shield"])
        assert found == {"Fireball"}

    @pytest.mark.asyncio
    async def test_existing_names_skips_empty_lookup(self, store):
        with patch.object(store, "execute", new=AsyncMock()) as execute:
            assert await existing_names(store, ReferenceKind.FEATS, []) == set()
        execute.assert_not_called()


class TestScrapeReference:

    @pytest.mark.asyncio
    async def test_parsed_entry(self, wiki_fetcher):
        fetcher, _ = wiki_fetcher()

        entry = await scrape_reference(fetcher, ReferenceKind.SPELLS, "Fireball")

        assert isinstance(entry, ReviewEntry)
        assert entry.data.level == 3
        assert entry.source_url == "http://dnd2024.wikidot.com/spell:fireball"
        assert entry.status == ReviewStatus.PENDING

    @pytest.mark.asyncio
    async def test_fetch_failure_lists_both_domains(self, wiki_fetcher):
        fetcher, _ = wiki_fetcher({})

        entry = await scrape_reference(fetcher, ReferenceKind.FEATS, "Lucky")

        assert isinstance(entry, FailEntry)
        assert entry.source_url == "http://dnd2024.wikidot.com/feat:lucky → http://dnd5e.wikidot.com/feat:lucky"

    @pytest.mark.asyncio
    async def test_parse_failure(self, wiki_fetcher):
        broken = '<div class="page-title">Broken</div><div id="page-content"><p>Level 12 Evocation</p><p>x</p></div>'
        fetcher, _ = wiki_fetcher({"http://dnd2024.wikidot.com/spell:broken": broken})

        entry = await scrape_reference(fetcher, ReferenceKind.SPELLS, "Broken")

        assert isinstance(entry, FailEntry)
        assert entry.source_url == "http://dnd2024.wikidot.com/spell:broken"


class TestPrepareImports:
    """Staging every missing reference for review."""

    @pytest.mark.asyncio
    async def test_stages_missing_references(self, sample_export, wiki_fetcher):
        store = InMemoryStore({"spells": [{"id": "1", "name": "Mage Hand", "level": 0}]})
        fetcher, requested = wiki_fetcher()

        review = await prepare_imports(store, fetcher, transform(sample_export))

        assert review.spells.existing == ["Mage Hand"]
        assert [c.name for c in review.spells.candidates] == ["Fireball"]
        assert [c.name for c in review.items.candidates] == ["Wand of Magic Missiles"]
        assert [c.name for c in review.feats.candidates] == ["Alert"]
        assert "http://dnd2024.wikidot.com/spell:mage-hand" not in requested
        assert review.needs_review
        assert not review.ready

    @pytest.mark.asyncio
    async def test_nothing_missing(self, sample_export, wiki_fetcher):
        store = InMemoryStore({
            "spells": [{"name": "Fireball"}, {"name": "Mage Hand"}],
            "magic_items": [{"name": "Wand of Magic Missiles"}],
            "feats": [{"name": "Alert"}],
        })
        fetcher, requested = wiki_fetcher()

        review = await prepare_imports(store, fetcher, transform(sample_export))

        assert requested == []
        assert not review.needs_review
        assert review.ready

    @pytest.mark.asyncio
    async def test_pauses_between_fetches_of_one_kind(self, sample_export, wiki_fetcher, fast_config):
        fast_config.fetch_delay = 2.0
        fetcher, _ = wiki_fetcher()

        with patch("dnd_archive.auto_import.asyncio.sleep", new=AsyncMock()) as sleep:
            await prepare_imports(InMemoryStore(), fetcher, transform(sample_export))

        # two spells to fetch, one item, one feat: one pause
        sleep.assert_awaited_once_with(2.0)


class TestReviewReadiness:

    def test_ready_requires_every_entry_resolved(self):
        review = ReviewData(spells=ReviewBucket(candidates=[
            spell_entry("Shield", status=ReviewStatus.APPROVED),
            spell_entry("Light"),
        ]))
        assert not review.ready

        review.spells.candidates[1].status = ReviewStatus.SKIPPED
        assert review.ready

    def test_failures_need_a_decision_too(self):
        review = ReviewData(feats=ReviewBucket(failed=[FailEntry(name="Lucky", error="404", source_url="x")]))
        assert not review.ready

        review.feats.failed[0].status = ReviewStatus.APPROVED
        assert review.ready

    def test_approved_candidates(self):
        review = ReviewData(spells=ReviewBucket(candidates=[
            spell_entry("Shield", status=ReviewStatus.APPROVED),
            spell_entry("Light", status=ReviewStatus.SKIPPED),
        ]))
        approved = review.approved_candidates()

        assert [e.name for e in approved[ReferenceKind.SPELLS]] == ["Shield"]
        assert approved[ReferenceKind.FEATS] == []


class TestCommitApproved:

    @pytest.mark.asyncio
    async def test_writes_approved(self, store):
        results = await commit_approved(store, {ReferenceKind.SPELLS: [spell_entry("Shield")]})

        assert results[ReferenceKind.SPELLS].inserted == ["Shield"]
        assert store.rows("spells")[0]["name"] == "Shield"

    @pytest.mark.asyncio
    async def test_committing_twice_keeps_one_row(self, store):
        await commit_approved(store, {ReferenceKind.SPELLS: [spell_entry("Shield", level=1)]})
        await commit_approved(store, {ReferenceKind.SPELLS: [spell_entry("Shield", level=2)]})

        rows = store.rows("spells")
        assert len(rows) == 1
        assert rows[0]["level"] == 2

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_the_rest(self, store):
        real_execute = store.execute
        calls = []

        async def flaky(query):
            calls.append(query.rows[0]["name"])
            if query.rows[0]["name"] == "Bad":
                return StoreResult(error="permission denied")
            return await real_execute(query)

        with patch.object(store, "execute", new=flaky):
            results = await commit_approved(store, {ReferenceKind.SPELLS: [spell_entry("Bad"), spell_entry("Good")]})

        assert calls == ["Bad", "Good"]
        assert results[ReferenceKind.SPELLS].inserted == ["Good"]
        assert results[ReferenceKind.SPELLS].failed == [{"name": "Bad", "error": "permission denied"}]


class TestAutoImport:

    @pytest.mark.asyncio
    async def test_imports_everything_missing(self, sample_export, wiki_fetcher, store):
        fetcher, _ = wiki_fetcher()

        results = await auto_import_references(store, fetcher, transform(sample_export))

        assert results[ReferenceKind.SPELLS].imported == ["Fireball", "Mage Hand"]
        assert results[ReferenceKind.ITEMS].imported == ["Wand of Magic Missiles"]
        assert results[ReferenceKind.FEATS].imported == ["Alert"]
        assert {row["name"] for row in store.rows("magic_items")} == {"Wand of Magic Missiles"}

    @pytest.mark.asyncio
    async def test_fetch_failures_reported(self, sample_export, wiki_fetcher, store):
        pages = {"http://dnd2024.wikidot.com/spell:fireball": "<p>The page does not (yet) exist.</p>"}
        fetcher, _ = wiki_fetcher(pages)

        results = await auto_import_references(store, fetcher, transform(sample_export))

        failed = [f["name"] for f in results[ReferenceKind.SPELLS].failed]
        assert failed == ["Fireball", "Mage Hand"]
        assert store.rows("spells") == []
