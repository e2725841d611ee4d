"""
Reference resolution and auto-import.

Works out which spells, magic items and feats a transformed character
mentions that the reference library does not have yet, scrapes each one
from the wiki, and either stages the results for review (``prepare_imports``
then ``commit_approved``) or writes them straight away
(``auto_import_references``).

The three reference kinds are processed concurrently. Within one kind,
names are fetched strictly one after another with a fixed pause between
fetches to stay under the wiki's rate limit.
"""

import asyncio
import logging
from enum import Enum

from pydantic import BaseModel, Field, ValidationError

from .models import (
    FeatRecord,
    MagicItemRecord,
    ReferenceKind,
    SpellRecord,
    TransformedCharacter,
    record_to_row,
)
from .store.base import RecordStore
from .wiki.fetcher import FetchFailure, WikiFetcher
from .wiki.parsers import ParseError, parse_reference_html

logger = logging.getLogger("dnd-archive")


class ReviewStatus(str, Enum):
    """Operator decision on a staged entry."""
    PENDING = "pending"
    APPROVED = "approved"
    SKIPPED = "skipped"


class ReviewEntry(BaseModel):
    """A parsed reference entity waiting for approval."""
    name: str
    data: SpellRecord | MagicItemRecord | FeatRecord
    source_url: str = Field(description="Wiki URL(s) the entity was parsed from")
    status: ReviewStatus = ReviewStatus.PENDING

    @property
    def approved(self) -> bool:
        return self.status == ReviewStatus.APPROVED

    @property
    def skipped(self) -> bool:
        return self.status == ReviewStatus.SKIPPED


class FailEntry(BaseModel):
    """A name that could not be fetched or parsed.

    Approving a failure means the operator has resolved it by hand.
    """
    name: str
    error: str
    source_url: str
    status: ReviewStatus = ReviewStatus.PENDING

    @property
    def approved(self) -> bool:
        return self.status == ReviewStatus.APPROVED

    @property
    def skipped(self) -> bool:
        return self.status == ReviewStatus.SKIPPED


class ReviewBucket(BaseModel):
    """Staging area for one reference kind."""
    candidates: list[ReviewEntry] = Field(default_factory=list)
    existing: list[str] = Field(default_factory=list, description="Names already in the library")
    failed: list[FailEntry] = Field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return all(
            entry.status != ReviewStatus.PENDING
            for entry in [*self.candidates, *self.failed]
        )


class ReviewData(BaseModel):
    """Staging areas for all three reference kinds."""
    spells: ReviewBucket = Field(default_factory=ReviewBucket)
    items: ReviewBucket = Field(default_factory=ReviewBucket)
    feats: ReviewBucket = Field(default_factory=ReviewBucket)

    def bucket(self, kind: ReferenceKind) -> ReviewBucket:
        return getattr(self, ReferenceKind(kind).value)

    @property
    def ready(self) -> bool:
        """True when every candidate and failure is approved or skipped."""
        return all(self.bucket(kind).resolved for kind in ReferenceKind)

    @property
    def needs_review(self) -> bool:
        """True when there is anything at all to decide on."""
        return any(
            self.bucket(kind).candidates or self.bucket(kind).failed
            for kind in ReferenceKind
        )

    def approved_candidates(self) -> dict[ReferenceKind, list[ReviewEntry]]:
        return {
            kind: [entry for entry in self.bucket(kind).candidates if entry.approved]
            for kind in ReferenceKind
        }


class CommitResult(BaseModel):
    """Outcome of writing one kind's approved candidates."""
    inserted: list[str] = Field(default_factory=list)
    failed: list[dict[str, str]] = Field(default_factory=list)


class AutoImportResult(BaseModel):
    """Outcome of the direct auto-import for one kind."""
    imported: list[str] = Field(default_factory=list)
    failed: list[dict[str, str]] = Field(default_factory=list)


def _distinct(names) -> list[str]:
    return list(dict.fromkeys(name for name in names if name))


def extract_reference_names(transformed: TransformedCharacter) -> dict[ReferenceKind, list[str]]:
    """Distinct spell, magic item and feat names mentioned by a character."""
    return {
        ReferenceKind.SPELLS: _distinct(spell.name for spell in transformed.spells),
        ReferenceKind.ITEMS: _distinct(item.name for item in transformed.inventory if item.is_magic_item),
        ReferenceKind.FEATS: _distinct(feat.name for feat in transformed.feats),
    }


async def existing_names(store: RecordStore, kind: ReferenceKind, names: list[str]) -> set[str]:
    """Which of ``names`` are already in the library.

    Raises:
        StoreError: If the lookup fails.
    """
    if not names:
        return set()
    result = await store.table(kind.table).select("name").in_("name", names).execute()
    result.raise_for_error(kind.table)
    return {row["name"] for row in result.rows}


async def scrape_reference(
    fetcher: WikiFetcher,
    kind: ReferenceKind,
    name: str,
) -> ReviewEntry | FailEntry:
    """Fetch and parse one entity. Never raises for fetch or parse problems."""
    fallback_url = fetcher.url_for(kind.wiki_kind, name)
    try:
        page = await fetcher.fetch(fallback_url)
    except FetchFailure as e:
        logger.warning(f"❌ Could not fetch {kind.wiki_kind} {name!r}: {e}")
        return FailEntry(name=name, error=str(e), source_url=e.source_url or fallback_url)

    try:
        record = parse_reference_html(kind, page.html)
    except (ParseError, ValidationError) as e:
        logger.warning(f"❌ Could not parse {kind.wiki_kind} {name!r}: {e}")
        return FailEntry(name=name, error=str(e), source_url=page.source_url)

    logger.info(f"✅ Parsed {kind.wiki_kind} {name!r} from {page.source_url}")
    return ReviewEntry(name=record.name or name, data=record, source_url=page.source_url)


async def _scrape_sequentially(fetcher: WikiFetcher, kind: ReferenceKind, names: list[str]):
    """Yield one scrape outcome per name, pausing between fetches."""
    for index, name in enumerate(names):
        if index:
            await asyncio.sleep(fetcher.config.fetch_delay)
        yield name, await scrape_reference(fetcher, kind, name)


async def prepare_kind(
    store: RecordStore,
    fetcher: WikiFetcher,
    kind: ReferenceKind,
    names: list[str],
) -> ReviewBucket:
    """Build the review bucket for one kind."""
    if not names:
        return ReviewBucket()

    existing = await existing_names(store, kind, names)
    missing = [name for name in names if name not in existing]
    logger.info(f"{kind.value}: {len(existing)} already in library, {len(missing)} to fetch")

    bucket = ReviewBucket(existing=[name for name in names if name in existing])
    async for _, outcome in _scrape_sequentially(fetcher, kind, missing):
        if isinstance(outcome, ReviewEntry):
            bucket.candidates.append(outcome)
        else:
            bucket.failed.append(outcome)
    return bucket


async def prepare_imports(
    store: RecordStore,
    fetcher: WikiFetcher,
    transformed: TransformedCharacter,
) -> ReviewData:
    """Stage every missing reference of ``transformed`` for review.

    Raises:
        StoreError: If the library lookup for any kind fails.
    """
    names = extract_reference_names(transformed)
    spells, items, feats = await asyncio.gather(
        prepare_kind(store, fetcher, ReferenceKind.SPELLS, names[ReferenceKind.SPELLS]),
        prepare_kind(store, fetcher, ReferenceKind.ITEMS, names[ReferenceKind.ITEMS]),
        prepare_kind(store, fetcher, ReferenceKind.FEATS, names[ReferenceKind.FEATS]),
    )
    return ReviewData(spells=spells, items=items, feats=feats)


async def upsert_reference(store: RecordStore, kind: ReferenceKind, record: BaseModel) -> str | None:
    """Upsert one record keyed on ``name``. Returns the error message, if any."""
    result = await store.table(kind.table).upsert(record_to_row(record), on_conflict="name").execute()
    return result.error


async def commit_approved(
    store: RecordStore,
    approved: dict[ReferenceKind, list[ReviewEntry]],
) -> dict[ReferenceKind, CommitResult]:
    """Write approved candidates to the library, continuing past failures."""
    results: dict[ReferenceKind, CommitResult] = {}
    for kind in ReferenceKind:
        result = CommitResult()
        for entry in approved.get(kind, []):
            error = await upsert_reference(store, kind, entry.data)
            if error:
                logger.error(f"❌ Failed to save {kind.wiki_kind} {entry.name!r}: {error}")
                result.failed.append({"name": entry.name, "error": error})
            else:
                logger.info(f"✅ Saved {kind.wiki_kind} {entry.name!r}")
                result.inserted.append(entry.name)
        results[kind] = result
    return results


async def auto_import_kind(
    store: RecordStore,
    fetcher: WikiFetcher,
    kind: ReferenceKind,
    names: list[str],
) -> AutoImportResult:
    """Fetch, parse and upsert every missing name of one kind without review."""
    result = AutoImportResult()
    if not names:
        return result

    existing = await existing_names(store, kind, names)
    missing = [name for name in names if name not in existing]

    async for name, outcome in _scrape_sequentially(fetcher, kind, missing):
        if isinstance(outcome, FailEntry):
            result.failed.append({"name": name, "error": outcome.error})
            continue
        error = await upsert_reference(store, kind, outcome.data)
        if error:
            logger.error(f"❌ Failed to save {kind.wiki_kind} {name!r}: {error}")
            result.failed.append({"name": name, "error": error})
        else:
            logger.info(f"✅ Imported {kind.wiki_kind} {name!r}")
            result.imported.append(name)
    return result


async def auto_import_references(
    store: RecordStore,
    fetcher: WikiFetcher,
    transformed: TransformedCharacter,
) -> dict[ReferenceKind, AutoImportResult]:
    """Import every missing reference of ``transformed`` straight into the library."""
    names = extract_reference_names(transformed)
    kinds = list(ReferenceKind)
    results = await asyncio.gather(
        *(auto_import_kind(store, fetcher, kind, names[kind]) for kind in kinds)
    )
    for kind, result in zip(kinds, results):
        logger.info(f"{kind.value}: {len(result.imported)} imported, {len(result.failed)} failed")
    return dict(zip(kinds, results))
