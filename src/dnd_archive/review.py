"""
Import review workflow.

An import moves through an explicit sequence of states::

    url-input -> preparing -> review -> committing-references
              -> character-review -> saved -> persisting -> done

``preparing`` goes straight to ``saved`` when there is nothing to review,
and any step that does I/O can end in ``error``. ``reset`` returns to
``url-input`` from any state that is not in flight.

Each state is its own model carrying exactly the data valid in it, so a
review bucket cannot exist outside ``review`` and a saved character id
only exists on ``done`` or a resumable ``error``. ``ImportSession`` holds
the current state and exposes the operator actions; each action checks it
is allowed in the current state and raises ``TransitionError`` otherwise.
"""

import logging
from typing import Literal, Union

from pydantic import BaseModel, Field

from . import asi
from .auto_import import (
    CommitResult,
    FailEntry,
    ReviewBucket,
    ReviewData,
    ReviewEntry,
    ReviewStatus,
    commit_approved,
    prepare_imports,
)
from .importers.base import CharacterImportError, ImportReport
from .importers.dndbeyond.fetcher import parse_character_json
from .importers.dndbeyond.transformer import transform
from .models import RECORD_TYPES, ReferenceKind, TransformedCharacter
from .persistence import SaveError, SaveReport, resolve_user_id, resume_save, save_character
from .store.base import AuthError, AuthSession, RecordStore, StoreError
from .wiki.fetcher import WikiFetcher

logger = logging.getLogger("dnd-archive")


class TransitionError(Exception):
    """Raised when an action is not allowed in the current import state."""
    pass


# ---------------------------------------------------------------------------
# Pure review-bucket transitions
# ---------------------------------------------------------------------------

def _find(entries: list, name: str) -> int:
    wanted = name.strip().lower()
    for index, entry in enumerate(entries):
        if entry.name.lower() == wanted:
            return index
    raise KeyError(name)


def _locate(bucket: ReviewBucket, name: str) -> tuple[str, int]:
    """Which list of ``bucket`` holds ``name``, and where."""
    for list_name in ("candidates", "failed"):
        try:
            return list_name, _find(getattr(bucket, list_name), name)
        except KeyError:
            continue
    raise KeyError(name)


def _replace_entry(
    review: ReviewData,
    kind: ReferenceKind,
    list_name: str,
    index: int,
    entry: ReviewEntry | FailEntry,
) -> ReviewData:
    bucket = review.bucket(kind)
    entries = list(getattr(bucket, list_name))
    entries[index] = entry
    new_bucket = bucket.model_copy(update={list_name: entries})
    return review.model_copy(update={ReferenceKind(kind).value: new_bucket})


def set_entry_status(
    review: ReviewData,
    kind: ReferenceKind,
    name: str,
    status: ReviewStatus,
) -> ReviewData:
    """Approve or skip one candidate or failure.

    Approved and skipped are exclusive: repeating the same decision is a
    no-op, switching an entry from one to the other is refused.

    Raises:
        KeyError: If no candidate or failure has ``name``.
        TransitionError: If the entry already has the opposite decision.
    """
    if status == ReviewStatus.PENDING:
        raise ValueError("Entries cannot be reset to pending")

    list_name, index = _locate(review.bucket(kind), name)
    entry = getattr(review.bucket(kind), list_name)[index]
    if entry.status == status:
        return review
    if entry.status != ReviewStatus.PENDING:
        raise TransitionError(f"{entry.name!r} is already {entry.status.value}")

    return _replace_entry(review, kind, list_name, index, entry.model_copy(update={"status": status}))


def edit_candidate(
    review: ReviewData,
    kind: ReferenceKind,
    name: str,
    data: dict,
) -> ReviewData:
    """Replace a candidate's parsed data. The entry keeps its review status.

    Raises:
        KeyError: If no candidate has ``name``.
        ValidationError: If ``data`` is not a valid record for ``kind``.
    """
    bucket = review.bucket(kind)
    index = _find(bucket.candidates, name)
    record = RECORD_TYPES[ReferenceKind(kind)].model_validate(data)
    entry = bucket.candidates[index].model_copy(update={"data": record, "name": record.name})
    return _replace_entry(review, kind, "candidates", index, entry)


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

class UrlInput(BaseModel):
    step: Literal["url-input"] = "url-input"


class Preparing(BaseModel):
    step: Literal["preparing"] = "preparing"
    character: TransformedCharacter


class Review(BaseModel):
    step: Literal["review"] = "review"
    character: TransformedCharacter
    review: ReviewData


class CommittingReferences(BaseModel):
    step: Literal["committing-references"] = "committing-references"
    character: TransformedCharacter
    review: ReviewData


class CharacterReview(BaseModel):
    step: Literal["character-review"] = "character-review"
    character: TransformedCharacter
    commit_results: dict[ReferenceKind, CommitResult] = Field(default_factory=dict)


class Saved(BaseModel):
    """Character ready to be written."""
    step: Literal["saved"] = "saved"
    character: TransformedCharacter


class Persisting(BaseModel):
    step: Literal["persisting"] = "persisting"
    character: TransformedCharacter


class Done(BaseModel):
    step: Literal["done"] = "done"
    report: SaveReport


class Error(BaseModel):
    """A failed step. Keeps the character when a retry or resume is possible."""
    step: Literal["error"] = "error"
    message: str
    character: TransformedCharacter | None = None
    report: SaveReport | None = None

    @property
    def resumable(self) -> bool:
        return self.character is not None and self.report is not None


ImportState = Union[
    UrlInput, Preparing, Review, CommittingReferences, CharacterReview, Saved, Persisting, Done, Error
]

IN_FLIGHT = (Preparing, CommittingReferences, Persisting)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class ImportSession:
    """One operator's import, from pasted JSON to saved character.

    Args:
        store: Reference library and character tables.
        fetcher: Wiki fetcher used to scrape missing references.
        auth: Source of the owning user id at save time.
    """

    def __init__(self, store: RecordStore, fetcher: WikiFetcher, auth: AuthSession):
        self.store = store
        self.fetcher = fetcher
        self.auth = auth
        self.state: ImportState = UrlInput()
        self.status: str = ""

    # -- helpers ----------------------------------------------------------

    def _require(self, *allowed: type) -> None:
        if not isinstance(self.state, allowed):
            names = ", ".join(cls.model_fields["step"].default for cls in allowed)
            raise TransitionError(
                f"Cannot do that while in '{self.state.step}' (allowed in: {names})"
            )

    def _fail(self, message: str, **kwargs) -> Error:
        logger.error(message)
        self.state = Error(message=message, **kwargs)
        self.status = f"❌ {message}"
        return self.state

    @property
    def character(self) -> TransformedCharacter | None:
        return getattr(self.state, "character", None)

    @property
    def review_ready(self) -> bool:
        return isinstance(self.state, Review) and self.state.review.ready

    # -- url-input -> preparing -> review | saved --------------------------

    async def start(self, json_text: str) -> ImportState:
        """Parse and transform pasted export JSON, then stage missing references."""
        self._require(UrlInput)

        try:
            export = parse_character_json(json_text)
        except CharacterImportError as e:
            return self._fail(f"Import failed: {e}")

        return await self.start_export(export)

    async def start_export(self, export: dict) -> ImportState:
        """Transform an already parsed export, then stage missing references."""
        self._require(UrlInput)

        character = transform(export)
        self.state = Preparing(character=character)
        self.status = f"Fetching reference data for {character.character.name}..."

        try:
            review = await prepare_imports(self.store, self.fetcher, character)
        except StoreError as e:
            return self._fail(f"Import failed: {e}")
        except Exception as e:
            logger.exception("Unexpected error while preparing references")
            return self._fail(f"Import failed: {e}")

        if not review.needs_review:
            self.state = Saved(character=character)
            self.status = "✅ No reference data to review. Ready to save character."
        else:
            self.state = Review(character=character, review=review)
            self.status = "⚠️ Review reference data before importing."
        if character.warnings:
            self.status += f" ({len(character.warnings)} transformation warnings)"
        return self.state

    # -- review ------------------------------------------------------------

    def approve(self, kind: ReferenceKind, name: str) -> ReviewData:
        self._require(Review)
        return self._update_review(set_entry_status(self.state.review, kind, name, ReviewStatus.APPROVED))

    def skip(self, kind: ReferenceKind, name: str) -> ReviewData:
        self._require(Review)
        return self._update_review(set_entry_status(self.state.review, kind, name, ReviewStatus.SKIPPED))

    def edit(self, kind: ReferenceKind, name: str, data: dict) -> ReviewData:
        """Replace a candidate's data.

        Raises:
            KeyError: If no candidate has ``name``.
            ValidationError: If ``data`` is not a valid record.
        """
        self._require(Review)
        return self._update_review(edit_candidate(self.state.review, kind, name, data))

    def _update_review(self, review: ReviewData) -> ReviewData:
        self.state = self.state.model_copy(update={"review": review})
        return review

    async def continue_import(self) -> ImportState:
        """Write approved candidates and move on to the character review."""
        self._require(Review)
        if not self.state.review.ready:
            raise TransitionError("Approve or skip every candidate and failure before continuing")

        character, review = self.state.character, self.state.review
        self.state = CommittingReferences(character=character, review=review)

        try:
            results = await commit_approved(self.store, review.approved_candidates())
        except StoreError as e:
            return self._fail(f"Reference import failed: {e}", character=character)
        except Exception as e:
            logger.exception("Unexpected error while importing references")
            return self._fail(f"Reference import failed: {e}", character=character)

        self.state = CharacterReview(character=character, commit_results=results)
        failed = sum(len(r.failed) for r in results.values())
        if failed:
            self.status = f"⚠️ Reference data imported with {failed} failures. Review character details."
        else:
            self.status = "✅ Reference data imported. Review character details."
        return self.state

    # -- character-review / saved: ASI management --------------------------

    def asi_groups(self) -> list[asi.AsiGroup]:
        self._require(CharacterReview, Saved)
        return asi.group_improvements(self.state.character.ability_score_improvements)

    def add_asi_group(self, group: asi.AsiGroup) -> list[asi.AsiGroup]:
        self._require(CharacterReview, Saved)
        return self._update_character(asi.add_group(self.state.character, group))

    def edit_asi_group(self, key: str, group: asi.AsiGroup) -> list[asi.AsiGroup]:
        self._require(CharacterReview, Saved)
        return self._update_character(asi.edit_group(self.state.character, key, group))

    def remove_asi_group(self, key: str) -> list[asi.AsiGroup]:
        self._require(CharacterReview, Saved)
        return self._update_character(asi.remove_group(self.state.character, key))

    def _update_character(self, character: TransformedCharacter) -> list[asi.AsiGroup]:
        self.state = self.state.model_copy(update={"character": character})
        return asi.group_improvements(character.ability_score_improvements)

    def confirm_character_review(self) -> ImportState:
        self._require(CharacterReview)
        self.state = Saved(character=self.state.character)
        self.status = "Character ready to save."
        return self.state

    # -- saved -> persisting -> done | error -------------------------------

    async def save(self, *, best_effort: bool = False) -> ImportState:
        """Write the character and its child records.

        Allowed from ``saved``, and from an ``error`` that still holds the
        character but no saved row (e.g. the user was not signed in).
        """
        if isinstance(self.state, Error) and self.state.character is not None and self.state.report is None:
            character = self.state.character
        else:
            self._require(Saved)
            character = self.state.character

        self.state = Persisting(character=character)
        try:
            user_id = await resolve_user_id(self.auth)
            report = await save_character(self.store, character, user_id, best_effort=best_effort)
        except (AuthError, SaveError) as e:
            return self._fail(f"Save failed: {e}", character=character)
        except Exception as e:
            logger.exception("Unexpected error while saving character")
            return self._fail(f"Save failed: {e}", character=character)

        return self._finish(character, report)

    async def resume(self, *, best_effort: bool = False) -> ImportState:
        """Retry the child steps of a partially saved character."""
        self._require(Error)
        if not self.state.resumable:
            raise TransitionError("Nothing to resume: no partially saved character")

        character, previous = self.state.character, self.state.report
        self.state = Persisting(character=character)
        try:
            report = await resume_save(
                self.store, character, previous.character_id, previous.completed, best_effort=best_effort
            )
        except Exception as e:
            logger.exception("Unexpected error while resuming save")
            return self._fail(f"Resume failed: {e}", character=character, report=previous)
        report.unresolved = [*previous.unresolved, *report.unresolved]
        return self._finish(character, report)

    def _finish(self, character: TransformedCharacter, report: SaveReport) -> ImportState:
        if report.complete:
            self.state = Done(report=report)
            self.status = f"✅ Character \"{character.character.name}\" saved successfully!"
            if report.unresolved:
                self.status += f" ({len(report.unresolved)} unresolved references skipped)"
            return self.state

        failed = ", ".join(f"{step} ({error})" for step, error in report.failed.items())
        return self._fail(
            f"Character saved as {report.character_id} but some records failed: {failed}",
            character=character,
            report=report,
        )

    # -- reset -------------------------------------------------------------

    def reset(self) -> ImportState:
        """Discard the current import and start over."""
        if isinstance(self.state, IN_FLIGHT):
            raise TransitionError(f"Cannot reset while '{self.state.step}' is in progress")
        self.state = UrlInput()
        self.status = ""
        return self.state

    # -- reporting ---------------------------------------------------------

    def preview(self) -> ImportReport | None:
        """Summary of the character currently being imported."""
        character = self.character
        if character is None:
            return None
        return build_import_report(character)


def build_import_report(character: TransformedCharacter) -> ImportReport:
    """Preview report for a transformed character."""
    return ImportReport(
        character_name=character.character.name,
        classes=character.character.class_string(),
        counts={
            "skills": len(character.skills),
            "spells": len(character.spells),
            "features": len(character.features),
            "feats": len(character.feats),
            "inventory": len(character.inventory),
            "senses": len(character.senses),
        },
        ability_score_improvements=[
            group.describe() for group in asi.group_improvements(character.ability_score_improvements)
        ],
        warnings=list(character.warnings),
    )


__all__ = [
    "CharacterReview",
    "CommittingReferences",
    "Done",
    "Error",
    "ImportSession",
    "ImportState",
    "Persisting",
    "Preparing",
    "Review",
    "Saved",
    "TransitionError",
    "UrlInput",
    "build_import_report",
    "edit_candidate",
    "set_entry_status",
]
