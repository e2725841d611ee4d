"""
Bulk spell import from JSON documents.

Accepts the shapes spell collections are usually published in: a bare
array, ``{"spells": [...]}``, a paginated ``{"results": [...]}`` page, or a
single spell object. Entries in 5e-API style (``desc`` and ``higher_level``
as paragraph arrays, ``school`` as ``{"name": ...}``, ``components`` as a
list) are normalized into ``spells`` rows and upserted on ``name``.
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from .models import SpellRecord, record_to_row
from .store.base import RecordStore

logger = logging.getLogger("dnd-archive")

NO_DESCRIPTION = "No description available"


class SpellImportError(Exception):
    """Raised when a spell document cannot be fetched or holds no spells."""
    pass


class SpellImportResult(BaseModel):
    imported: list[str] = Field(default_factory=list)
    skipped: list[dict[str, str]] = Field(default_factory=list, description="Entries that failed validation")


def spell_entries(data: Any) -> list[dict]:
    """The list of raw spell objects in a JSON document."""
    if isinstance(data, list):
        entries = data
    elif isinstance(data, dict) and isinstance(data.get("spells"), list):
        entries = data["spells"]
    elif isinstance(data, dict) and isinstance(data.get("results"), list):
        entries = data["results"]
    elif isinstance(data, dict):
        entries = [data]
    else:
        entries = []
    return [entry for entry in entries if isinstance(entry, dict) and entry.get("name")]


def _joined(value: Any, separator: str) -> str | None:
    if isinstance(value, list):
        return separator.join(str(part) for part in value) or None
    return value or None


def normalize_spell(entry: dict) -> dict[str, Any]:
    """Map one raw spell object onto the ``spells`` columns."""
    school = entry.get("school")
    if isinstance(school, dict):
        school = school.get("name")

    return {
        "name": entry["name"],
        "level": entry.get("level") if entry.get("level") is not None else 0,
        "school": school or None,
        "casting_time": entry.get("casting_time") or entry.get("castingTime"),
        "range": entry.get("range"),
        "components": _joined(entry.get("components"), ", "),
        "duration": entry.get("duration"),
        "description": (
            _joined(entry.get("desc"), "\n")
            or entry.get("description")
            or NO_DESCRIPTION
        ),
        "higher_levels": (
            _joined(entry.get("higher_level"), "\n")
            or entry.get("higherLevel")
            or entry.get("higher_levels")
        ),
    }


def parse_spell_document(data: Any) -> tuple[list[SpellRecord], list[dict[str, str]]]:
    """Validated spell records from a document, plus the entries rejected.

    Raises:
        SpellImportError: If the document contains no named spells at all.
    """
    entries = spell_entries(data)
    if not entries:
        raise SpellImportError("No valid spells found in JSON")

    records, rejected = [], []
    for entry in entries:
        try:
            records.append(SpellRecord.model_validate(normalize_spell(entry)))
        except ValidationError as e:
            logger.warning(f"⚠️ Skipping spell {entry['name']!r}: {e.error_count()} validation errors")
            rejected.append({"name": str(entry["name"]), "error": str(e)})
    return records, rejected


async def import_spells(store: RecordStore, data: Any) -> SpellImportResult:
    """Upsert every valid spell in ``data`` keyed on name.

    Raises:
        SpellImportError: If the document holds no spells.
        StoreError: If the upsert fails.
    """
    records, rejected = parse_spell_document(data)
    result = SpellImportResult(skipped=rejected)
    if not records:
        return result

    rows = [record_to_row(record) for record in records]
    response = await store.table("spells").upsert(rows, on_conflict="name").execute()
    response.raise_for_error("spells")

    result.imported = [record.name for record in records]
    logger.info(f"✅ Imported {len(result.imported)} spells ({len(rejected)} skipped)")
    return result


async def import_spells_from_url(
    store: RecordStore,
    url: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> SpellImportResult:
    """Download a spell document and import it.

    Raises:
        SpellImportError: If the download fails or the body is not JSON.
        StoreError: If the upsert fails.
    """
    logger.info(f"Fetching spells from {url}")
    try:
        if client is not None:
            response = await client.get(url)
        else:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as own_client:
                response = await own_client.get(url)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPStatusError as e:
        raise SpellImportError(f"Failed to fetch: HTTP {e.response.status_code} {e.response.reason_phrase}") from None
    except httpx.RequestError as e:
        raise SpellImportError(f"Failed to fetch {url}: {e}") from None
    except ValueError:
        raise SpellImportError(f"Response from {url} is not valid JSON") from None

    return await import_spells(store, data)


__all__ = [
    "SpellImportError",
    "SpellImportResult",
    "import_spells",
    "import_spells_from_url",
    "normalize_spell",
    "parse_spell_document",
    "spell_entries",
]
