"""
D&D Beyond import MCP server.

Exposes the reviewed character import as tools: paste or fetch an export,
review the scraped spells, magic items and feats, adjust ability score
improvements, then save the character. One import runs at a time.
"""

import json
import logging
from typing import Annotated, Literal

from fastmcp import FastMCP
from pydantic import Field, ValidationError

from .asi import AbilityIncrease, AsiGroup
from .auto_import import ReviewBucket, ReviewData
from .config import load_config
from .importers.base import CharacterImportError
from .importers.dndbeyond.fetcher import fetch_character
from .models import ReferenceKind, SourceType
from .review import (
    CharacterReview,
    Done,
    Error,
    ImportSession,
    Review,
    Saved,
    TransitionError,
    UrlInput,
)
from .store import build_auth, build_store
from .wiki.fetcher import WikiFetcher

logger = logging.getLogger("dnd-archive")

config = load_config()
logging.basicConfig(level=config.log_level)

store = build_store(config)
session = ImportSession(store, WikiFetcher(config), build_auth(config))
logger.debug(f"✅ Import session ready ({type(store).__name__})")

mcp = FastMCP(
    name="dnd-archive"
)

ReferenceKindName = Literal["spells", "items", "feats"]


def _format_bucket(kind: ReferenceKind, bucket: ReviewBucket) -> list[str]:
    lines = [f"**{kind.value.title()}**"]
    if bucket.existing:
        lines.append(f"  Already in library: {', '.join(bucket.existing)}")
    for entry in bucket.candidates:
        lines.append(f"  • {entry.name} [{entry.status.value}] ({entry.source_url})")
    for failure in bucket.failed:
        lines.append(f"  ❌ {failure.name} [{failure.status.value}]: {failure.error}")
    if len(lines) == 1:
        lines.append("  Nothing to review")
    return lines


def _format_review(review: ReviewData) -> str:
    lines = []
    for kind in ReferenceKind:
        lines.extend(_format_bucket(kind, review.bucket(kind)))
    if review.ready:
        lines.append("\n✅ All entries decided. Use `continue_import` to save approved references.")
    else:
        lines.append("\n⚠️ Approve or skip every entry before continuing.")
    return "\n".join(lines)


def _format_state() -> str:
    state = session.state
    lines = [f"Step: {state.step}"]
    if session.status:
        lines.append(session.status)

    if isinstance(state, Review):
        lines.append("")
        lines.append(_format_review(state.review))
    elif isinstance(state, (CharacterReview, Saved)):
        lines.append("")
        lines.append(session.preview().format())
    elif isinstance(state, Done):
        lines.append("")
        lines.append(state.report.format())
    elif isinstance(state, Error) and state.report is not None:
        lines.append("")
        lines.append(state.report.format())
        lines.append("\nUse `save_imported_character` with resume=true to retry the remaining records.")
    return "\n".join(lines)


@mcp.tool
async def start_character_import(
    character_json: Annotated[str | None, Field(description="Character export JSON pasted from D&D Beyond")] = None,
    character_url: Annotated[str | None, Field(description="D&D Beyond character URL or numeric ID (character must be public)")] = None,
) -> str:
    """Start importing a D&D Beyond character.

    Transforms the character, then looks up every spell, magic item and feat it
    uses. Missing ones are scraped from the wiki and staged for review.
    """
    if not isinstance(session.state, UrlInput):
        return f"❌ An import is already in progress ({session.state.step}). Use `reset_import` first."
    if not character_json and not character_url:
        return "❌ Provide either character_json or character_url."

    if character_json:
        await session.start(character_json)
    else:
        try:
            export = await fetch_character(character_url, timeout=config.http_timeout)
        except CharacterImportError as e:
            return f"❌ Import failed: {e}"
        await session.start_export(export)
    return _format_state()


@mcp.tool
def review_status() -> str:
    """Show the current import step and everything waiting for review."""
    return _format_state()


@mcp.tool
def approve_reference(
    kind: Annotated[ReferenceKindName, Field(description="Reference kind")],
    name: Annotated[str, Field(description="Name of the candidate or failed entry")],
) -> str:
    """Approve a scraped reference (or mark a failed one as resolved by hand)."""
    try:
        review = session.approve(ReferenceKind(kind), name)
    except TransitionError as e:
        return f"❌ {e}"
    except KeyError:
        return f"❌ No {kind} entry named '{name}' to review."
    return f"✅ Approved '{name}'\n\n{_format_review(review)}"


@mcp.tool
def skip_reference(
    kind: Annotated[ReferenceKindName, Field(description="Reference kind")],
    name: Annotated[str, Field(description="Name of the candidate or failed entry")],
) -> str:
    """Skip a scraped reference so it is not saved to the library."""
    try:
        review = session.skip(ReferenceKind(kind), name)
    except TransitionError as e:
        return f"❌ {e}"
    except KeyError:
        return f"❌ No {kind} entry named '{name}' to review."
    return f"⏭️ Skipped '{name}'\n\n{_format_review(review)}"


@mcp.tool
def edit_reference(
    kind: Annotated[ReferenceKindName, Field(description="Reference kind")],
    name: Annotated[str, Field(description="Name of the candidate to edit")],
    data: Annotated[str, Field(description="Complete replacement record as a JSON object")],
) -> str:
    """Replace the parsed data of a scraped candidate before approving it."""
    try:
        record = json.loads(data)
    except json.JSONDecodeError as e:
        return f"❌ Invalid JSON: {e}"
    if not isinstance(record, dict):
        return "❌ Record must be a JSON object."

    try:
        session.edit(ReferenceKind(kind), name, record)
    except TransitionError as e:
        return f"❌ {e}"
    except KeyError:
        return f"❌ No {kind} candidate named '{name}'."
    except ValidationError as e:
        return f"❌ Invalid {kind} record: {e}"
    return f"✏️ Updated '{name}'"


@mcp.tool
async def continue_import() -> str:
    """Save approved references to the library and move on to the character review."""
    try:
        await session.continue_import()
    except TransitionError as e:
        return f"❌ {e}"

    lines = [_format_state()]
    if isinstance(session.state, CharacterReview):
        for kind, result in session.state.commit_results.items():
            for failure in result.failed:
                lines.append(f"❌ {kind.value}: {failure['name']}: {failure['error']}")
    return "\n".join(lines)


def _format_asi_groups(groups: list[AsiGroup]) -> str:
    if not groups:
        return "No ability score improvements."
    return "**Ability Score Improvements:**\n" + "\n".join(
        f"• `{group.key}`: {group.describe()}" for group in groups
    )


@mcp.tool
def list_ability_score_improvements() -> str:
    """List the character's ability score improvements grouped by source."""
    try:
        groups = session.asi_groups()
    except TransitionError as e:
        return f"❌ {e}"
    return _format_asi_groups(groups)


@mcp.tool
def set_ability_score_improvement(
    source: Annotated[str, Field(description="Where the increase comes from, e.g. a background or 'Level 4'")],
    source_type: Annotated[SourceType, Field(description="Kind of source")],
    increases: Annotated[dict[str, int], Field(description="Ability -> amount, e.g. {\"wisdom\": 2, \"intelligence\": 1}")],
    key: Annotated[str | None, Field(description="Key of the group to replace (source::source_type). Omit to add a new group.")] = None,
) -> str:
    """Add an ability score improvement group, or replace an existing one."""
    try:
        group = AsiGroup(
            source=source,
            source_type=source_type,
            increases=[AbilityIncrease(ability=ability.lower(), amount=amount) for ability, amount in increases.items()],
        )
        if key:
            groups = session.edit_asi_group(key, group)
        else:
            groups = session.add_asi_group(group)
    except TransitionError as e:
        return f"❌ {e}"
    except KeyError:
        return f"❌ No ability score improvement group '{key}'."
    except (ValidationError, ValueError) as e:
        return f"❌ {e}"
    return f"✅ {group.describe()}\n\n{_format_asi_groups(groups)}"


@mcp.tool
def remove_ability_score_improvement(
    key: Annotated[str, Field(description="Group key (source::source_type)")],
) -> str:
    """Remove every ability score improvement in a group."""
    try:
        groups = session.remove_asi_group(key)
    except TransitionError as e:
        return f"❌ {e}"
    except KeyError:
        return f"❌ No ability score improvement group '{key}'."
    return f"🗑️ Removed '{key}'\n\n{_format_asi_groups(groups)}"


@mcp.tool
def confirm_character_review() -> str:
    """Accept the character details and make it ready to save."""
    try:
        session.confirm_character_review()
    except TransitionError as e:
        return f"❌ {e}"
    return _format_state()


@mcp.tool
async def save_imported_character(
    best_effort: Annotated[bool, Field(description="Keep writing the remaining records after one fails")] = False,
    resume: Annotated[bool, Field(description="Retry the records left over from a partial save")] = False,
) -> str:
    """Save the imported character and all its records for the signed-in user."""
    try:
        if resume:
            await session.resume(best_effort=best_effort)
        else:
            await session.save(best_effort=best_effort)
    except TransitionError as e:
        return f"❌ {e}"
    return _format_state()


@mcp.tool
def reset_import() -> str:
    """Discard the current import and start over."""
    try:
        session.reset()
    except TransitionError as e:
        return f"❌ {e}"
    return "🔄 Import reset. Ready for a new character."


logger.debug("✅ All tools successfully registered. dnd-archive server running! 🎲")

def main() -> None:
    """Main entry point for the dnd-archive MCP server."""
    mcp.run()

if __name__ == "__main__":
    main()
