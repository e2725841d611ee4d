"""
Saving a transformed character and its child records.

The save is not transactional. The ``characters`` row is written first; if
that fails nothing has been written and ``SaveError`` is raised. The child
tables follow in a fixed order, and each child step is a single insert, so
a step either lands completely or not at all. ``SaveReport`` records which
steps completed, so ``resume_save`` can finish a partial save later for the
same character id without duplicating rows.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field

from .models import TransformedCharacter
from .store.base import AuthError, AuthSession, RecordStore, StoreError

logger = logging.getLogger("dnd-archive")


CHILD_STEPS = (
    "skills",
    "spells",
    "features",
    "feats",
    "inventory",
    "currency",
    "senses",
    "class_specific",
)

STEP_TABLES = {
    "skills": "character_skills",
    "spells": "character_spells",
    "features": "character_features",
    "feats": "character_feats",
    "inventory": "character_inventory",
    "currency": "character_currency",
    "senses": "character_senses",
    "class_specific": "character_class_specific",
}


class SaveError(Exception):
    """Raised when the core character row could not be written."""
    pass


class SaveReport(BaseModel):
    """What a (possibly partial) character save wrote."""

    character_id: str = Field(description="Id of the characters row")
    character_name: str = Field(default="", description="Character name, for messages")
    completed: list[str] = Field(default_factory=list, description="Child steps written, in order")
    failed: dict[str, str] = Field(default_factory=dict, description="Child step -> error message")
    unresolved: list[str] = Field(
        default_factory=list,
        description="Spells, feats and magic items skipped because they are not in the library",
    )

    @property
    def remaining(self) -> list[str]:
        """Child steps not yet written."""
        return [step for step in CHILD_STEPS if step not in self.completed]

    @property
    def complete(self) -> bool:
        return not self.remaining

    def format(self) -> str:
        lines = [f"Character {self.character_name!r} (id {self.character_id})"]
        for step in CHILD_STEPS:
            if step in self.completed:
                lines.append(f"  ✅ {step}")
            elif step in self.failed:
                lines.append(f"  ❌ {step}: {self.failed[step]}")
            else:
                lines.append(f"  ⏭️ {step}: not attempted")
        if self.unresolved:
            lines.append(f"  ⚠️ Skipped {len(self.unresolved)} unresolved references:")
            lines.extend(f"    - {item}" for item in self.unresolved)
        return "\n".join(lines)


async def resolve_user_id(auth: AuthSession) -> str:
    """Id of the signed-in user.

    Raises:
        AuthError: If nobody is signed in.
    """
    user = await auth.get_user()
    if user is None:
        raise AuthError("Not authenticated")
    return user.id


def character_row(transformed: TransformedCharacter, user_id: str) -> dict[str, Any]:
    """The ``characters`` row for ``transformed``, owned by ``user_id``."""
    row = transformed.character.model_dump(mode="json", exclude={"classes"})
    row["user_id"] = user_id
    row["classes"] = [
        c.model_dump(mode="json", by_alias=True, exclude_none=True)
        for c in transformed.character.classes
    ]
    row["image_url"] = None
    row["bio"] = None
    row["ability_score_improvements"] = [
        asi.model_dump(mode="json", by_alias=True) for asi in transformed.ability_score_improvements
    ] or None
    return row


async def _lookup(store: RecordStore, table: str, columns: str, names: list[str]) -> dict[str, dict]:
    """Library rows for ``names`` keyed by name."""
    if not names:
        return {}
    result = await store.table(table).select(columns).in_("name", sorted(set(names))).execute()
    result.raise_for_error(table)
    return {row["name"]: row for row in result.rows}


async def _skills_rows(store, transformed, character_id, report):
    return [
        {**skill.model_dump(mode="json"), "character_id": character_id}
        for skill in transformed.skills
    ]


async def _spells_rows(store, transformed, character_id, report):
    library = await _lookup(store, "spells", "id, name, level", [s.name for s in transformed.spells])
    rows = []
    for spell in transformed.spells:
        record = library.get(spell.name)
        if record is None:
            logger.warning(f"⚠️ Spell {spell.name!r} not found in spells table, skipping")
            report.unresolved.append(f"spell: {spell.name}")
            continue
        rows.append({
            "character_id": character_id,
            "spell_id": record["id"],
            # Cantrips are always prepared
            "is_prepared": True if record.get("level") == 0 else spell.is_prepared,
            "always_prepared": spell.always_prepared,
        })
    return rows


async def _features_rows(store, transformed, character_id, report):
    return [
        {**feature.model_dump(mode="json"), "character_id": character_id}
        for feature in transformed.features
    ]


async def _feats_rows(store, transformed, character_id, report):
    library = await _lookup(store, "feats", "id, name", [f.name for f in transformed.feats])
    rows = []
    for feat in transformed.feats:
        record = library.get(feat.name)
        if record is None:
            logger.warning(f"⚠️ Feat {feat.name!r} not found in feats table, skipping")
            report.unresolved.append(f"feat: {feat.name}")
            continue
        rows.append({
            "character_id": character_id,
            "feat_id": record["id"],
            "source": feat.source.value,
            "choices": feat.choices.model_dump(mode="json", exclude_none=True) if feat.choices else None,
        })
    return rows


async def _inventory_rows(store, transformed, character_id, report):
    magic_names = [item.name for item in transformed.inventory if item.is_magic_item]
    library = await _lookup(store, "magic_items", "id, name", magic_names)
    rows = []
    for item in transformed.inventory:
        row: dict[str, Any] = {"character_id": character_id}
        if item.is_magic_item:
            record = library.get(item.name)
            if record is None:
                logger.warning(f"⚠️ Skipping magic item {item.name!r} - not found in database")
                report.unresolved.append(f"magic item: {item.name}")
                continue
            row["magic_item_id"] = record["id"]
        else:
            row["mundane_item_name"] = item.name
        row.update(
            quantity=item.quantity,
            equipped=item.equipped,
            attuned=item.attuned,
            notes=item.notes,
        )
        rows.append(row)
    return rows


async def _currency_rows(store, transformed, character_id, report):
    return [{**transformed.currency.model_dump(mode="json"), "character_id": character_id}]


async def _senses_rows(store, transformed, character_id, report):
    return [
        {**sense.model_dump(mode="json"), "character_id": character_id}
        for sense in transformed.senses
    ]


async def _class_specific_rows(store, transformed, character_id, report):
    if not transformed.class_specific:
        return []
    return [{"character_id": character_id, "data": transformed.class_specific}]


_ROW_BUILDERS = {
    "skills": _skills_rows,
    "spells": _spells_rows,
    "features": _features_rows,
    "feats": _feats_rows,
    "inventory": _inventory_rows,
    "currency": _currency_rows,
    "senses": _senses_rows,
    "class_specific": _class_specific_rows,
}


async def _run_step(
    store: RecordStore,
    transformed: TransformedCharacter,
    step: str,
    report: SaveReport,
) -> str | None:
    """Write one child step. Returns the error message, if any."""
    table = STEP_TABLES[step]
    try:
        rows = await _ROW_BUILDERS[step](store, transformed, report.character_id, report)
    except StoreError as e:
        logger.error(f"❌ {table}: lookup failed: {e}")
        return f"lookup failed: {e}"

    if not rows:
        logger.info(f"✅ {table}: nothing to write")
        return None

    result = await store.table(table).insert(rows).execute()
    if result.error:
        logger.error(f"❌ {table}: {result.error}")
        return result.error
    logger.info(f"✅ {table}: {len(rows)} rows")
    return None


async def _run_steps(
    store: RecordStore,
    transformed: TransformedCharacter,
    report: SaveReport,
    best_effort: bool,
) -> SaveReport:
    for step in report.remaining:
        error = await _run_step(store, transformed, step, report)
        if error is None:
            report.completed.append(step)
            report.failed.pop(step, None)
            continue
        report.failed[step] = error
        if not best_effort:
            break
    return report


async def insert_character(store: RecordStore, transformed: TransformedCharacter, user_id: str) -> str:
    """Write the ``characters`` row and return its id.

    Raises:
        SaveError: If the insert fails.
    """
    result = await store.table("characters").insert(character_row(transformed, user_id)).execute()
    if result.error or not result.rows:
        logger.error(f"❌ characters: {result.error}")
        raise SaveError(f"Could not save character {transformed.character.name!r}: {result.error}")
    character_id = str(result.rows[0]["id"])
    logger.info(f"✅ characters: created {character_id}")
    return character_id


async def save_character(
    store: RecordStore,
    transformed: TransformedCharacter,
    user_id: str,
    *,
    best_effort: bool = False,
) -> SaveReport:
    """Save the character row, then every child table in order.

    Args:
        best_effort: Keep going after a failed child step instead of
            stopping at the first one.

    Returns:
        Report of completed and failed steps. Check ``report.complete``.

    Raises:
        SaveError: If the core character row could not be written.
    """
    character_id = await insert_character(store, transformed, user_id)
    report = SaveReport(character_id=character_id, character_name=transformed.character.name)
    return await _run_steps(store, transformed, report, best_effort)


async def resume_save(
    store: RecordStore,
    transformed: TransformedCharacter,
    character_id: str,
    completed: list[str] | None = None,
    *,
    best_effort: bool = False,
) -> SaveReport:
    """Finish a partial save for an existing character row.

    Only the child steps not in ``completed`` are run, so calling this
    again after a further failure never duplicates rows.
    """
    report = SaveReport(
        character_id=character_id,
        character_name=transformed.character.name,
        completed=[step for step in CHILD_STEPS if step in (completed or [])],
    )
    logger.info(f"Resuming save of {character_id}: {', '.join(report.remaining) or 'nothing left'}")
    return await _run_steps(store, transformed, report, best_effort)
