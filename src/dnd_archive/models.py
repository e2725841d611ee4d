"""
Data models for the dnd-archive import pipeline.

Reference records (spells, magic items, feats) mirror the rows of the shared
reference tables. ``TransformedCharacter`` is the normalized form of a D&D
Beyond character export and is treated as an immutable value: edits produce
a new instance via ``model_copy``.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


ABILITY_NAMES = ("strength", "dexterity", "constitution", "intelligence", "wisdom", "charisma")


class ReferenceKind(str, Enum):
    """The three kinds of reference entity kept in the shared library."""
    SPELLS = "spells"
    ITEMS = "items"
    FEATS = "feats"

    @property
    def table(self) -> str:
        """Reference table backing this kind."""
        return {"spells": "spells", "items": "magic_items", "feats": "feats"}[self.value]

    @property
    def wiki_kind(self) -> str:
        """Page prefix used by the wiki for this kind."""
        return {"spells": "spell", "items": "magic-item", "feats": "feat"}[self.value]


class SourceType(str, Enum):
    """Where an ability score improvement came from."""
    BACKGROUND = "background"
    LEVEL = "level"
    FEAT = "feat"
    RACE = "race"
    ITEM = "item"
    OTHER = "other"


class FeatureSource(str, Enum):
    SPECIES = "species"
    CLASS = "class"
    BACKGROUND = "background"


class FeatSource(str, Enum):
    BACKGROUND = "background"
    LEVEL = "level"


class ResetType(str, Enum):
    SHORT = "short"
    LONG = "long"
    DAWN = "dawn"


class SenseType(str, Enum):
    DARKVISION = "darkvision"
    BLINDSIGHT = "blindsight"
    TREMORSENSE = "tremorsense"
    TRUESIGHT = "truesight"


# ---------------------------------------------------------------------------
# Feat benefits
# ---------------------------------------------------------------------------

class AbilityScoreIncreaseGrant(BaseModel):
    """Ability score increase offered by a feat: one fixed ability or a choice."""
    fixed: str | None = None
    choice: list[str] | None = None
    amount: int = Field(ge=1, le=3)


class ProficiencyGrant(BaseModel):
    skills: list[str] | None = None
    tools: list[str] | None = None
    weapons: list[str] | None = None
    armor: list[str] | None = None
    languages: list[str] | None = None
    other: list[str] | None = None


class SpellChoice(BaseModel):
    """'Choose N level-L spell(s) from the X school' style grant."""
    count: int = 1
    level: int
    schools: list[str] = Field(default_factory=list)


class SpellGrant(BaseModel):
    """Either a named spell or an open choice."""
    name: str | None = None
    choice: SpellChoice | None = None


class SpellGrants(BaseModel):
    grants: list[SpellGrant] = Field(default_factory=list)


class HitPointBonus(BaseModel):
    """Hit point maximum bonus: a flat amount, a per-level amount, or both."""
    flat: int | None = None
    per_level: int | None = None


class Bonuses(BaseModel):
    hp: HitPointBonus | None = None
    speed: int | None = None
    ac: int | None = None
    attack: int | None = None
    damage: int | None = None
    initiative: int | None = None


class FightingStyleGrant(BaseModel):
    choice: bool = False
    options: list[str] | None = None


class ExpertiseGrant(BaseModel):
    skills: list[str] | None = None
    other: list[str] | None = None


class AdvantageGrant(BaseModel):
    saves: list[str] | None = None
    checks: list[str] | None = None
    conditions: list[str] | None = None
    other: list[str] = Field(default_factory=list)


class ResistanceGrant(BaseModel):
    damage_types: list[str] = Field(default_factory=list)


class WeaponMasteryGrant(BaseModel):
    choice: int = 1


class ResourceGrant(BaseModel):
    """A limited-use clause: how many uses, or when they recharge."""
    name: str = "feat"
    uses: str | None = None
    recharge: str | None = None


class FeatBenefits(BaseModel):
    """Best-effort structured reading of a feat's description.

    Every field is optional; ``None`` means the extractor found nothing,
    not that the feat lacks the benefit.
    """
    effects: list[str] = Field(default_factory=list)
    ability_score_increase: AbilityScoreIncreaseGrant | None = None
    proficiencies: ProficiencyGrant | None = None
    spells: SpellGrants | None = None
    bonuses: Bonuses | None = None
    fighting_styles: FightingStyleGrant | None = None
    expertise: ExpertiseGrant | None = None
    advantages: AdvantageGrant | None = None
    resistances: ResistanceGrant | None = None
    senses: dict[str, int] | None = None
    movement: dict[str, int | str] | None = None
    weapon_mastery: WeaponMasteryGrant | None = None
    resources: list[ResourceGrant] | None = None


# ---------------------------------------------------------------------------
# Reference records
# ---------------------------------------------------------------------------

class SpellRecord(BaseModel):
    """Row of the ``spells`` reference table."""
    name: str = Field(min_length=1, max_length=255)
    level: int = Field(ge=0, le=9, description="Spell level, 0 for cantrips")
    school: str | None = None
    casting_time: str | None = None
    range: str | None = None
    components: str | None = None
    duration: str | None = None
    description: str = Field(min_length=1)
    higher_levels: str | None = None


class MagicItemRecord(BaseModel):
    """Row of the ``magic_items`` reference table."""
    name: str = Field(min_length=1)
    type: str | None = None
    rarity: str | None = None
    requires_attunement: str | None = Field(
        default=None,
        description="Attunement requirement text, 'Yes' for unrestricted, None if not required"
    )
    description: str = ""
    properties: dict[str, Any] | None = None


class FeatRecord(BaseModel):
    """Row of the ``feats`` reference table."""
    name: str = Field(min_length=1)
    prerequisites: str | None = None
    description: str = ""
    benefits: FeatBenefits | None = None


ReferenceRecord = SpellRecord | MagicItemRecord | FeatRecord

RECORD_TYPES: dict[ReferenceKind, type[BaseModel]] = {
    ReferenceKind.SPELLS: SpellRecord,
    ReferenceKind.ITEMS: MagicItemRecord,
    ReferenceKind.FEATS: FeatRecord,
}


def record_to_row(record: BaseModel) -> dict[str, Any]:
    """Serialize a reference record for the store, dropping empty benefit fields."""
    row = record.model_dump(mode="json", exclude={"benefits"})
    if isinstance(record, FeatRecord):
        row["benefits"] = (
            record.benefits.model_dump(mode="json", exclude_none=True)
            if record.benefits else None
        )
    return row


# ---------------------------------------------------------------------------
# Transformed character
# ---------------------------------------------------------------------------

class AbilityScore(BaseModel):
    """Ability score with its saving throw proficiency."""
    score: int
    proficient: bool = False

    @property
    def mod(self) -> int:
        """Calculate ability modifier."""
        return (self.score - 10) // 2


class ClassLevel(BaseModel):
    """One entry of the character's ``classes`` column."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(alias="class")
    level: int
    subclass: str | None = None


class CharacterCore(BaseModel):
    """Row of the ``characters`` table, before the owning user is known."""
    model_config = ConfigDict(frozen=True)

    user_id: str | None = None
    name: str
    level: int
    classes: list[ClassLevel] = Field(default_factory=list)
    species: str
    background: str | None = None
    max_hp: int | None = None
    speed: int = 30

    strength: int = 10
    dexterity: int = 10
    constitution: int = 10
    intelligence: int = 10
    wisdom: int = 10
    charisma: int = 10

    save_strength: bool = False
    save_dexterity: bool = False
    save_constitution: bool = False
    save_intelligence: bool = False
    save_wisdom: bool = False
    save_charisma: bool = False

    spellcasting_ability: str | None = None

    @property
    def abilities(self) -> dict[str, AbilityScore]:
        """The six ability scores keyed by full ability name."""
        return {
            name: AbilityScore(score=getattr(self, name), proficient=getattr(self, f"save_{name}"))
            for name in ABILITY_NAMES
        }

    def class_string(self) -> str:
        """Human-readable class string, e.g. 'Fighter 5 / Wizard 3'."""
        return " / ".join(f"{c.name} {c.level}" for c in self.classes)


class SkillProficiency(BaseModel):
    model_config = ConfigDict(frozen=True)

    skill_name: str
    expertise: bool = False


class CharacterSpell(BaseModel):
    """A spell the character knows, resolved against the library by name at save time."""
    model_config = ConfigDict(frozen=True)

    name: str
    level: int = 0
    is_prepared: bool = False
    always_prepared: bool = False


class CharacterFeature(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    source: FeatureSource
    description: str = ""
    max_uses: int | None = None
    reset_on: ResetType | None = None


class FeatSelection(BaseModel):
    """A single recorded choice made for a feat in the export."""
    model_config = ConfigDict(frozen=True)

    id: str | int | None = None
    label: str | None = None
    type: int | str | None = None
    sub_type: int | str | None = None
    option_value: int | str | None = None
    option_name: str | None = None


class FeatChoices(BaseModel):
    model_config = ConfigDict(frozen=True)

    selections: list[FeatSelection] = Field(default_factory=list)
    spells_chosen: list[str] | None = None
    ability_choice: str | None = None


class CharacterFeat(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    source: FeatSource
    choices: FeatChoices | None = None


class AbilityScoreImprovement(BaseModel):
    """+N to one ability from a named source."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ability: str
    amount: int = Field(ge=1, le=3)
    source: str
    source_type: SourceType = Field(alias="sourceType")

    @property
    def group_key(self) -> str:
        """Entries sharing this key form one logical grant."""
        return f"{self.source}::{self.source_type.value}"


class InventoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    is_magic_item: bool = False
    quantity: int = Field(default=1, ge=1)
    equipped: bool = False
    attuned: bool = False
    notes: str | None = None


class Currency(BaseModel):
    model_config = ConfigDict(frozen=True)

    gold: int = 0


class Sense(BaseModel):
    model_config = ConfigDict(frozen=True)

    sense_type: SenseType
    range: int = Field(gt=0)
    notes: str | None = None


class TransformedCharacter(BaseModel):
    """A D&D Beyond export normalized into the character schema.

    ``warnings`` lists every default the transformer had to fall back on,
    so an operator can spot a plausible-looking but incomplete character.
    """
    model_config = ConfigDict(frozen=True)

    character: CharacterCore
    skills: list[SkillProficiency] = Field(default_factory=list)
    spells: list[CharacterSpell] = Field(default_factory=list)
    features: list[CharacterFeature] = Field(default_factory=list)
    feats: list[CharacterFeat] = Field(default_factory=list)
    ability_score_improvements: list[AbilityScoreImprovement] = Field(default_factory=list)
    inventory: list[InventoryEntry] = Field(default_factory=list)
    currency: Currency = Field(default_factory=Currency)
    senses: list[Sense] = Field(default_factory=list)
    class_specific: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
