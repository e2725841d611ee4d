"""
Transform a D&D Beyond character export into the dnd-archive character schema.

Each ``extract_*`` function reads one part of the export, so a missing or
oddly shaped section degrades to a default instead of failing the whole
import. ``transform`` assembles the parts into an immutable
``TransformedCharacter``.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any

from ...models import (
    ABILITY_NAMES,
    AbilityScoreImprovement,
    CharacterCore,
    CharacterFeat,
    CharacterFeature,
    CharacterSpell,
    ClassLevel,
    Currency,
    FeatChoices,
    FeatSelection,
    FeatSource,
    FeatureSource,
    InventoryEntry,
    Sense,
    SkillProficiency,
    SourceType,
    TransformedCharacter,
)
from .schema import (
    ABILITY_LABELS,
    ASI_FEAT_PATTERN,
    BACKGROUND_ASI_FEAT_PATTERN,
    BACKGROUND_COMPONENT_TYPE_ID,
    CLASS_SPELLCASTING_ABILITY,
    MODIFIER_TYPE_EXPERTISE,
    MODIFIER_TYPE_PROFICIENCY,
    PROFICIENCY_SECTIONS,
    RESET_TYPE_MAP,
    SAVING_THROW_SUBTYPES,
    SENSE_MODIFIER_TYPES,
    SENSE_SECTIONS,
    SENSE_SUBTYPES,
    SKILL_SUBTYPES,
    SKIPPED_FEAT_NAMES,
    SPELL_GROUP_KEYS,
    STAT_ID_MAP,
)

logger = logging.getLogger("dnd-archive")

_HTML_TAG = re.compile(r"<[^>]*>")
DEFAULT_SENSE_RANGE = 60


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------

def ability_modifier(score: int) -> int:
    """Ability modifier for a score: floor((score - 10) / 2)."""
    return (score - 10) // 2


def proficiency_bonus(level: int) -> int:
    """Proficiency bonus for a total character level."""
    return math.ceil(level / 4) + 1


def strip_html(html: Any) -> str:
    return _HTML_TAG.sub("", _str(html) or "").strip()


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _key(value: Any) -> str | int | None:
    """Scalar id usable as a lookup key; anything else is None."""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        return None
    return value


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _modifiers(ddb: dict, sections: tuple[str, ...]) -> list[dict]:
    modifiers = _dict(ddb.get("modifiers"))
    return [
        mod
        for section in sections
        for mod in _list(modifiers.get(section))
        if isinstance(mod, dict)
    ]


def _definition_name(entry: Any) -> str | None:
    return _str(_dict(_dict(entry).get("definition")).get("name"))


def _background_name(ddb: dict) -> str | None:
    return _str(_dict(_dict(ddb.get("background")).get("definition")).get("name"))


def _primary_class_name(ddb: dict) -> str | None:
    classes = _list(ddb.get("classes"))
    if not classes:
        return None
    name = _definition_name(classes[0])
    return name.lower() if name else None


def _is_background_component(entry: dict) -> bool:
    return entry.get("componentTypeId") == BACKGROUND_COMPONENT_TYPE_ID


# ---------------------------------------------------------------------------
# Core character
# ---------------------------------------------------------------------------

def extract_save_proficiencies(ddb: dict) -> list[str]:
    """Abilities with saving throw proficiency, in first-seen order."""
    saves: list[str] = []
    for mod in _modifiers(ddb, PROFICIENCY_SECTIONS):
        ability = SAVING_THROW_SUBTYPES.get(_key(mod.get("subType")))
        if mod.get("type") == MODIFIER_TYPE_PROFICIENCY and ability and ability not in saves:
            saves.append(ability)
    return saves


def extract_character_core(ddb: dict) -> tuple[CharacterCore, list[str]]:
    """Map the ``characters`` row: identity, level, abilities and saves.

    Returns:
        Tuple of (core, warnings).
    """
    warnings: list[str] = []

    classes: list[ClassLevel] = []
    for cls in _list(ddb.get("classes")):
        cls = _dict(cls)
        subclass = _definition_name(cls.get("subclassDefinition"))
        classes.append(ClassLevel(
            name=_definition_name(cls) or "Unknown",
            level=_int(cls.get("level")),
            subclass=subclass or None,
        ))
    if not classes:
        warnings.append("No classes found; level defaults to 0")
    level = sum(c.level for c in classes)

    stats = {
        STAT_ID_MAP[_key(stat.get("id"))]: stat.get("value")
        for stat in _list(ddb.get("stats"))
        if isinstance(stat, dict) and _key(stat.get("id")) in STAT_ID_MAP
    }
    abilities: dict[str, int] = {}
    for ability in ABILITY_NAMES:
        value = stats.get(ability)
        if value is None:
            warnings.append(f"No {ability} score found; defaulting to 10")
            value = 10
        abilities[ability] = _int(value, 10)

    saves = extract_save_proficiencies(ddb)

    race = _dict(ddb.get("race"))
    species = _str(race.get("fullName"))
    if not species:
        warnings.append("No species found; defaulting to 'Unknown'")
        species = "Unknown"

    max_hp = _int(ddb.get("overrideHitPoints")) or _int(ddb.get("baseHitPoints"))
    if not max_hp:
        warnings.append("No hit point maximum found")
        max_hp = None

    speed = _int(_dict(_dict(race.get("weightSpeeds")).get("normal")).get("walk"))
    if not speed:
        logger.debug("No walking speed in export, using 30")
        speed = 30

    primary = _primary_class_name(ddb)
    core = CharacterCore(
        name=_str(ddb.get("name")) or "Unknown Character",
        level=level,
        classes=classes,
        species=species,
        background=_background_name(ddb),
        max_hp=max_hp,
        speed=speed,
        spellcasting_ability=CLASS_SPELLCASTING_ABILITY.get(primary) if primary else None,
        **abilities,
        **{f"save_{ability}": ability in saves for ability in ABILITY_NAMES},
    )
    if not _str(ddb.get("name")):
        warnings.append("No character name found; using 'Unknown Character'")
    return core, warnings


# ---------------------------------------------------------------------------
# Child collections
# ---------------------------------------------------------------------------

def extract_skills(ddb: dict) -> list[SkillProficiency]:
    """Proficient skills only; expertise implies proficiency."""
    proficient: list[str] = []
    expertise: set[str] = set()

    for mod in _modifiers(ddb, PROFICIENCY_SECTIONS):
        skill = SKILL_SUBTYPES.get(_key(mod.get("subType")))
        if not skill:
            continue
        if mod.get("type") == MODIFIER_TYPE_EXPERTISE:
            expertise.add(skill)
        elif mod.get("type") != MODIFIER_TYPE_PROFICIENCY:
            continue
        if skill not in proficient:
            proficient.append(skill)

    return [SkillProficiency(skill_name=s, expertise=s in expertise) for s in proficient]


def extract_spells(ddb: dict) -> list[CharacterSpell]:
    """Spells from class, classSpells, race and feat lists, de-duplicated by (name, level).

    Race and feat spells are always prepared; a duplicate seen from one of
    those sources marks the kept entry always prepared whatever the order.
    """
    spells: dict[tuple[str, int], CharacterSpell] = {}
    spell_lists = _dict(ddb.get("spells"))

    def add(spell: Any, always_prepared: bool) -> None:
        spell = _dict(spell)
        definition = _dict(spell.get("definition"))
        name = _str(definition.get("name")) or "Unknown Spell"
        level = _int(definition.get("level"))
        key = (name, level)

        existing = spells.get(key)
        if existing is not None:
            if always_prepared and not existing.always_prepared:
                spells[key] = existing.model_copy(update={"always_prepared": True})
            return

        spells[key] = CharacterSpell(
            name=name,
            level=level,
            is_prepared=bool(spell.get("prepared")),
            always_prepared=always_prepared,
        )

    for spell in _list(spell_lists.get("class")):
        add(spell, False)
    for group in _list(ddb.get("classSpells")):
        for spell in _list(_dict(group).get("spells")):
            add(spell, False)
    for spell in _list(spell_lists.get("race")):
        add(spell, True)
    for spell in _list(spell_lists.get("feat")):
        add(spell, True)

    return list(spells.values())


def _feature(entry: dict, source: FeatureSource) -> CharacterFeature | None:
    definition = _dict(entry.get("definition"))
    name = _str(definition.get("name"))
    if not name:
        return None
    limited_use = _dict(entry.get("limitedUse"))
    return CharacterFeature(
        name=name,
        source=source,
        description=strip_html(definition.get("description")),
        max_uses=_int(limited_use.get("maxUses")) or None,
        reset_on=RESET_TYPE_MAP.get(_key(limited_use.get("resetType"))),
    )


def extract_features(ddb: dict) -> list[CharacterFeature]:
    """Species traits, primary class features and the background feature."""
    features: list[CharacterFeature] = []

    for trait in _list(_dict(ddb.get("race")).get("racialTraits")):
        feature = _feature(_dict(trait), FeatureSource.SPECIES)
        if feature:
            features.append(feature)

    classes = _list(ddb.get("classes"))
    if classes:
        for class_feature in _list(_dict(classes[0]).get("classFeatures")):
            feature = _feature(_dict(class_feature), FeatureSource.CLASS)
            if feature:
                features.append(feature)

    background = _dict(_dict(ddb.get("background")).get("definition"))
    feature_name = _str(background.get("featureName"))
    if feature_name:
        features.append(CharacterFeature(
            name=feature_name,
            source=FeatureSource.BACKGROUND,
            description=strip_html(background.get("featureDescription")),
        ))

    return features


def _spell_names_by_id(ddb: dict) -> dict[Any, str]:
    spell_lists = _dict(ddb.get("spells"))
    names = {}
    for key in SPELL_GROUP_KEYS:
        for spell in _list(spell_lists.get(key)):
            definition = _dict(_dict(spell).get("definition"))
            spell_id, name = _key(definition.get("id")), _str(definition.get("name"))
            if spell_id and name:
                names[spell_id] = name
    return names


def _feat_option_names(ddb: dict) -> dict[Any, str]:
    names = {}
    for option in _list(_dict(ddb.get("options")).get("feat")):
        definition = _dict(_dict(option).get("definition"))
        option_id, name = _key(definition.get("id")), _str(definition.get("name"))
        if option_id and name:
            names[option_id] = name
    return names


def _feat_choices(
    feat_id: Any,
    choices: list[dict],
    option_names: dict[Any, str],
    spell_names: dict[Any, str],
) -> FeatChoices | None:
    selections = []
    for choice in choices:
        if choice.get("componentId") != feat_id:
            continue
        value = _key(choice.get("optionValue"))
        option_name = None
        if value:
            option_name = spell_names.get(value) or option_names.get(value)
        selections.append(FeatSelection(
            id=_key(choice.get("id")),
            label=_str(choice.get("label")) or None,
            type=_key(choice.get("type")),
            sub_type=_key(choice.get("subType")),
            option_value=value,
            option_name=option_name,
        ))

    if not selections:
        return None

    spells_chosen = [
        s.option_name for s in selections
        if s.option_name and s.label and "spell" in s.label.lower()
    ]
    ability_choice = next(
        (s.option_name for s in selections if s.option_name in ABILITY_LABELS),
        None,
    )
    return FeatChoices(
        selections=selections,
        spells_chosen=spells_chosen or None,
        ability_choice=ability_choice.lower() if ability_choice else None,
    )


def extract_feats(ddb: dict) -> list[CharacterFeat]:
    """Feats with their recorded choices, minus placeholders and background ASI feats."""
    choices = [c for c in _list(_dict(ddb.get("choices")).get("feat")) if isinstance(c, dict)]
    option_names = _feat_option_names(ddb)
    spell_names = _spell_names_by_id(ddb)

    feats: list[CharacterFeat] = []
    for feat in _list(ddb.get("feats")):
        feat = _dict(feat)
        definition = _dict(feat.get("definition"))
        name = _str(definition.get("name"))
        if not name:
            continue
        if name in SKIPPED_FEAT_NAMES or BACKGROUND_ASI_FEAT_PATTERN.search(name):
            logger.debug(f"Skipping feat: {name}")
            continue

        feats.append(CharacterFeat(
            name=name,
            source=FeatSource.BACKGROUND if _is_background_component(feat) else FeatSource.LEVEL,
            choices=_feat_choices(definition.get("id"), choices, option_names, spell_names),
        ))
    return feats


def _ability_option_map(ddb: dict) -> dict[Any, str]:
    """Option id → ability name, from the one choice definition listing ability labels."""
    for definition in _list(_dict(ddb.get("choices")).get("choiceDefinitions")):
        options = [o for o in _list(_dict(definition).get("options")) if isinstance(o, dict)]
        if any(_str(o.get("label")) in ABILITY_LABELS for o in options):
            return {
                _key(o.get("id")): o["label"].lower()
                for o in options if _str(o.get("label")) and _key(o.get("id")) is not None
            }
    return {}


def extract_ability_score_improvements(ddb: dict) -> list[AbilityScoreImprovement]:
    """ASIs chosen for background and level-up ASI feats.

    Each choice attached to an ASI feat is mapped through the ability option
    map; the amount comes from a "+2"/"+3" in the choice label, else 1.
    """
    option_map = _ability_option_map(ddb)
    if not option_map:
        logger.debug("No ability choice definition in export")
    choices = [c for c in _list(_dict(ddb.get("choices")).get("feat")) if isinstance(c, dict)]

    improvements: list[AbilityScoreImprovement] = []
    for feat in _list(ddb.get("feats")):
        feat = _dict(feat)
        definition = _dict(feat.get("definition"))
        if not ASI_FEAT_PATTERN.search(_str(definition.get("name")) or ""):
            continue

        if _is_background_component(feat):
            source, source_type = _background_name(ddb) or "Background", SourceType.BACKGROUND
        else:
            source, source_type = "Ability Score Improvement", SourceType.LEVEL

        for choice in choices:
            if choice.get("componentId") != definition.get("id"):
                continue
            ability = option_map.get(_key(choice.get("optionValue")))
            if not ability:
                continue
            label = _str(choice.get("label")) or ""
            amount = 2 if "+2" in label else 3 if "+3" in label else 1
            improvements.append(AbilityScoreImprovement(
                ability=ability,
                amount=amount,
                source=source,
                source_type=source_type,
            ))

    return improvements


def extract_inventory(ddb: dict) -> list[InventoryEntry]:
    inventory = []
    for item in _list(ddb.get("inventory")):
        item = _dict(item)
        definition = _dict(item.get("definition"))
        name = _str(definition.get("name"))
        if not name:
            continue
        inventory.append(InventoryEntry(
            name=name,
            is_magic_item=bool(definition.get("magic") or definition.get("canAttune") or item.get("isAttuned")),
            quantity=max(_int(item.get("quantity"), 1), 1),
            equipped=bool(item.get("equipped")),
            attuned=bool(item.get("isAttuned")),
        ))
    return inventory


def extract_currency(ddb: dict) -> Currency:
    return Currency(gold=_int(_dict(ddb.get("currencies")).get("gp")))


def extract_senses(ddb: dict) -> list[Sense]:
    """Senses from modifiers, falling back to trait descriptions when there are none."""
    senses: list[Sense] = []
    for mod in _modifiers(ddb, SENSE_SECTIONS):
        if mod.get("type") not in SENSE_MODIFIER_TYPES or _str(mod.get("subType")) not in SENSE_SUBTYPES:
            continue
        sense_range = _int(mod.get("value")) or _int(mod.get("fixedValue"))
        if sense_range > 0:
            senses.append(Sense(sense_type=mod["subType"], range=sense_range))

    if senses:
        return senses

    for trait in _list(ddb.get("traits")):
        trait = _dict(trait)
        description = (_str(trait.get("description")) or "").lower()
        for sense in SENSE_SUBTYPES:
            if sense not in description:
                continue
            match = re.search(rf"{sense}\s+(\d+)", description)
            sense_range = int(match.group(1)) if match else 0
            senses.append(Sense(
                sense_type=sense,
                range=sense_range or DEFAULT_SENSE_RANGE,
                notes=_str(trait.get("name")),
            ))
    return senses


def _class_option_names(ddb: dict, keyword: str) -> list[str]:
    names = []
    for option in _list(_dict(ddb.get("options")).get("class")):
        name = _definition_name(option)
        if name and keyword in name.lower():
            names.append(name)
    return names


def extract_class_specific(ddb: dict) -> dict[str, Any]:
    """Free-form extras for the primary class."""
    classes = _list(ddb.get("classes"))
    if not classes:
        return {}
    primary = _dict(classes[0])
    class_name = (_definition_name(primary) or "").lower()
    level = _int(primary.get("level"))
    data: dict[str, Any] = {}

    if class_name == "wizard":
        data["spellbook"] = [
            name for name in (_definition_name(s) for s in _list(_dict(ddb.get("spells")).get("class")))
            if name
        ]
    elif class_name == "warlock":
        data["invocations"] = _class_option_names(ddb, "invocation")
        pacts = _class_option_names(ddb, "pact of")
        if pacts:
            data["pactType"] = pacts[0]
    elif class_name == "monk":
        data["kiPointsMax"] = level
    elif class_name == "sorcerer":
        data["sorceryPointsMax"] = level
        data["metamagic"] = _class_option_names(ddb, "metamagic")

    return data


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def transform(export: dict, user_id: str | None = None) -> TransformedCharacter:
    """Transform a D&D Beyond export into a ``TransformedCharacter``.

    Accepts the character object or the ``{"data": {...}}`` envelope. Never
    raises for missing or malformed optional sections; the defaults it falls
    back on are listed in ``warnings``.

    Args:
        export: Parsed export JSON. Not mutated.
        user_id: Owner to stamp on the character row, if already known.

    Returns:
        The normalized character.
    """
    export = _dict(export)
    ddb = export["data"] if isinstance(export.get("data"), dict) else export

    core, warnings = extract_character_core(ddb)
    if user_id is not None:
        core = core.model_copy(update={"user_id": user_id})
    transformed = TransformedCharacter(
        character=core,
        skills=extract_skills(ddb),
        spells=extract_spells(ddb),
        features=extract_features(ddb),
        feats=extract_feats(ddb),
        ability_score_improvements=extract_ability_score_improvements(ddb),
        inventory=extract_inventory(ddb),
        currency=extract_currency(ddb),
        senses=extract_senses(ddb),
        class_specific=extract_class_specific(ddb),
        warnings=warnings,
    )

    logger.info(
        f"Transformed character {core.name}: level {core.level}, "
        f"{len(transformed.spells)} spells, {len(transformed.feats)} feats, "
        f"{len(transformed.inventory)} items, {len(warnings)} warnings"
    )
    return transformed
