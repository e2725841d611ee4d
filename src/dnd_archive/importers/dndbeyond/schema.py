"""
D&D Beyond JSON schema constants and lookup tables.

These map DDB's internal IDs and slugs to dnd-archive equivalents.
Based on community reverse-engineering of the v5 character-service endpoint.
"""

import re

# ---------------------------------------------------------------------------
# API endpoint
# ---------------------------------------------------------------------------

DDB_API_BASE_URL = "https://character-service.dndbeyond.com/character/v5/character"

# ---------------------------------------------------------------------------
# URL parsing
# ---------------------------------------------------------------------------

# Matches: https://www.dndbeyond.com/characters/12345678[/anything]
DDB_CHARACTER_URL_PATTERN = re.compile(
    r"(?:https?://)?(?:www\.)?dndbeyond\.com/characters/(\d+)"
)

# ---------------------------------------------------------------------------
# Ability score stat IDs
# ---------------------------------------------------------------------------

STAT_ID_MAP: dict[int, str] = {
    1: "strength",
    2: "dexterity",
    3: "constitution",
    4: "intelligence",
    5: "wisdom",
    6: "charisma",
}

ABILITY_LABELS = frozenset({"Strength", "Dexterity", "Constitution", "Intelligence", "Wisdom", "Charisma"})

# ---------------------------------------------------------------------------
# Modifier types and subtypes
# ---------------------------------------------------------------------------

MODIFIER_TYPE_PROFICIENCY = "proficiency"
MODIFIER_TYPE_EXPERTISE = "expertise"
SENSE_MODIFIER_TYPES = ("set-base", "sense")

# Sections scanned for proficiencies; senses also look at items
PROFICIENCY_SECTIONS = ("race", "class", "background", "feat")
SENSE_SECTIONS = ("race", "class", "background", "feat", "item")

SAVING_THROW_SUBTYPES: dict[str, str] = {
    "strength-saving-throws": "strength",
    "dexterity-saving-throws": "dexterity",
    "constitution-saving-throws": "constitution",
    "intelligence-saving-throws": "intelligence",
    "wisdom-saving-throws": "wisdom",
    "charisma-saving-throws": "charisma",
}

# DDB skill slug → display name stored in character_skills
SKILL_SUBTYPES: dict[str, str] = {
    "acrobatics": "Acrobatics",
    "animal-handling": "Animal Handling",
    "arcana": "Arcana",
    "athletics": "Athletics",
    "deception": "Deception",
    "history": "History",
    "insight": "Insight",
    "intimidation": "Intimidation",
    "investigation": "Investigation",
    "medicine": "Medicine",
    "nature": "Nature",
    "perception": "Perception",
    "performance": "Performance",
    "persuasion": "Persuasion",
    "religion": "Religion",
    "sleight-of-hand": "Sleight of Hand",
    "stealth": "Stealth",
    "survival": "Survival",
}

SENSE_SUBTYPES = ("darkvision", "blindsight", "tremorsense", "truesight")

# ---------------------------------------------------------------------------
# Spellcasting ability by class name (lowercase)
# ---------------------------------------------------------------------------

CLASS_SPELLCASTING_ABILITY: dict[str, str] = {
    "wizard": "int",
    "sorcerer": "cha",
    "warlock": "cha",
    "bard": "cha",
    "cleric": "wis",
    "druid": "wis",
    "ranger": "wis",
    "paladin": "cha",
    "artificer": "int",
}

# ---------------------------------------------------------------------------
# Limited-use reset types
# ---------------------------------------------------------------------------

RESET_TYPE_MAP: dict[int, str] = {
    1: "short",
    2: "long",
    3: "long",
    4: "dawn",
}

# ---------------------------------------------------------------------------
# Feats
# ---------------------------------------------------------------------------

# componentTypeId of feats granted by the character's background
BACKGROUND_COMPONENT_TYPE_ID = 12168134

# Placeholder feats that never map to a real feat row
SKIPPED_FEAT_NAMES = frozenset({"Dark Bargain"})

# e.g. "Hermit Ability Score Improvements"
BACKGROUND_ASI_FEAT_PATTERN = re.compile(r"Ability Score Improvements$")

# Level-up and background ASI feats
ASI_FEAT_PATTERN = re.compile(r"Ability Score Improvements?$")

# spells.<key> groups searched when resolving a chosen spell id
SPELL_GROUP_KEYS = ("class", "race", "feat", "item")
