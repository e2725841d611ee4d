"""
Feat benefit extraction.

Reads a feat's description text and pulls out the mechanical grants it
mentions: ability score increases, proficiencies, spells, numeric bonuses,
senses and so on. Extraction is best-effort and never raises; anything it
cannot recognize is simply absent from the result.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable

from ..models import (
    ABILITY_NAMES,
    AbilityScoreIncreaseGrant,
    AdvantageGrant,
    Bonuses,
    ExpertiseGrant,
    FeatBenefits,
    FightingStyleGrant,
    HitPointBonus,
    ProficiencyGrant,
    ResistanceGrant,
    ResourceGrant,
    SpellChoice,
    SpellGrant,
    SpellGrants,
    WeaponMasteryGrant,
)

logger = logging.getLogger(__name__)


SPELL_NAME_BLACKLIST = frozenset({
    "Ability Score Increase",
    "Fey Magic",
    "Each",
    "Either",
    "That",
    "These",
})

_SPELL_NAME_CHARS = re.compile(r"^[A-Za-z'\- ]+$")
_CONDITION_WORDS = re.compile(r"condition|charmed|frightened|poisoned|paralyzed|stunned", re.I)

WALKING_SPEED = "equal to walking speed"
ASI_AMOUNTS = range(1, 4)


def is_likely_spell_name(name: str | None) -> bool:
    """Heuristic filter for text that might be a spell name."""
    if not name:
        return False
    cleaned = name.strip()
    if len(cleaned) < 3 or cleaned in SPELL_NAME_BLACKLIST:
        return False
    if not re.search(r"[A-Z]", cleaned):
        return False
    return bool(_SPELL_NAME_CHARS.match(cleaned))


def _split_list(text: str) -> list[str]:
    """Split 'a, b and c' / 'a or b' into trimmed parts."""
    text = re.sub(r"\band\b", ",", text, flags=re.I)
    text = re.sub(r"\bor\b", ",", text, flags=re.I)
    return [part.strip() for part in text.split(",") if part.strip()]


def _extract_list(payload: str, keywords: Iterable[str]) -> list[str]:
    """Lowercase ``payload``, drop category keywords and split into items."""
    cleaned = payload.lower()
    for word in sorted(keywords, key=len, reverse=True):
        cleaned = re.sub(rf"\b{re.escape(word)}\b", "", cleaned)
    cleaned = re.sub(r"\bof your choice\b", "", cleaned, flags=re.I)
    return _split_list(cleaned)


class BenefitExtractor(ABC):
    """Turns a feat description into a (possibly empty) ``FeatBenefits``."""

    @abstractmethod
    def extract(
        self,
        description: str,
        linked_spell_names: Iterable[str] = (),
    ) -> FeatBenefits | None:
        """Extract benefits.

        Args:
            description: Plain-text feat description.
            linked_spell_names: Spell names linked from the feat page, if any.

        Returns:
            The extracted benefits, or None for an empty description.
        """


class RegexBenefitExtractor(BenefitExtractor):
    """Pattern-based extractor tuned to the wording of 2024 rules feats."""

    def extract(
        self,
        description: str,
        linked_spell_names: Iterable[str] = (),
    ) -> FeatBenefits | None:
        if not description:
            return None

        text = description.replace("\r", "").strip()
        benefits = FeatBenefits(
            effects=[line.strip() for line in text.split("\n") if line.strip()],
            ability_score_increase=self.ability_score_increase(text),
            proficiencies=self.proficiencies(text),
            spells=self.spell_grants(text, linked_spell_names),
            bonuses=self.bonuses(text),
            fighting_styles=self.fighting_styles(text),
            expertise=self.expertise(text),
            advantages=self.advantages(text),
            resistances=self.resistances(text),
            senses=self.senses(text),
            movement=self.movement(text),
            weapon_mastery=self.weapon_mastery(text),
            resources=self.resources(text),
        )
        logger.debug(
            "Extracted feat benefits: "
            + ", ".join(sorted(benefits.model_dump(exclude_none=True)))
        )
        return benefits

    def ability_score_increase(self, text: str) -> AbilityScoreIncreaseGrant | None:
        fixed = re.search(r"increase your ([A-Za-z ,or]+?) score by (\d)", text, re.I)
        if fixed:
            raw = re.sub(r"score", "", fixed.group(1), flags=re.I)
            abilities = [a.lower() for a in _split_list(raw) if a.lower() in ABILITY_NAMES]
            amount = int(fixed.group(2))
            if amount not in ASI_AMOUNTS:
                abilities = []
            if len(abilities) == 1:
                return AbilityScoreIncreaseGrant(fixed=abilities[0], amount=amount)
            if len(abilities) > 1:
                return AbilityScoreIncreaseGrant(choice=abilities, amount=amount)

        choice = re.search(r"increase one ability score of your choice by (\d)", text, re.I)
        if choice and int(choice.group(1)) in ASI_AMOUNTS:
            return AbilityScoreIncreaseGrant(choice=list(ABILITY_NAMES), amount=int(choice.group(1)))

        return None

    def proficiencies(self, text: str) -> ProficiencyGrant | None:
        match = re.search(r"gain proficiency (?:with|in) ([^.\n]+)", text, re.I)
        if not match:
            return None

        payload = match.group(1).strip()
        lowered = payload.lower()
        if "skill" in lowered:
            return ProficiencyGrant(skills=_extract_list(payload, ["skill", "skills"]))
        elif "tool" in lowered:
            return ProficiencyGrant(tools=_extract_list(payload, ["tool", "tools"]))
        elif "weapon" in lowered:
            return ProficiencyGrant(weapons=_extract_list(payload, ["weapon", "weapons"]))
        elif "armor" in lowered:
            return ProficiencyGrant(armor=_extract_list(payload, ["armor"]))
        elif "language" in lowered:
            return ProficiencyGrant(languages=_extract_list(payload, ["language", "languages"]))
        return ProficiencyGrant(other=[payload])

    def spell_grants(self, text: str, linked_spell_names: Iterable[str] = ()) -> SpellGrants | None:
        grants: list[SpellGrant] = []
        seen: set[str] = set()

        def add(name: str) -> None:
            name = name.strip()
            if is_likely_spell_name(name) and name not in seen:
                grants.append(SpellGrant(name=name))
                seen.add(name)

        for name in linked_spell_names:
            add(name)
        for match in re.finditer(r"learn the ([A-Z][A-Za-z'\- ]+?) spell", text, re.I):
            add(match.group(1))
        for match in re.finditer(r"cast ([A-Z][A-Za-z'\- ]+?) spell", text, re.I):
            add(match.group(1))

        choice = re.search(
            r"choose (\w+) level (\d+) spell from the ([A-Za-z\s]+?) school", text, re.I
        )
        if choice:
            count = int(choice.group(1)) if choice.group(1).isdigit() else 1
            schools = [
                school.strip().lower()
                for school in re.split(r"\bor\b|,", choice.group(3), flags=re.I)
                if school.strip()
            ]
            grants.append(SpellGrant(choice=SpellChoice(
                count=count or 1,
                level=int(choice.group(2)),
                schools=schools,
            )))

        return SpellGrants(grants=grants) if grants else None

    def bonuses(self, text: str) -> Bonuses | None:
        values: dict = {}

        per_level = re.search(r"hit point maximum (?:increases|increase) by (\d+) for each level", text, re.I)
        again = re.search(
            r"hit point maximum (?:increases|increase) by (\d+)[^.\n]*again whenever you gain a level",
            text, re.I,
        )
        if per_level:
            values["hp"] = HitPointBonus(per_level=int(per_level.group(1)))
        elif again:
            amount = int(again.group(1))
            values["hp"] = HitPointBonus(flat=amount, per_level=amount)
        else:
            flat = re.search(r"hit point maximum (?:increases|increase) by (\d+)", text, re.I)
            if flat:
                values["hp"] = HitPointBonus(flat=int(flat.group(1)))

        patterns = {
            "speed": r"speed (?:increases|increase) by (\d+)",
            "ac": r"\+?(\d+) bonus to AC|AC increases by (\d+)",
            "attack": r"\+?(\d+) bonus to (?:attack|attack rolls)",
            "damage": r"\+?(\d+) bonus to (?:damage|damage rolls)",
            "initiative": r"bonus to initiative (?:rolls )?equal to (\d+)",
        }
        for key, pattern in patterns.items():
            match = re.search(pattern, text, re.I)
            if match:
                values[key] = int(next(g for g in match.groups() if g))

        return Bonuses(**values) if values else None

    def fighting_styles(self, text: str) -> FightingStyleGrant | None:
        if not re.search(r"fighting style", text, re.I):
            return None
        if re.search(r"fighting style of your choice", text, re.I):
            return FightingStyleGrant(choice=True)

        listed = re.search(r"following fighting styles?: ([^.\n]+)", text, re.I)
        if listed:
            options = _extract_list(listed.group(1), ["fighting", "style", "styles"])
            if options:
                return FightingStyleGrant(options=options)
        return FightingStyleGrant(choice=True)

    def expertise(self, text: str) -> ExpertiseGrant | None:
        match = re.search(r"expertise in ([^.\n]+)", text, re.I)
        if not match:
            return None
        skills = _extract_list(match.group(1), ["skill", "skills"])
        if not skills:
            return ExpertiseGrant(other=[match.group(1).strip()])
        return ExpertiseGrant(skills=skills)

    def advantages(self, text: str) -> AdvantageGrant | None:
        clauses = [
            re.sub(r"advantage on", "", m.group(0), count=1, flags=re.I).strip()
            for m in re.finditer(r"advantage on [^.\n]+", text, re.I)
        ]
        if not clauses:
            return None

        grouped: dict[str, list[str]] = {"other": []}
        for clause in clauses:
            if re.search(r"saving throw", clause, re.I):
                grouped.setdefault("saves", []).append(clause)
            elif re.search(r"check", clause, re.I):
                grouped.setdefault("checks", []).append(clause)
            elif _CONDITION_WORDS.search(clause):
                grouped.setdefault("conditions", []).append(clause)
            else:
                grouped["other"].append(clause)
        return AdvantageGrant(**grouped)

    def resistances(self, text: str) -> ResistanceGrant | None:
        damage_types = [
            m.group(1).strip()
            for m in re.finditer(r"resistance to ([a-z\s]+?) damage", text, re.I)
        ]
        return ResistanceGrant(damage_types=damage_types) if damage_types else None

    def senses(self, text: str) -> dict[str, int] | None:
        found = {}
        for sense in ("darkvision", "blindsight", "tremorsense", "truesight"):
            match = re.search(rf"{sense} (?:out to|of)?\s*(\d+)", text, re.I)
            if match:
                found[sense] = int(match.group(1))
        return found or None

    def movement(self, text: str) -> dict[str, int | str] | None:
        found: dict[str, int | str] = {}
        for key, label in (("climb", "climbing"), ("swim", "swimming"), ("fly", "flying")):
            match = re.search(rf"{label} speed (?:of|equal to)?\s*(\d+)?", text, re.I)
            if match:
                found[key] = int(match.group(1)) if match.group(1) else WALKING_SPEED
        return found or None

    def weapon_mastery(self, text: str) -> WeaponMasteryGrant | None:
        if not re.search(r"weapon mastery", text, re.I):
            return None
        match = re.search(r"choose (\w+) weapon mastery", text, re.I)
        if match and match.group(1).isdigit():
            return WeaponMasteryGrant(choice=int(match.group(1)))
        return WeaponMasteryGrant(choice=1)

    def resources(self, text: str) -> list[ResourceGrant] | None:
        found: list[ResourceGrant] = []
        uses = re.search(r"number of times equal to ([^.\n]+)", text, re.I)
        if uses:
            found.append(ResourceGrant(uses=uses.group(1).strip()))
        recharge = re.search(r"regain all expended uses when you finish a ([^.\n]+)", text, re.I)
        if recharge:
            found.append(ResourceGrant(recharge=recharge.group(1).strip()))
        return found or None


default_extractor = RegexBenefitExtractor()
