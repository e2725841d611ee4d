"""
Ability score improvement groups.

ASIs are stored flat, one entry per (ability, amount), but an operator
thinks of them in groups: everything granted by one source, such as a
background or one level-up. A group is identified by its key
``"<source>::<source_type>"``. The functions here are pure transitions over
an immutable ``TransformedCharacter``.
"""

from pydantic import BaseModel, Field

from .models import ABILITY_NAMES, AbilityScoreImprovement, SourceType, TransformedCharacter


class AbilityIncrease(BaseModel):
    """One line of an ASI group: +amount to ability."""
    ability: str
    amount: int = Field(ge=1, le=3)


class AsiGroup(BaseModel):
    """All ASIs sharing one source."""
    source: str = Field(min_length=1)
    source_type: SourceType
    increases: list[AbilityIncrease] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return group_key(self.source, self.source_type)

    def entries(self) -> list[AbilityScoreImprovement]:
        return [
            AbilityScoreImprovement(
                ability=inc.ability,
                amount=inc.amount,
                source=self.source,
                source_type=self.source_type,
            )
            for inc in self.increases
        ]

    def describe(self) -> str:
        parts = ", ".join(f"{inc.ability} +{inc.amount}" for inc in self.increases)
        return f"{self.source} ({self.source_type.value}): {parts}"


def group_key(source: str, source_type: SourceType | str) -> str:
    return f"{source}::{SourceType(source_type).value}"


def group_improvements(improvements: list[AbilityScoreImprovement]) -> list[AsiGroup]:
    """Group flat ASI entries by source, keeping first-seen order."""
    groups: dict[str, AsiGroup] = {}
    for asi in improvements:
        group = groups.get(asi.group_key)
        if group is None:
            group = AsiGroup(source=asi.source, source_type=asi.source_type)
            groups[asi.group_key] = group
        group.increases.append(AbilityIncrease(ability=asi.ability, amount=asi.amount))
    return list(groups.values())


def _validate(group: AsiGroup) -> None:
    if not group.increases:
        raise ValueError("An ability score improvement group needs at least one ability")
    for inc in group.increases:
        if inc.ability not in ABILITY_NAMES:
            raise ValueError(f"Unknown ability: {inc.ability}")


def _with_improvements(
    transformed: TransformedCharacter,
    improvements: list[AbilityScoreImprovement],
) -> TransformedCharacter:
    return transformed.model_copy(update={"ability_score_improvements": improvements})


def add_group(transformed: TransformedCharacter, group: AsiGroup) -> TransformedCharacter:
    """Append a new group's entries.

    Raises:
        ValueError: If the group is empty or names an unknown ability.
    """
    _validate(group)
    return _with_improvements(
        transformed,
        [*transformed.ability_score_improvements, *group.entries()],
    )


def edit_group(
    transformed: TransformedCharacter,
    key: str,
    group: AsiGroup,
) -> TransformedCharacter:
    """Replace the group ``key`` with ``group``.

    Every entry under ``key`` (and under the edited group's own key, if the
    source was renamed) is removed before the new entries are appended.

    Raises:
        KeyError: If no entry has ``key``.
        ValueError: If the group is empty or names an unknown ability.
    """
    _validate(group)
    if not any(asi.group_key == key for asi in transformed.ability_score_improvements):
        raise KeyError(key)

    replaced = {key, group.key}
    kept = [asi for asi in transformed.ability_score_improvements if asi.group_key not in replaced]
    return _with_improvements(transformed, [*kept, *group.entries()])


def remove_group(transformed: TransformedCharacter, key: str) -> TransformedCharacter:
    """Drop every entry under ``key``.

    Raises:
        KeyError: If no entry has ``key``.
    """
    kept = [asi for asi in transformed.ability_score_improvements if asi.group_key != key]
    if len(kept) == len(transformed.ability_score_improvements):
        raise KeyError(key)
    return _with_improvements(transformed, kept)


def ability_totals(improvements: list[AbilityScoreImprovement]) -> dict[str, int]:
    """Total increase per ability across all groups."""
    totals = {name: 0 for name in ABILITY_NAMES}
    for asi in improvements:
        if asi.ability in totals:
            totals[asi.ability] += asi.amount
    return totals
