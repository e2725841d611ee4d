"""
Exceptions and report models for the character import system.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CharacterImportError(Exception):
    """Raised when a character export cannot be read or fetched.

    Provides a user-facing message explaining what went wrong
    and, where possible, how to fix it.
    """


class ImportReport(BaseModel):
    """Summary of a transformed character, shown before anything is saved."""

    character_name: str = Field(description="Name of the imported character")
    classes: str = Field(default="", description="Class string, e.g. 'Wizard 5'")
    counts: dict[str, int] = Field(
        default_factory=dict,
        description="Number of entries per child collection",
    )
    ability_score_improvements: list[str] = Field(
        default_factory=list,
        description="One line per ASI group, e.g. 'Sage (background): wisdom +1'",
    )
    warnings: list[str] = Field(
        default_factory=list,
        description="Defaults the transformer had to apply",
    )

    @property
    def status(self) -> str:
        return "success_with_warnings" if self.warnings else "success"

    def format(self) -> str:
        """Format the report as a readable text block.

        Returns:
            Multi-line formatted string suitable for a tool response or terminal.
        """
        lines: list[str] = []

        lines.append(f"D&D Beyond Import Preview - {self.character_name}")
        if self.classes:
            lines.append(f"Classes: {self.classes}")
        lines.append(f"Status: {self.status.upper().replace('_', ' ')}")
        lines.append("")

        if self.counts:
            lines.append("Contents:")
            for name, count in self.counts.items():
                lines.append(f"  {name}: {count}")
            lines.append("")

        if self.ability_score_improvements:
            lines.append(f"Ability Score Improvements ({len(self.ability_score_improvements)}):")
            for line in self.ability_score_improvements:
                lines.append(f"  - {line}")
            lines.append("")

        if self.warnings:
            lines.append(f"Warnings ({len(self.warnings)}):")
            for w in self.warnings:
                lines.append(f"  - {w}")
            lines.append("")

        return "\n".join(lines).rstrip()
