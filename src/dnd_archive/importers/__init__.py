"""
Character import from external platforms.

Currently supports:
- D&D Beyond (pasted JSON, local JSON file, or public character URL)
"""

from .base import CharacterImportError, ImportReport
from .dndbeyond.fetcher import fetch_character, parse_character_json, read_character_file
from .dndbeyond.transformer import transform

__all__ = [
    "CharacterImportError",
    "ImportReport",
    "fetch_character",
    "parse_character_json",
    "read_character_file",
    "transform",
]
