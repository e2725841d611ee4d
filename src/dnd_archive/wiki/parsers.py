"""
Wiki page parsers for spells, magic items and feats.

Each parser reads the page title and the plain text of the content area,
then mines that text with label and keyword patterns. The spell parser is
strict about the fields a spell row requires; the item and feat parsers
are permissive and fail only when the page has no content at all.
"""

import logging
import re

from bs4 import BeautifulSoup, Tag

from ..models import FeatRecord, MagicItemRecord, ReferenceKind, SpellRecord
from .benefits import BenefitExtractor, default_extractor, is_likely_spell_name

logger = logging.getLogger(__name__)


MAX_NAME_LENGTH = 255

SPELL_SCHOOLS = (
    "Abjuration", "Conjuration", "Divination", "Enchantment",
    "Evocation", "Illusion", "Necromancy", "Transmutation",
)

ITEM_CATEGORIES = ("Weapon", "Armor", "Potion", "Ring", "Rod", "Staff", "Wand", "Wondrous item")

ITEM_RARITIES = ("Common", "Uncommon", "Rare", "Very Rare", "Legendary", "Artifact")

_TITLE_SUFFIX = " - D&D 2024"

_SPELL_LEVEL = re.compile(r"(?:^|\n)\s*(Cantrip|\d+)(?:st|nd|rd|th)?(?:-?level)?", re.I)
_SPELL_LEVEL_ALT = re.compile(r"\bLevel\s*(\d+)\b", re.I)
_SPELL_SCHOOL = re.compile(rf"({'|'.join(SPELL_SCHOOLS)})", re.I)
_HIGHER_LEVELS = re.compile(r"At Higher Levels[:\s]*(.+?)(?=\n\n|\*\*|Available|$)", re.I | re.S)
_HIGHER_SLOT = re.compile(r"Using a Higher-Level Spell Slot\.?\s*(.+?)(?=\n\n|\*\*|Available|$)", re.I | re.S)

_ITEM_TYPE = re.compile(rf"(?:^|\n)({'|'.join(ITEM_CATEGORIES)})(?:\s*\(([^)]+)\))?", re.I)
_ITEM_RARITY = re.compile(rf"({'|'.join(ITEM_RARITIES)})", re.I)
_ATTUNEMENT_BY = re.compile(r"requires attunement by ([^.\n]+)", re.I)
_ATTUNEMENT_LINE = re.compile(r"requires attunement[^\n]*", re.I)

_PREREQUISITE = re.compile(r"Prerequisites?:\s*([^\n]+)", re.I)
_SPELL_LINK = re.compile(r"/(spell:|spell/)", re.I)


class ParseError(Exception):
    """Raised when a wiki page cannot be turned into a reference record."""
    pass


class WikiPage:
    """Title and content text of a wiki page."""

    def __init__(self, html: str):
        self.soup = BeautifulSoup(html, "html.parser")
        self.content = self.soup.select_one("#page-content") or self.soup.body
        if self.content is None and self.soup.contents:
            # Fragment without <body>; treat the whole document as content
            self.content = self.soup
        self.title = self._title()

    def _title(self) -> str:
        heading = self.soup.select_one(".page-title") or self.soup.find("h1")
        if heading is not None and heading.get_text(strip=True):
            return heading.get_text().strip()
        if self.soup.title and self.soup.title.string:
            return self.soup.title.string.replace(_TITLE_SUFFIX, "").replace(" - ", "").strip()
        return ""

    @property
    def text(self) -> str:
        """Text of the content area, with line breaks kept as newlines."""
        if self.content is None:
            raise ParseError("Could not find page content")
        for br in self.content.find_all("br"):
            br.replace_with("\n")
        return self.content.get_text()

    def linked_spell_names(self) -> list[str]:
        """Text of links in the content area that point at spell pages."""
        if not isinstance(self.content, Tag):
            return []
        names = []
        for link in self.content.find_all("a", href=True):
            if not _SPELL_LINK.search(link["href"]):
                continue
            name = link.get_text().strip()
            if is_likely_spell_name(name):
                names.append(name)
        return names


def _match_or_none(pattern: str, text: str) -> str | None:
    match = re.search(pattern, text, re.I)
    return match.group(1).strip() if match and match.group(1).strip() else None


def _spell_level(text: str) -> int:
    match = _SPELL_LEVEL.search(text) or _SPELL_LEVEL_ALT.search(text)
    if not match:
        return 0
    token = match.group(1)
    if token.lower() == "cantrip":
        return 0
    return int(token)


def _spell_description(text: str) -> str:
    """Text between the Duration line and the upcast section (or the end)."""
    duration_index = text.find("Duration:")
    if duration_index <= 0:
        return ""

    after = text[duration_index:]
    start = after.find("\n") + 1
    if start == 0:
        return ""
    ends = [i for i in (after.find("At Higher Levels"), after.find("Using a Higher-Level Spell Slot")) if i > 0]
    end = min(ends) if ends else len(after)
    return after[start:end].strip()


def _higher_levels(text: str) -> str | None:
    match = _HIGHER_LEVELS.search(text) or _HIGHER_SLOT.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return None


def parse_spell_html(html: str) -> SpellRecord:
    """Parse a spell page.

    Raises:
        ParseError: If the name or description is missing, or the level
            falls outside 0-9.
    """
    page = WikiPage(html)
    text = page.text
    title = page.title

    school = _SPELL_SCHOOL.search(text)
    level = _spell_level(text)
    description = _spell_description(text)

    if not title:
        raise ParseError("Failed to extract spell name from page")
    if not description:
        raise ParseError(f'Cannot parse spell "{title}": missing or invalid description')
    if not 0 <= level <= 9:
        raise ParseError(f'Cannot parse spell "{title}": invalid level {level} (must be 0-9)')

    name = title[:MAX_NAME_LENGTH]
    if name != title:
        logger.warning(f"Spell name truncated from {len(title)} to {MAX_NAME_LENGTH} chars: {title!r}")

    return SpellRecord(
        name=name,
        level=level,
        school=school.group(1) if school else None,
        casting_time=_match_or_none(r"Casting Time:\s*([^\n]+)", text),
        range=_match_or_none(r"Range:\s*([^\n]+)", text),
        components=_match_or_none(r"Components?:\s*([^\n]+)", text),
        duration=_match_or_none(r"Duration:\s*([^\n]+)", text),
        description=description,
        higher_levels=_higher_levels(text),
    )


def parse_item_html(html: str) -> MagicItemRecord:
    """Parse a magic item page.

    Raises:
        ParseError: If the page has no content area or no name.
    """
    page = WikiPage(html)
    text = page.text
    if not page.title:
        raise ParseError("Failed to extract item name from page")

    type_match = _ITEM_TYPE.search(text)
    item_type = None
    if type_match:
        item_type = type_match.group(1)
        if type_match.group(2):
            item_type = f"{item_type} ({type_match.group(2)})"

    rarity_match = _ITEM_RARITY.search(text)
    rarity = rarity_match.group(1) if rarity_match else None

    requires_attunement = None
    by_match = _ATTUNEMENT_BY.search(text)
    if by_match:
        requires_attunement = by_match.group(1).strip()
    elif re.search(r"requires attunement", text, re.I):
        requires_attunement = "Yes"

    description = text
    if rarity_match:
        description = text[rarity_match.end():]
    attunement_line = _ATTUNEMENT_LINE.search(description)
    if attunement_line:
        description = description[attunement_line.end():]

    return MagicItemRecord(
        name=page.title,
        type=item_type,
        rarity=rarity,
        requires_attunement=requires_attunement,
        description=description.strip(),
        properties=None,
    )


def parse_feat_html(html: str, extractor: BenefitExtractor = default_extractor) -> FeatRecord:
    """Parse a feat page, including its structured benefits.

    Raises:
        ParseError: If the page has no content area or no name.
    """
    page = WikiPage(html)
    text = page.text
    if not page.title:
        raise ParseError("Failed to extract feat name from page")

    prerequisites = None
    description = text.strip()
    prereq_match = _PREREQUISITE.search(text)
    if prereq_match and prereq_match.group(1).strip():
        prerequisites = prereq_match.group(1).strip()
        description = text[prereq_match.end():].strip()

    try:
        benefits = extractor.extract(description, page.linked_spell_names())
    except Exception as e:
        logger.warning(f"Benefit extraction failed for feat {page.title!r}: {e}")
        benefits = None

    return FeatRecord(
        name=page.title,
        prerequisites=prerequisites,
        description=description,
        benefits=benefits,
    )


PARSERS = {
    ReferenceKind.SPELLS: parse_spell_html,
    ReferenceKind.ITEMS: parse_item_html,
    ReferenceKind.FEATS: parse_feat_html,
}


def parse_reference_html(kind: ReferenceKind, html: str) -> SpellRecord | MagicItemRecord | FeatRecord:
    """Dispatch to the parser for ``kind``."""
    return PARSERS[kind](html)
