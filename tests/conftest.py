"""
Pytest configuration and fixtures for dnd-archive tests.
"""

import copy
import sys
from pathlib import Path

import httpx
import pytest

# Add src directory to Python path to allow importing dnd_archive
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from dnd_archive.config import ArchiveConfig  # noqa: E402
from dnd_archive.store.base import Query, StoreResult  # noqa: E402
from dnd_archive.store.memory import InMemoryStore  # noqa: E402
from dnd_archive.wiki.fetcher import WikiFetcher  # noqa: E402


# Configure anyio to only use asyncio (not trio)
@pytest.fixture
def anyio_backend():
    return "asyncio"


BACKGROUND_COMPONENT_TYPE_ID = 12168134

SAMPLE_EXPORT = {
    "id": 12345678,
    "name": "Elira Quill",
    "baseHitPoints": 27,
    "overrideHitPoints": None,
    "race": {
        "fullName": "High Elf",
        "weightSpeeds": {"normal": {"walk": 30}},
        "racialTraits": [
            {
                "definition": {
                    "name": "Fey Ancestry",
                    "description": "<p>You have advantage on saving throws against being <em>charmed</em>.</p>",
                },
            },
        ],
    },
    "background": {
        "definition": {
            "name": "Sage",
            "featureName": "Researcher",
            "featureDescription": "<p>You know where to find lore.</p>",
        },
    },
    "classes": [
        {
            "level": 5,
            "definition": {"name": "Wizard"},
            "subclassDefinition": {"name": "School of Evocation"},
            "classFeatures": [
                {
                    "definition": {"name": "Arcane Recovery", "description": "<p>Recover slots.</p>"},
                    "limitedUse": {"maxUses": 1, "resetType": 2},
                },
            ],
        },
    ],
    "stats": [
        {"id": 1, "value": 8},
        {"id": 2, "value": 14},
        {"id": 3, "value": 14},
        {"id": 4, "value": 18},
        {"id": 5, "value": 12},
        {"id": 6, "value": 10},
    ],
    "modifiers": {
        "race": [
            {"type": "set-base", "subType": "darkvision", "value": 60},
        ],
        "class": [
            {"type": "proficiency", "subType": "intelligence-saving-throws"},
            {"type": "proficiency", "subType": "wisdom-saving-throws"},
            {"type": "proficiency", "subType": "arcana"},
            {"type": "expertise", "subType": "history"},
        ],
        "background": [
            {"type": "proficiency", "subType": "investigation"},
        ],
        "feat": [],
    },
    "spells": {
        "class": [
            {"prepared": True, "definition": {"id": 101, "name": "Fireball", "level": 3}},
            {"prepared": False, "definition": {"id": 102, "name": "Mage Hand", "level": 0}},
        ],
        "race": [],
        "feat": [],
    },
    "feats": [
        {
            "componentTypeId": BACKGROUND_COMPONENT_TYPE_ID,
            "definition": {"id": 9001, "name": "Sage Ability Score Improvements"},
        },
        {
            "componentTypeId": 1,
            "definition": {"id": 9002, "name": "Alert"},
        },
    ],
    "choices": {
        "feat": [
            {"id": "c1", "componentId": 9001, "optionValue": 505, "label": "Choose an Ability Score"},
        ],
        "choiceDefinitions": [
            {
                "id": "asi-options",
                "options": [
                    {"id": 501, "label": "Strength"},
                    {"id": 502, "label": "Dexterity"},
                    {"id": 503, "label": "Constitution"},
                    {"id": 504, "label": "Intelligence"},
                    {"id": 505, "label": "Wisdom"},
                    {"id": 506, "label": "Charisma"},
                ],
            },
        ],
    },
    "inventory": [
        {
            "quantity": 1,
            "equipped": True,
            "isAttuned": False,
            "definition": {"name": "Wand of Magic Missiles", "magic": True, "canAttune": False},
        },
        {
            "quantity": 2,
            "equipped": False,
            "isAttuned": False,
            "definition": {"name": "Dagger", "magic": False, "canAttune": False},
        },
    ],
    "currencies": {"gp": 42},
}


@pytest.fixture
def sample_export() -> dict:
    """Wizard 5 / INT 18 with a Sage background granting Wisdom +1."""
    return copy.deepcopy(SAMPLE_EXPORT)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def fast_config() -> ArchiveConfig:
    """Config with every delay set to zero."""
    return ArchiveConfig(fetch_delay=0.0, fallback_delay=0.0)


SPELL_HTML = """
<html>
<head><title>Fireball - D&D 2024</title></head>
<body>
<div class="page-title"><span>Fireball</span></div>
<div id="page-content">
<p>Level 3 Evocation (Sorcerer, Wizard)</p>
<p>Casting Time: Action<br/>Range: 150 feet<br/>Components: V, S, M (a ball of bat guano and sulfur)<br/>Duration: Instantaneous</p>
<p>A bright streak flashes from you to a point you choose within range and then blossoms into an explosion of flame.</p>
<p><strong>Using a Higher-Level Spell Slot.</strong> The damage increases by 1d6 for each spell slot level above 3.</p>
</div>
</body>
</html>
"""

CANTRIP_HTML = """
<html>
<body>
<div class="page-title"><span>Mage Hand</span></div>
<div id="page-content">
<p>Conjuration Cantrip (Bard, Sorcerer, Warlock, Wizard)</p>
<p>Casting Time: Action<br/>Range: 30 feet<br/>Components: V, S<br/>Duration: 1 minute</p>
<p>A spectral, floating hand appears at a point you choose within range.</p>
</div>
</body>
</html>
"""

ITEM_HTML = """
<html>
<body>
<div class="page-title"><span>Wand of Magic Missiles</span></div>
<div id="page-content">
<p>Wand, Uncommon</p>
<p>This wand has 7 charges. While holding it, you can expend 1 or more of its charges to cast Magic Missile from it.</p>
</div>
</body>
</html>
"""

FEAT_HTML = """
<html>
<body>
<div class="page-title"><span>Fey Touched</span></div>
<div id="page-content">
<p>General Feat</p>
<p>Prerequisite: Level 4+</p>
<p>You gain the following benefits.</p>
<p><strong>Ability Score Increase.</strong> Increase your Intelligence, Wisdom, or Charisma score by 1, to a maximum of 20.</p>
<p><strong>Fey Magic.</strong> Choose one level 1 spell from the Divination or Enchantment school of magic. You always have that spell and the <a href="/spell:misty-step">Misty Step</a> spell prepared.</p>
</div>
</body>
</html>
"""

NOT_FOUND_HTML = """
<html>
<body>
<div id="page-content">
<p>The page does not (yet) exist.</p>
</div>
</body>
</html>
"""


@pytest.fixture
def spell_html() -> str:
    return SPELL_HTML


@pytest.fixture
def cantrip_html() -> str:
    return CANTRIP_HTML


@pytest.fixture
def item_html() -> str:
    return ITEM_HTML


@pytest.fixture
def feat_html() -> str:
    return FEAT_HTML


@pytest.fixture
def not_found_html() -> str:
    return NOT_FOUND_HTML


ALERT_HTML = """
<html>
<body>
<div class="page-title"><span>Alert</span></div>
<div id="page-content">
<p>Origin Feat</p>
<p>You gain the following benefits.</p>
<p><strong>Initiative Proficiency.</strong> When you roll Initiative, you can add your Proficiency Bonus to the roll.</p>
</div>
</body>
</html>
"""

WIKI = "http://dnd2024.wikidot.com"

# Pages for every reference the sample character mentions
SAMPLE_PAGES = {
    f"{WIKI}/spell:fireball": SPELL_HTML,
    f"{WIKI}/spell:mage-hand": CANTRIP_HTML,
    f"{WIKI}/magic-item:wand-of-magic-missiles": ITEM_HTML,
    f"{WIKI}/feat:alert": ALERT_HTML,
}


@pytest.fixture
def wiki_fetcher(fast_config):
    """Factory for a fetcher whose relay serves ``pages`` keyed by target URL.

    Returns the fetcher and the list of target URLs requested, in order.
    Unknown URLs answer 404.
    """
    def make(pages: dict[str, str] = SAMPLE_PAGES) -> tuple[WikiFetcher, list[str]]:
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            target = request.url.params["url"]
            requested.append(target)
            if target in pages:
                return httpx.Response(200, text=pages[target])
            return httpx.Response(404, text="missing")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return WikiFetcher(fast_config, client=client), requested

    return make


LIBRARY = {
    "spells": [
        {"id": "sp-fireball", "name": "Fireball", "level": 3},
        {"id": "sp-mage-hand", "name": "Mage Hand", "level": 0},
    ],
    "magic_items": [{"id": "mi-wand", "name": "Wand of Magic Missiles"}],
    "feats": [{"id": "ft-alert", "name": "Alert"}],
}


class FailingStore(InMemoryStore):
    """In-memory store whose writes to ``fail_tables`` return an error result."""

    def __init__(self, tables=None, fail_tables=()):
        super().__init__(tables)
        self.fail_tables = set(fail_tables)

    async def execute(self, query: Query) -> StoreResult:
        if query.action != "select" and query.table_name in self.fail_tables:
            return StoreResult(error=f"permission denied for table {query.table_name}")
        return await super().execute(query)


@pytest.fixture
def library_store() -> FailingStore:
    """Store holding every reference the sample character mentions."""
    return FailingStore(copy.deepcopy(LIBRARY))
