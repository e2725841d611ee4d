"""
Read, parse and fetch D&D Beyond character exports.

Pasted JSON, local files and the public character service all return the
same thing: the character object, with any ``{"data": {...}}`` envelope
removed.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx

from ..base import CharacterImportError
from .schema import DDB_API_BASE_URL, DDB_CHARACTER_URL_PATTERN


def unwrap_export(data: Any) -> dict:
    """Strip the ``data`` envelope and check the result is a JSON object.

    Raises:
        CharacterImportError: If the document is not an object.
    """
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        data = data["data"]

    if not isinstance(data, dict):
        raise CharacterImportError(
            f"Invalid character export: expected JSON object, got {type(data).__name__}"
        )
    return data


def parse_character_json(text: str) -> dict:
    """
    Parse pasted character export JSON.

    Args:
        text: Raw JSON text as copied from D&D Beyond

    Returns:
        The character object

    Raises:
        CharacterImportError: If the text is empty, not valid JSON, or not an object
    """
    if not text or not text.strip():
        raise CharacterImportError("Paste the character JSON before importing.")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CharacterImportError(f"Invalid JSON: {e}") from None

    return unwrap_export(data)


def read_character_file(file_path: str | Path) -> dict:
    """
    Read a local D&D Beyond character JSON file.

    Raises:
        CharacterImportError: If the file is missing, unreadable, or not valid JSON
    """
    path = Path(file_path)

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise CharacterImportError(
            f"Character file not found: {file_path}"
        ) from None
    except json.JSONDecodeError as e:
        raise CharacterImportError(
            f"Invalid JSON in character file: {e}"
        ) from None
    except OSError as e:
        raise CharacterImportError(
            f"Failed to read character file: {e}"
        ) from None

    return unwrap_export(data)


def extract_character_id(url_or_id: str) -> int:
    """
    Extract character ID from a D&D Beyond URL or bare numeric ID.

    Accepts:
    - Full URL: https://www.dndbeyond.com/characters/12345678
    - Builder URL: https://www.dndbeyond.com/characters/12345678/builder
    - Bare ID: "12345678"

    Raises:
        CharacterImportError: If the input doesn't match expected format
    """
    match = DDB_CHARACTER_URL_PATTERN.search(url_or_id)
    if match:
        return int(match.group(1))

    try:
        return int(url_or_id.strip())
    except ValueError:
        raise CharacterImportError(
            f"Invalid D&D Beyond character URL or ID: '{url_or_id}'. "
            "Expected format: https://www.dndbeyond.com/characters/12345678 or just the numeric ID."
        ) from None


async def fetch_character(url_or_id: str, timeout: float = 10.0) -> dict:
    """
    Fetch a public character from the D&D Beyond character service.

    Raises:
        CharacterImportError: If the fetch fails, the character is missing, or it is private
    """
    character_id = extract_character_id(url_or_id)
    api_url = f"{DDB_API_BASE_URL}/{character_id}"

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(api_url, timeout=timeout)

            if response.status_code == 404:
                raise CharacterImportError(
                    f"Character not found. Check the ID or URL: {character_id}"
                )
            elif response.status_code == 403:
                raise CharacterImportError(
                    "Character is private. Set it to Public on D&D Beyond, or paste the JSON export."
                )

            response.raise_for_status()
            data = response.json()

    except httpx.TimeoutException:
        raise CharacterImportError(
            "D&D Beyond is not responding. Try again later or paste the JSON export."
        ) from None
    except httpx.HTTPStatusError as e:
        raise CharacterImportError(
            f"D&D Beyond returned HTTP {e.response.status_code}: {e.response.reason_phrase}"
        ) from None
    except httpx.RequestError as e:
        raise CharacterImportError(
            f"Failed to connect to D&D Beyond: {e}"
        ) from None
    except ValueError as e:
        raise CharacterImportError(
            f"Invalid response from D&D Beyond: {e}"
        ) from None

    return unwrap_export(data)
