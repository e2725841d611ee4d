"""Tests for the dnd-archive command line."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from dnd_archive.cli import build_parser, main


@pytest.fixture
def export_file(tmp_path, sample_export):
    path = tmp_path / "character.json"
    path.write_text(json.dumps(sample_export), encoding="utf-8")
    return path


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Local JSON store in a temp dir, with no hosted store configured."""
    directory = tmp_path / "data"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DND_ARCHIVE_DATA_DIR", str(directory))
    monkeypatch.setenv("DND_ARCHIVE_STORE_URL", "unset")
    monkeypatch.delenv("DND_ARCHIVE_STORE_URL")
    return directory


def run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestParser:

    def test_insert_defaults(self):
        args = build_parser().parse_args(["insert", "character.json"])

        assert args.user_id is None
        assert not args.stop_on_error

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCommands:

    def test_preview(self, export_file, data_dir, capsys):
        assert run(["preview", str(export_file)]) == 0

        out = capsys.readouterr().out
        assert "D&D Beyond Import Preview - Elira Quill" in out
        assert "Sage (background): wisdom +1" in out

    def test_missing_file_treated_as_url(self, data_dir, capsys):
        assert run(["preview", "no-such-file.json"]) == 1
        assert "Invalid D&D Beyond character URL or ID" in capsys.readouterr().err

    def test_insert_with_user_id(self, export_file, data_dir, capsys):
        assert run(["insert", str(export_file), "--user-id", "user-1"]) == 0

        characters = json.loads((data_dir / "characters.json").read_text(encoding="utf-8"))
        assert characters[0]["user_id"] == "user-1"
        assert characters[0]["name"] == "Elira Quill"
        assert "spell: Fireball" in capsys.readouterr().out

    def test_insert_without_user(self, export_file, data_dir, capsys):
        assert run(["insert", str(export_file)]) == 1
        assert "Not authenticated" in capsys.readouterr().err

    def test_auto_import(self, export_file, data_dir, wiki_fetcher, capsys):
        fetcher, _ = wiki_fetcher()

        with patch("dnd_archive.cli.WikiFetcher", return_value=fetcher):
            assert run(["auto-import", str(export_file)]) == 0

        out = capsys.readouterr().out
        assert "spells: 2 imported, 0 failed" in out
        assert "✅ Wand of Magic Missiles" in out
        assert (data_dir / "feats.json").exists()

    def test_auto_import_failures_exit_non_zero(self, export_file, data_dir, wiki_fetcher, capsys):
        fetcher, _ = wiki_fetcher({})

        with patch("dnd_archive.cli.WikiFetcher", return_value=fetcher):
            assert run(["auto-import", str(export_file)]) == 1

        assert "❌ Alert" in capsys.readouterr().out

    def test_import_spells(self, data_dir, capsys):
        result = AsyncMock()
        result.return_value.imported = ["Acid Arrow"]
        result.return_value.skipped = []

        with patch("dnd_archive.cli.import_spells_from_url", new=result):
            assert run(["import-spells", "https://example.com/spells.json"]) == 0

        assert "✅ Imported 1 spells" in capsys.readouterr().out
        assert result.await_args.args[1] == "https://example.com/spells.json"
