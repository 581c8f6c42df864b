"""Tests for the CLI entry point."""

from __future__ import annotations

import io
import json

import pytest

import memory_vault.cli as cli_module
from memory_vault.cli import main
from memory_vault.vault import Vault


@pytest.fixture()
def patched_vault(vault: Vault, monkeypatch) -> Vault:
    """
    Patch _open_vault so the CLI uses the ephemeral in-memory vault instead
    of touching the filesystem or loading a model.
    """
    monkeypatch.setattr(cli_module, "_open_vault", lambda args: vault)
    return vault


class TestCLI:
    def test_stats_empty(self, patched_vault, capsys):
        rc = main(["stats"])
        assert rc == 0
        assert capsys.readouterr().out.strip() == "Total: 0  Active: 0  Consolidated: 0"

    def test_save_and_list(self, patched_vault, capsys):
        rc = main(["save", "The user's favourite colour is green.", "--category", "preference"])
        assert rc == 0
        assert capsys.readouterr().out.startswith("Saved [preference] ")

        rc = main(["list"])
        assert rc == 0
        assert "The user's favourite colour is green." in capsys.readouterr().out

    def test_save_reads_stdin(self, patched_vault, capsys, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("Saved through standard input\n"))
        assert main(["save"]) == 0
        assert patched_vault.list_records()[0].text == "Saved through standard input"

    def test_save_missing_text_returns_error(self, patched_vault, capsys, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO(""))
        rc = main(["save"])
        assert rc == 1
        assert "no text provided" in capsys.readouterr().err

    def test_save_duplicate(self, patched_vault, capsys):
        main(["save", "The deploy window is Tuesday."])
        capsys.readouterr()
        rc = main(["save", "The deploy window is Tuesday."])
        assert rc == 0
        assert "Memory already exists" in capsys.readouterr().out
        assert patched_vault.stats().total == 1

    def test_save_rejected(self, patched_vault, capsys):
        rc = main(["save", "hey"])
        assert rc == 1
        assert "Memory rejected" in capsys.readouterr().out

    def test_save_bad_importance(self, patched_vault, capsys):
        rc = main(["save", "A perfectly fine memory", "--importance", "2"])
        assert rc == 1
        assert capsys.readouterr().err.startswith("Error:")

    def test_list_empty(self, patched_vault, capsys):
        assert main(["list"]) == 0
        assert "No memories found." in capsys.readouterr().out

    def test_search_empty(self, patched_vault, capsys):
        assert main(["search", "anything"]) == 0
        assert "No matches." in capsys.readouterr().out

    def test_search_json(self, patched_vault, capsys):
        main(["save", "The user drinks oat milk lattes."])
        capsys.readouterr()
        assert main(["search", "The user drinks oat milk lattes.", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data[0]["text"] == "The user drinks oat milk lattes."
        assert data[0]["access_count"] == 1
        assert "score" in data[0]

    def test_forget(self, patched_vault, capsys):
        main(["save", "To be deleted via CLI."])
        capsys.readouterr()
        main(["list", "--json"])
        mem_id = json.loads(capsys.readouterr().out)[0]["id"]

        assert main(["forget", mem_id]) == 0
        assert capsys.readouterr().out.strip() == "Deleted."
        assert main(["forget", mem_id]) == 0
        assert capsys.readouterr().out.strip() == "Not found."

    def test_export_then_import(self, patched_vault, capsys, tmp_path):
        main(["save", "Exported and imported again."])
        capsys.readouterr()
        main(["export"])
        rows = json.loads(capsys.readouterr().out)
        assert len(rows) == 1

        path = tmp_path / "memories.json"
        path.write_text(json.dumps(rows), encoding="utf-8")
        main(["forget", rows[0]["id"]])
        capsys.readouterr()

        assert main(["import", str(path)]) == 0
        assert capsys.readouterr().out.strip() == "Imported 1 memories."
        assert patched_vault.store.get(rows[0]["id"]) is not None

    def test_import_rejects_non_list(self, patched_vault, capsys, tmp_path):
        path = tmp_path / "memories.json"
        path.write_text('{"text": "not a list"}', encoding="utf-8")
        assert main(["import", str(path)]) == 1

    def test_consolidate(self, patched_vault, capsys):
        assert main(["consolidate"]) == 0
        assert "Done. Merged 0 cluster(s)." in capsys.readouterr().out
