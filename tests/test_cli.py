"""Tests for the command line interface."""

from __future__ import annotations

from pathlib import Path

import pytest
from click.testing import CliRunner

from pivot_coach.main import cli


@pytest.fixture
def env(monkeypatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("PIVOT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("EMBEDDING_PRIMARY_PATH", raising=False)
    monkeypatch.delenv("EMBEDDING_FALLBACK_PATH", raising=False)
    return tmp_path


def test_ingest_requires_embedding_table(env: Path) -> None:
    docs = env / "docs"
    docs.mkdir()

    result = CliRunner().invoke(cli, ["ingest", str(docs)])

    assert result.exit_code != 0
    assert "EMBEDDING_PRIMARY_PATH" in result.output


def test_ingest_then_search(env: Path, monkeypatch) -> None:
    table = env / "fr.vec"
    table.write_text("2 2\nprix 1.0 0.0\ncuisine 0.0 1.0\n", encoding="utf-8")
    monkeypatch.setenv("EMBEDDING_PRIMARY_PATH", str(table))
    docs = env / "docs"
    docs.mkdir()
    (docs / "offre.md").write_text("Le prix de l'offre", encoding="utf-8")
    (docs / "menu.txt").write_text("La cuisine du chef", encoding="utf-8")

    runner = CliRunner()
    ingested = runner.invoke(cli, ["ingest", str(docs)])
    found = runner.invoke(cli, ["search", "prix", "--limit", "1"])

    assert ingested.exit_code == 0, ingested.output
    assert "Stored 2 documents" in ingested.output
    assert found.exit_code == 0, found.output
    assert "Le prix de l'offre" in found.output
    assert "cuisine" not in found.output


def test_contacts_empty_table(env: Path) -> None:
    result = CliRunner().invoke(cli, ["contacts"])
    assert result.exit_code == 0, result.output
    assert "Contacts" in result.output
