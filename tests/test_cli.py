"""CLI integration smoke tests."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest
from typer.testing import CliRunner

from codesearch import __version__
from codesearch.cli import app

runner = CliRunner()

PARSER_SOURCE = "\n".join(
    [
        "def parse_config(path):",
        "    with open(path) as fh:",
        "        return load_toml(fh.read())",
    ]
)

SERVER_SOURCE = "\n".join(
    [
        "fn start_server(port: u16) {",
        "    let listener = TcpListener::bind((\"0.0.0.0\", port)).unwrap();",
        "    serve(listener);",
        "}",
    ]
)


@pytest.fixture
def source_tree(temp_dir: Path) -> Path:
    root = temp_dir / "repo"
    (root / "src").mkdir(parents=True)
    (root / "node_modules" / "dep").mkdir(parents=True)
    (root / "src" / "config.py").write_text(PARSER_SOURCE, encoding="utf-8")
    (root / "src" / "server.rs").write_text(SERVER_SOURCE, encoding="utf-8")
    (root / "node_modules" / "dep" / "index.js").write_text("module.exports = 1;", encoding="utf-8")
    (root / "README.md").write_text("# not code", encoding="utf-8")
    return root


def _json(result) -> dict:
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_ingest_then_query(source_tree: Path, override_settings) -> None:
    summary = _json(runner.invoke(app, ["ingest", str(source_tree), "--json"]))

    assert summary["schema_id"] == "ingest_summary"
    assert summary["schema_version"] == 1
    assert summary["producer"] == f"code-search-{__version__}"
    datetime.fromisoformat(summary["produced_at"])
    assert summary["total"] == 2
    assert summary["indexed"] == 2
    assert sorted(r["id"] for r in summary["receipts"]) == ["src/config.py:1-3", "src/server.rs:1-4"]

    results = _json(runner.invoke(app, ["query", "parse_config load toml path", "--json", "-k", "1"]))
    assert results["schema_id"] == "query_results"
    assert results["results"][0]["id"] == "src/config.py:1-3"
    assert results["results"][0]["metadata"]["lang"] == "python"

    rust_only = _json(runner.invoke(app, ["query", "parse_config", "--lang", "rust", "--json"]))
    assert [r["id"] for r in rust_only["results"]] == ["src/server.rs:1-4"]

    text = runner.invoke(app, ["query", "start_server port"])
    assert text.exit_code == 0, text.output
    assert "src/server.rs:1-4" in text.stdout


def test_reingest_reports_unchanged(source_tree: Path, override_settings) -> None:
    runner.invoke(app, ["ingest", str(source_tree)])
    summary = _json(runner.invoke(app, ["ingest", str(source_tree), "--json"]))

    assert all(receipt["changed"] is False for receipt in summary["receipts"])
    assert all(receipt["version"] == 1 for receipt in summary["receipts"])


def test_ingest_prune_removes_deleted_files(source_tree: Path, override_settings) -> None:
    runner.invoke(app, ["ingest", str(source_tree)])
    (source_tree / "src" / "server.rs").unlink()

    summary = _json(runner.invoke(app, ["ingest", str(source_tree), "--prune", "--json"]))

    assert summary["pruned"] == ["src/server.rs:1-4"]
    health = _json(runner.invoke(app, ["health", "--json"]))
    assert health["indexed"] == 1


def test_ingest_jsonl_documents(temp_dir: Path, override_settings) -> None:
    docs = temp_dir / "docs.jsonl"
    docs.write_text(
        "\n".join(
            json.dumps(doc)
            for doc in [
                {"id": "snippet-1", "text": "SELECT * FROM users", "metadata": {"lang": "sql"}},
                {"id": "snippet-2", "text": "", "metadata": {}},
            ]
        ),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["ingest", str(docs), "--jsonl"])

    # The empty document is rejected as invalid input.
    assert result.exit_code == 1
    assert "Indexed 1/2 snippets" in result.stdout


def test_delete_command(source_tree: Path, override_settings) -> None:
    runner.invoke(app, ["ingest", str(source_tree)])

    result = runner.invoke(app, ["delete", "src/config.py:1-3", "missing-id"])

    assert result.exit_code == 0, result.output
    assert "Deleted 1 of 2 documents" in result.stdout
    results = _json(runner.invoke(app, ["query", "parse_config", "--json"]))
    assert [r["id"] for r in results["results"]] == ["src/server.rs:1-4"]


def test_query_clamps_k(source_tree: Path, override_settings) -> None:
    override_settings.max_k = 1
    runner.invoke(app, ["ingest", str(source_tree)])

    results = _json(runner.invoke(app, ["query", "server", "-k", "5", "--json"]))

    assert results["clamped"] is True
    assert results["effective_k"] == 1
    assert len(results["results"]) == 1


def test_invalid_query_exits_with_code_1(override_settings) -> None:
    result = runner.invoke(app, ["query", "anything", "-k", "0"])
    assert result.exit_code == 1

    result = runner.invoke(app, ["query", "anything", "--metric", "hamming"])
    assert result.exit_code == 1


def test_missing_path_exits_with_code_1(temp_dir: Path, override_settings) -> None:
    result = runner.invoke(app, ["ingest", str(temp_dir / "nope")])
    assert result.exit_code == 1


def test_rebuild_compact_and_health(source_tree: Path, override_settings) -> None:
    runner.invoke(app, ["ingest", str(source_tree)])
    runner.invoke(app, ["delete", "src/server.rs:1-4"])

    rebuild = runner.invoke(app, ["rebuild"])
    assert rebuild.exit_code == 0, rebuild.output
    assert "Rebuilt index: 1 entries (0 skipped)" in rebuild.stdout

    compact = runner.invoke(app, ["compact"])
    assert compact.exit_code == 0, compact.output
    assert "Compacted store: 1 live records" in compact.stdout

    health = _json(runner.invoke(app, ["health", "--json"]))
    assert health["ready"] is True
    assert health["dimensions"] == 64
    assert health["model"] == "hashing-v1-64"
    assert health["index_backend"] == "ExactIndex"


def test_sqlite_storage_option(source_tree: Path, temp_dir: Path, override_settings) -> None:
    db_path = temp_dir / "vectors.db"
    result = runner.invoke(app, ["--storage", f"sqlite:///{db_path}", "ingest", str(source_tree)])

    assert result.exit_code == 0, result.output
    assert db_path.exists()
    health = _json(runner.invoke(app, ["--storage", f"sqlite:///{db_path}", "health", "--json"]))
    assert health["indexed"] == 2
