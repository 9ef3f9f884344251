"""CLI smoke tests against a temporary workspace with the deterministic provider."""

import json

import pytest

from rag_engine.main import build_parser, main


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RAG_WORKSPACE", str(tmp_path / "ws"))
    monkeypatch.setenv("RAG_EMBEDDING_PROVIDER", "deterministic")
    monkeypatch.setenv("RAG_VECTOR_STORE", "local")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    return tmp_path


def test_parser_requires_scope_for_search():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["search", "query"])


def test_no_command_prints_help(workspace, capsys):
    assert main([]) == 1
    assert "usage:" in capsys.readouterr().out


def test_index_then_search(workspace, capsys):
    repo = workspace / "repo"
    repo.mkdir()
    (repo / "app.py").write_text("def greet(name):\n    return 'hi ' + name\n")
    (workspace / "sources.yaml").write_text("root: repo\nsources:\n  - id: app\n    paths: ['**/*.py']\n")

    assert main(["index", "--sources", str(workspace / "sources.yaml"), "--scope", "demo"]) == 0
    assert "processed=1" in capsys.readouterr().out

    assert main(["search", "greet", "--scope", "demo", "--reranker", "none", "--no-dedup"]) == 0
    assert "app.py:1-2" in capsys.readouterr().out

    assert main(["search", "greet", "--scope", "other"]) == 0
    assert "No results." in capsys.readouterr().out


def test_sync_lifecycle_and_stats(workspace, capsys):
    doc = ["--source", "notion", "--id", "p1", "--scope", "kb"]
    assert main(["sync", "add", *doc, "--content", "hello world", "--metadata", '{"team": "hr"}']) == 0
    assert '"chunks_added": 1' in capsys.readouterr().out

    assert main(["sync", "restore", *doc]) == 1
    capsys.readouterr()
    assert main(["sync", "delete", *doc]) == 0
    assert main(["sync", "restore", *doc]) == 0
    capsys.readouterr()

    assert main(["stats"]) == 0
    out = capsys.readouterr().out
    assert '"total_documents": 1' in out
    assert '"notion": 1' in out


def test_sync_batch_file(workspace, capsys):
    ops = [
        {"operation": "add", "source": "drive", "id": "d1", "scope_id": "kb", "content": "one"},
        {"operation": "add", "source": "drive", "id": "d2", "scope_id": "kb", "content": "two"},
    ]
    (workspace / "ops.json").write_text(json.dumps(ops))
    assert main(["sync", "batch", str(workspace / "ops.json")]) == 0
    assert '"successful": 2' in capsys.readouterr().out
    assert main(["cleanup"]) == 0
    assert "Removed 0 expired documents" in capsys.readouterr().out
