"""Tests for the mnemo command line."""
import json
import sys

import pytest

from mnemo.cli import main


pytestmark = pytest.mark.usefixtures("_reset_bridge")


def run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["mnemo", *argv])
    main()


class TestIndexAndSearch:
    def test_index_text_then_search(self, monkeypatch, capsys):
        run(monkeypatch, "index", "--text", "Carol King reviewed OPS-9", "--source-uri", "note://1")
        out = capsys.readouterr().out
        assert "Indexed note://1" in out

        run(monkeypatch, "search", "reviewed", "--json")
        results = json.loads(capsys.readouterr().out)
        assert len(results) == 1
        assert results[0]["source_uri"] == "note://1"

    def test_index_file_uses_file_uri(self, monkeypatch, capsys, tmp_path):
        doc = tmp_path / "notes.md"
        doc.write_text("meeting notes about sqlite")
        run(monkeypatch, "index", str(doc), "--json")
        entry = json.loads(capsys.readouterr().out)
        assert entry["source_uri"] == doc.resolve().as_uri()

    def test_text_requires_source_uri(self, monkeypatch):
        with pytest.raises(SystemExit) as exc:
            run(monkeypatch, "index", "--text", "hello")
        assert exc.value.code == 1

    def test_missing_file(self, monkeypatch, tmp_path, capsys):
        with pytest.raises(SystemExit):
            run(monkeypatch, "index", str(tmp_path / "nope.md"))
        assert "Not a file" in capsys.readouterr().err

    def test_search_no_results(self, monkeypatch, capsys):
        run(monkeypatch, "search", "nothing", "here")
        assert capsys.readouterr().out.strip() == "No results."


class TestPolicy:
    def test_add_and_check(self, monkeypatch, capsys):
        run(monkeypatch, "policy", "deploy", "approval_required", "--channel", "prod")
        assert "deploy -> approval_required" in capsys.readouterr().out
        run(monkeypatch, "check", "deploy", "--channel", "prod")
        assert capsys.readouterr().out.strip() == "approval_required"
        run(monkeypatch, "check", "deploy", "--channel", "dev")
        assert capsys.readouterr().out.strip() == "allow"

    def test_invalid_effect_rejected_by_argparse(self, monkeypatch):
        with pytest.raises(SystemExit) as exc:
            run(monkeypatch, "policy", "deploy", "maybe")
        assert exc.value.code == 2


class TestAdmin:
    def test_status(self, monkeypatch, capsys):
        run(monkeypatch, "status")
        status = json.loads(capsys.readouterr().out)
        assert status["chunks"] == 0

    def test_decay_bounds(self, monkeypatch):
        with pytest.raises(SystemExit):
            run(monkeypatch, "decay", "1.5")

    def test_logs_without_file(self, monkeypatch, capsys):
        run(monkeypatch, "logs")
        assert "No hooks.log found" in capsys.readouterr().out

    def test_logs_tail(self, monkeypatch, capsys, tmp_mnemo_dir):
        (tmp_mnemo_dir / "hooks.log").write_text("\n".join(f"line {i}" for i in range(10)) + "\n")
        run(monkeypatch, "logs", "--lines", "3")
        out = capsys.readouterr().out
        assert "line 9" in out
        assert "line 6" not in out

    def test_summarize_latest_missing(self, monkeypatch, capsys):
        run(monkeypatch, "summarize", "s1", "--latest")
        assert "No summary for session s1" in capsys.readouterr().out

    def test_summarize_turns_file(self, monkeypatch, capsys, tmp_path):
        turns = tmp_path / "turns.json"
        turns.write_text(json.dumps([{"role": "user", "content": "rename the repo to mnemo"}]))
        run(monkeypatch, "summarize", "s1", "--turns-file", str(turns))
        result = json.loads(capsys.readouterr().out)
        assert result["session_id"] == "s1"
        assert result["turns_consumed"] == 1

    def test_no_command_prints_help(self, monkeypatch, capsys):
        run(monkeypatch)
        assert "usage: mnemo" in capsys.readouterr().out
