"""Tests for the command-line entry point with git and the model mocked out."""

from unittest.mock import patch

import pytest

from diffscribe import cli
from diffscribe.changes import ChangeStatus, FileChange, StagedChanges
from diffscribe.git_utils import GitError
from diffscribe.llm.base import GenerationCancelled, TransportError


CHANGES = StagedChanges.from_files([
    FileChange("src/api/routes.py", ChangeStatus.MODIFIED,
               diff="--- a/src/api/routes.py\n+++ b/src/api/routes.py\n@@ -1 +1 @@\n-a\n+b\n",
               additions=1, deletions=1),
])


@pytest.fixture(autouse=True)
def isolate(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("DIFFSCRIBE_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setattr(cli, "is_git_repo", lambda: True)
    monkeypatch.setattr(cli.OllamaClient, "verify_model", lambda self: True)


def patch_staged(changes=CHANGES, error=None):
    target = "diffscribe.cli.GitChangeProvider.staged_changes"
    if error is not None:
        return patch(target, side_effect=error)
    return patch(target, return_value=changes)


def test_parser_options():
    args = cli.build_parser().parse_args(["--model", "llama3", "--max-context", "5000",
                                          "--no-stream", "--show-prompt"])

    assert args.model == "llama3"
    assert args.max_context == 5000
    assert args.no_stream and args.show_prompt


def test_prints_message(capsys):
    async def fake_run(pipeline, changes, show_prompt, stream):
        return "fix(api): return 404 for unknown routes"

    with patch_staged(), patch.object(cli, "_run", fake_run):
        code = cli.main(["--no-stream"])

    assert code == cli.EXIT_OK
    assert capsys.readouterr().out == "fix(api): return 404 for unknown routes\n"


def test_not_a_repository(monkeypatch, capsys):
    monkeypatch.setattr(cli, "is_git_repo", lambda: False)

    assert cli.main([]) == cli.EXIT_ERROR
    assert "Not inside a git repository" in capsys.readouterr().err


def test_nothing_staged(capsys):
    with patch_staged(StagedChanges()):
        assert cli.main([]) == cli.EXIT_ERROR

    assert "Nothing staged" in capsys.readouterr().err


def test_git_failure():
    with patch_staged(error=GitError("index locked")):
        assert cli.main([]) == cli.EXIT_ERROR


def test_invalid_budget(capsys):
    with patch_staged():
        assert cli.main(["--max-context", "10"]) == cli.EXIT_ERROR

    assert "Invalid configuration" in capsys.readouterr().err


def test_cancelled_exit_code():
    async def fake_run(*args):
        raise GenerationCancelled("generation cancelled")

    with patch_staged(), patch.object(cli, "_run", fake_run):
        assert cli.main([]) == cli.EXIT_CANCELLED


def test_transport_failure_exit_code(capsys):
    async def fake_run(*args):
        raise TransportError("Ollama HTTP 500: boom")

    with patch_staged(), patch.object(cli, "_run", fake_run):
        assert cli.main([]) == cli.EXIT_ERROR

    assert "Ollama HTTP 500" in capsys.readouterr().err


def test_missing_model(monkeypatch, capsys):
    monkeypatch.setattr(cli.OllamaClient, "verify_model", lambda self: False)

    async def fake_run(*args):
        raise AssertionError("generation must not start")

    with patch_staged(), patch.object(cli, "_run", fake_run):
        assert cli.main(["--model", "nope:7b"]) == cli.EXIT_ERROR

    err = capsys.readouterr().err
    assert "nope:7b" in err
    assert "ollama pull" in err
