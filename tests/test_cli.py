from __future__ import annotations

import json

import pytest

from candy import __version__
from candy.cli import _build_parser, main


def test_version(capsys):
    with pytest.raises(SystemExit) as info:
        _build_parser().parse_args(["--version"])
    assert info.value.code == 0
    assert capsys.readouterr().out.strip() == f"candy {__version__}"


def test_chat_defaults():
    args = _build_parser().parse_args(["chat", "do the thing"])
    assert args.prompt == "do the thing"
    assert args.provider == "openai"
    assert args.tier == "free"
    assert args.context_mode is None


def test_chat_rejects_unknown_provider():
    with pytest.raises(SystemExit):
        _build_parser().parse_args(["chat", "x", "--provider", "mystery"])


def test_chat_without_key_prints_error_then_done(capsys, monkeypatch, tmp_path):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)

    code = main(["chat", "hello", "--provider", "anthropic", "--project", str(tmp_path)])

    events = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.strip()]
    assert code == 1
    assert events == [
        {"type": "error", "data": "No Anthropic API key provided. Please set it in Settings."},
        {"type": "done"},
    ]
