"""Tests for the command-line interface."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import CALCULATOR_SOURCE

from openrpc_derive.cli import main, setup_parser


def test_parser_defaults():
    args = setup_parser().parse_args([])

    assert args.paths == ["**/*.py"]
    assert args.excludes == []
    assert args.output_dir == ""
    assert args.skip_format is False
    assert args.verbose is False
    assert args.recursive is False


def test_parser_options():
    args = setup_parser().parse_args(
        ["-p", "api", "other/*.py", "-e", "api/old.py", "-o", "out", "--no-format", "-v", "-r"]
    )

    assert args.paths == ["api", "other/*.py"]
    assert args.excludes == ["api/old.py"]
    assert args.output_dir == "out"
    assert args.skip_format is True
    assert args.verbose is True
    assert args.recursive is True


def test_main_writes_outputs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    (tmp_path / "calc.py").write_text(CALCULATOR_SOURCE)
    monkeypatch.chdir(tmp_path)

    assert main(["-p", "calc.py", "--no-format"]) == 0
    assert (tmp_path / "calc_openrpc.py").is_file()


def test_main_without_sources(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)

    assert main(["--no-format"]) == 0


def test_main_reports_located_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture):
    source = """\
from typing import Protocol

from openrpc_derive import document_rpc, rpc


@document_rpc
class Api(Protocol):
    @rpc
    def add(self) -> int: ...

    @rpc(name="add")
    def plus(self) -> int: ...
"""
    (tmp_path / "api.py").write_text(source)
    monkeypatch.chdir(tmp_path)

    assert main(["-p", "api.py", "--no-format"]) == 1
    assert not (tmp_path / "api_openrpc.py").exists()
    assert "api.py:12:5: Api.plus: method name 'add' is already used by 'add'" in caplog.text
