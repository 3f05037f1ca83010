"""Tests for transforming modules and running the derivation on files."""

from __future__ import annotations

import argparse
import ast
import os
import subprocess
from pathlib import Path

import pytest
from conftest import CALCULATOR_SCHEMA, CALCULATOR_SOURCE, exec_source

from openrpc_derive import run as run_module
from openrpc_derive.errors import DuplicateNameError, SourceParseError, UnsupportedTargetError
from openrpc_derive.run import (
    GENERATED_SUFFIX,
    find_source_files,
    format_outputs,
    has_derivations,
    output_path_for,
    parse_source,
    run,
    transform_source,
)

PING_SOURCE = '''\
from typing import Protocol

from openrpc_derive import document_rpc, rpc


@document_rpc
class Ping(Protocol):
    @rpc
    def ping(self) -> str: ...
'''

GEO_SOURCE = '''\
from typing import Protocol

from pydantic import BaseModel

from openrpc_derive import document_rpc, rpc


class Point(BaseModel):
    x: float
    y: float


class Line(BaseModel):
    a: Point
    b: Point


@document_rpc
class Geo(Protocol):
    class Tag(BaseModel):
        name: str

    Segment = Line

    @rpc
    def label(self, p: Point, tag: Tag) -> Tag: ...

    @rpc
    def length(self, segment: Segment) -> float: ...
'''

PLAIN_SOURCE = '''\
"""Nothing to derive here."""


class Plain:
    def value(self) -> int:
        return 1
'''


def _args(paths: list[str], **kwargs) -> argparse.Namespace:
    options = {"excludes": [], "output_dir": "", "recursive": False, "skip_format": True}
    options.update(kwargs)
    return argparse.Namespace(paths=paths, **options)


class TestTransformSource:
    """Transformation of whole modules."""

    def test_calculator_round_trip(self, calculator_module):
        assert calculator_module["gen_schema"]().to_dict() == CALCULATOR_SCHEMA
        assert calculator_module["CalculatorImpl"]().schema() == calculator_module["gen_schema"]()

    def test_generated_names(self, calculator_module):
        assert "openrpc_schema_Calculator" in calculator_module
        assert calculator_module["CalculatorImpl"]().add(1, 2) == 3

    def test_docstring_stays_first(self):
        tree = ast.parse(transform_source(CALCULATOR_SOURCE))

        assert ast.get_docstring(tree) == "Calculator service."

    def test_generated_imports_follow_existing_imports(self):
        tree = ast.parse(transform_source(CALCULATOR_SOURCE))
        imports = [ast.unparse(statement) for statement in tree.body if isinstance(statement, ast.ImportFrom)]

        assert imports == [
            "from typing import Protocol",
            "from openrpc_derive import document_rpc, rpc",
            "from openrpc_derive.document import OpenrpcDocument",
            "from openrpc_derive.markers import RpcMetadata",
        ]

    def test_existing_imports_are_not_repeated(self):
        source = "from openrpc_derive.document import OpenrpcDocument\n" + PING_SOURCE
        tree = ast.parse(transform_source(source))
        imports = [ast.unparse(statement) for statement in tree.body if isinstance(statement, ast.ImportFrom)]

        assert imports.count("from openrpc_derive.document import OpenrpcDocument") == 1

    def test_module_without_derivations(self):
        assert transform_source(PLAIN_SOURCE) == ast.unparse(ast.parse(PLAIN_SOURCE)) + "\n"
        assert not has_derivations(parse_source(PLAIN_SOURCE))
        assert has_derivations(parse_source(PING_SOURCE))

    def test_nested_models(self):
        namespace = exec_source(transform_source(GEO_SOURCE, "geo.py"))
        data = namespace["gen_schema"]().to_dict()

        schemas = data["components"]["schemas"]
        assert set(schemas) == {"Point"}

        label, length = data["methods"]
        assert [param["schema"]["title"] for param in label["params"]] == ["Point", "Tag"]
        assert label["result"]["schema"]["properties"] == {"name": {"title": "Name", "type": "string"}}

        segment = length["params"][0]["schema"]
        assert segment["title"] == "Line"
        assert "$defs" not in segment
        assert segment["properties"]["a"] == {"$ref": "#/components/schemas/Point"}
        assert segment["properties"]["b"] == {"$ref": "#/components/schemas/Point"}

    def test_other_frameworks_document_rpc_is_ignored(self):
        source = "import framework\n\n\n@framework.document_rpc\nclass Api:\n    pass\n"

        assert not has_derivations(parse_source(source))
        assert transform_source(source) == ast.unparse(ast.parse(source)) + "\n"

    def test_output_is_deterministic(self):
        assert transform_source(CALCULATOR_SOURCE) == transform_source(CALCULATOR_SOURCE)

    def test_two_interfaces_in_one_module(self):
        source = PING_SOURCE + "\n\n@document_rpc\nclass Pong(Protocol):\n    pass\n"

        with pytest.raises(DuplicateNameError) as exc_info:
            transform_source(source, "ping.py")

        error = exc_info.value
        assert error.filename == "ping.py"
        assert error.format().startswith("ping.py:13:")
        assert "declare one interface per module" in error.message

    def test_unsupported_target_is_located(self):
        source = "from openrpc_derive import document_rpc\n\n\n@document_rpc\ndef handler(): ...\n"

        with pytest.raises(UnsupportedTargetError) as exc_info:
            transform_source(source, "handler.py")

        assert exc_info.value.format() == (
            "handler.py:5:1: @document_rpc only works with interface and implementation class declarations"
        )

    def test_syntax_error(self):
        with pytest.raises(SourceParseError) as exc_info:
            transform_source("class Broken(:\n    pass\n", "broken.py")

        error = exc_info.value
        assert error.filename == "broken.py"
        assert error.lineno == 1
        assert isinstance(error.__cause__, SyntaxError)


class TestOutputPaths:
    """Placement of derived modules."""

    def test_beside_source(self):
        assert output_path_for(os.path.join("api", "calc.py")) == os.path.join("api", f"calc{GENERATED_SUFFIX}")

    def test_output_directory(self):
        assert output_path_for(os.path.join("api", "calc.py"), "out") == os.path.join("out", "calc_openrpc.py")

    def test_output_directory_keeps_structure(self, tmp_path: Path):
        source = tmp_path / "api" / "sub" / "calc.py"
        expected = os.path.join("out", "sub", "calc_openrpc.py")

        assert output_path_for(str(source), "out", str(tmp_path / "api")) == expected


class TestFindSourceFiles:
    """Discovery of source files."""

    @pytest.fixture
    def tree(self, tmp_path: Path) -> Path:
        (tmp_path / "api" / "sub").mkdir(parents=True)
        (tmp_path / "api" / "calc.py").write_text(CALCULATOR_SOURCE)
        (tmp_path / "api" / "calc_openrpc.py").write_text("")
        (tmp_path / "api" / "notes.txt").write_text("")
        (tmp_path / "api" / "sub" / "ping.py").write_text(PING_SOURCE)
        return tmp_path

    def test_directory(self, tree: Path):
        assert find_source_files(["api"], [], str(tree), recursive=False) == [str(tree / "api" / "calc.py")]

    def test_recursive_directory(self, tree: Path):
        assert find_source_files(["api"], [], str(tree), recursive=True) == [
            str(tree / "api" / "calc.py"),
            str(tree / "api" / "sub" / "ping.py"),
        ]

    def test_glob_and_excludes(self, tree: Path):
        found = find_source_files(["**/*.py"], ["api/sub/*.py"], str(tree), recursive=True)

        assert found == [str(tree / "api" / "calc.py")]


class TestRun:
    """Running the derivation on files."""

    def test_writes_beside_sources(self, tmp_path: Path):
        (tmp_path / "api").mkdir()
        (tmp_path / "api" / "calc.py").write_text(CALCULATOR_SOURCE)
        (tmp_path / "api" / "plain.py").write_text(PLAIN_SOURCE)

        written = run(_args(["api"]), str(tmp_path))

        output = tmp_path / "api" / "calc_openrpc.py"
        assert written == [str(output)]
        assert not (tmp_path / "api" / "plain_openrpc.py").exists()

        namespace = exec_source(output.read_text())
        assert namespace["gen_schema"]().to_dict() == CALCULATOR_SCHEMA

    def test_writes_to_output_directory(self, tmp_path: Path):
        (tmp_path / "api" / "sub").mkdir(parents=True)
        (tmp_path / "api" / "calc.py").write_text(CALCULATOR_SOURCE)
        (tmp_path / "api" / "sub" / "ping.py").write_text(PING_SOURCE)

        written = run(_args(["api"], output_dir="out", recursive=True), str(tmp_path))

        assert written == [
            str(tmp_path / "out" / "calc_openrpc.py"),
            str(tmp_path / "out" / "sub" / "ping_openrpc.py"),
        ]
        assert all(Path(path).is_file() for path in written)

    def test_generated_outputs_are_not_derived_again(self, tmp_path: Path):
        (tmp_path / "calc.py").write_text(CALCULATOR_SOURCE)

        run(_args(["*.py"]), str(tmp_path))
        written = run(_args(["*.py"]), str(tmp_path))

        assert written == [str(tmp_path / "calc_openrpc.py")]

    def test_stops_at_first_error(self, tmp_path: Path):
        (tmp_path / "broken.py").write_text("from openrpc_derive import document_rpc\n\n@document_rpc\nx = 1\n")

        with pytest.raises(SourceParseError) as exc_info:
            run(_args(["broken.py"]), str(tmp_path))

        assert exc_info.value.filename == str(tmp_path / "broken.py")
        assert not (tmp_path / "broken_openrpc.py").exists()


class TestFormatOutputs:
    """Formatting of derived modules with ruff."""

    def test_missing_ruff_keeps_raw_output(self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture):
        def missing(*args, **kwargs):
            raise FileNotFoundError("ruff")

        monkeypatch.setattr(run_module.subprocess, "run", missing)

        assert format_outputs("x  =  1\n") == "x  =  1\n"
        assert "ruff not found" in caplog.text

    def test_failing_ruff_keeps_raw_output(self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture):
        def failing(command, **kwargs):
            if kwargs.get("check"):
                raise subprocess.CalledProcessError(2, command, output=b"", stderr=b"error: invalid syntax")
            return subprocess.CompletedProcess(command, 0)

        monkeypatch.setattr(run_module.subprocess, "run", failing)

        assert format_outputs("x  =  1\n") == "x  =  1\n"
        assert "invalid syntax" in caplog.text
