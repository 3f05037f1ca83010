"""Pytest configuration and shared sources for openrpc-derive tests."""

from __future__ import annotations

import ast
import textwrap
from typing import Any

import pytest

from openrpc_derive.document import OpenrpcDocument
from openrpc_derive.run import transform_source

CALCULATOR_SOURCE = '''\
"""Calculator service."""

from typing import Protocol

from openrpc_derive import document_rpc, rpc


@document_rpc
class Calculator(Protocol):
    """Basic arithmetic."""

    class Metadata:
        pass

    @rpc(name="calc_add")
    def add(self, a: int, b: int = 0) -> int:
        """Add two integers."""
        ...

    @rpc(meta=True)
    def whoami(self, meta: Metadata, verbose: bool) -> str: ...

    def helper(self) -> None: ...


@document_rpc
class CalculatorImpl(Calculator):
    def add(self, a: int, b: int = 0) -> int:
        return a + b

    def whoami(self, meta, verbose: bool) -> str:
        return "calc"

    def helper(self) -> None:
        return None
'''

CALCULATOR_SCHEMA = {
    "openrpc": "1.2.6",
    "info": {"title": "Calculator", "version": "1.0.0", "description": "Basic arithmetic."},
    "methods": [
        {
            "name": "calc_add",
            "description": "Add two integers.",
            "params": [
                {"name": "a", "required": True, "schema": {"type": "integer"}},
                {"name": "b", "required": False, "schema": {"type": "integer"}},
            ],
            "result": {"name": "result", "required": True, "schema": {"type": "integer"}},
        },
        {
            "name": "whoami",
            "params": [{"name": "verbose", "required": True, "schema": {"type": "boolean"}}],
            "result": {"name": "result", "required": True, "schema": {"type": "string"}},
            "x-requires-metadata": True,
        },
    ],
}


def parse_statement(source: str) -> ast.stmt:
    """Parse the first top-level statement of a (possibly indented) source snippet."""
    return ast.parse(textwrap.dedent(source)).body[0]


def parse_class(source: str) -> ast.ClassDef:
    """Parse the first class declaration of a source snippet."""
    for statement in ast.parse(textwrap.dedent(source)).body:
        if isinstance(statement, ast.ClassDef):
            return statement
    raise AssertionError("No class found in source.")


def exec_source(source: str, namespace: dict[str, Any] | None = None) -> dict[str, Any]:
    """Execute generated source and return its namespace."""
    namespace = {} if namespace is None else namespace
    exec(compile(source, "<derived>", "exec", dont_inherit=True), namespace)
    return namespace


def run_routine(routine: ast.FunctionDef, **globals_: Any) -> OpenrpcDocument:
    """Execute a synthesized schema routine and return the document it builds."""
    module = ast.Module(body=[routine], type_ignores=[])
    source = ast.unparse(ast.fix_missing_locations(module))
    namespace = exec_source(source, {"OpenrpcDocument": OpenrpcDocument, **globals_})
    return namespace[routine.name]()


@pytest.fixture
def calculator_source() -> str:
    """Source of a module with an annotated interface and its implementation."""
    return CALCULATOR_SOURCE


@pytest.fixture
def calculator_module(calculator_source: str) -> dict[str, Any]:
    """Namespace of the derived calculator module."""
    return exec_source(transform_source(calculator_source, "calculator.py"))
