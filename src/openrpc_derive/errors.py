"""Errors raised while deriving OpenRPC schemas from annotated source."""

from __future__ import annotations

import ast


class DeriveError(Exception):
    """Base class for all derivation errors.

    Every error carries the syntax node it was raised for, so that callers can
    point at the offending source location.

    Attributes:
        message (str): The bare error message.
        node (ast.AST | None): The offending node, if known.
        lineno (int | None): Line of the offending node.
        col_offset (int | None): Column of the offending node.
    """

    def __init__(self, message: str, node: ast.AST | None = None):
        """Initialize the error.

        Args:
            message (str): The error message.
            node (ast.AST | None, optional): The offending node. Defaults to None.
        """
        super().__init__(message)
        self.message = message
        self.node = node
        self.lineno: int | None = getattr(node, "lineno", None)
        self.col_offset: int | None = getattr(node, "col_offset", None)
        self.filename: str | None = None

    def __str__(self) -> str:
        """The message, prefixed with the location if one is known."""
        if self.lineno is None:
            return self.message
        return f"{self.lineno}:{(self.col_offset or 0) + 1}: {self.message}"

    def format(self, filename: str | None = None) -> str:
        """Format the error as a compiler-style diagnostic.

        Args:
            filename (str | None, optional): The file the error belongs to. Defaults to the recorded file name.

        Returns:
            str: The diagnostic, e.g. `api.py:12:5: method name 'add' is already used by 'plus'`.
        """
        filename = filename or self.filename or "<unknown>"
        return f"{filename}:{self}"


class MalformedAttributeError(DeriveError):
    """An `@rpc` annotation has arguments that do not match the expected shape."""


class DuplicateNameError(DeriveError):
    """Two annotated procedures (or two interfaces of one module) expose the same name."""


class SignatureError(DeriveError):
    """A procedure signature cannot be described by a schema."""


class InterfaceError(DeriveError):
    """An interface declaration is structurally invalid."""


class ReservedNameError(DeriveError):
    """A declaration already defines a member that derivation has to generate."""


class NotAnInterfaceImplementationError(DeriveError):
    """A class passed as implementation does not implement a named interface."""


class UnsupportedTargetError(DeriveError):
    """`@document_rpc` is attached to something that is neither an interface nor an implementation."""


class SourceParseError(DeriveError):
    """The source text could not be parsed."""

    @classmethod
    def from_syntax_error(cls, error: SyntaxError) -> SourceParseError:
        """Wrap a `SyntaxError` raised by the parser.

        Args:
            error (SyntaxError): The parser error.

        Returns:
            SourceParseError: The wrapped error, located where the parser failed.
        """
        wrapped = cls(error.msg or "invalid syntax")
        wrapped.lineno = error.lineno
        wrapped.col_offset = (error.offset - 1) if error.offset else None
        return wrapped
