"""Recognition and parsing of `@rpc` procedure annotations."""

from __future__ import annotations

import ast
from dataclasses import dataclass
from typing import Union

from openrpc_derive.errors import MalformedAttributeError
from openrpc_derive.helper import RPC_ATTRIBUTE_NAME, is_marker

ProcedureDef = Union[ast.FunctionDef, ast.AsyncFunctionDef]

NAME_OPTION = "name"
META_OPTION = "meta"
RETURNS_OPTION = "returns"
DEPRECATED_OPTION = "deprecated"


@dataclass(frozen=True)
class RpcAttribute:
    """A parsed `@rpc(...)` annotation.

    Attributes:
        name_override: The exposed method name, if it differs from the declared one.
        has_metadata: Whether the procedure expects an injected metadata argument.
        returns: Type expression overriding the declared return annotation in the schema.
        deprecated: Whether the method is marked deprecated in the schema.
    """

    name_override: str | None = None
    has_metadata: bool = False
    returns: ast.expr | None = None
    deprecated: bool = False


# Closed set of annotation kinds. Every consumer handles each variant explicitly.
AttributeKind = RpcAttribute


@dataclass(frozen=True)
class ParsedAttribute:
    """The validated annotation of one procedure.

    Attributes:
        decorator: The raw annotation node.
        decorator_index: Position of the annotation in the procedure's decorator list.
        kind: The parsed annotation.
    """

    decorator: ast.expr
    decorator_index: int
    kind: AttributeKind


def _string_option(keyword: ast.keyword) -> str:
    value = keyword.value
    if not isinstance(value, ast.Constant) or not isinstance(value.value, str):
        raise MalformedAttributeError(f"'{keyword.arg}' must be a string literal", value)
    if not value.value:
        raise MalformedAttributeError(f"'{keyword.arg}' must not be empty", value)
    return value.value


def _bool_option(keyword: ast.keyword) -> bool:
    value = keyword.value
    if not isinstance(value, ast.Constant) or not isinstance(value.value, bool):
        raise MalformedAttributeError(f"'{keyword.arg}' must be True or False", value)
    return value.value


def _type_option(keyword: ast.keyword) -> ast.expr:
    source = _string_option(keyword)
    try:
        return ast.parse(source, mode="eval").body
    except SyntaxError as e:
        raise MalformedAttributeError(
            f"'{keyword.arg}' is not a valid type expression: {source!r}", keyword.value
        ) from e


def _parse_rpc(decorator: ast.expr) -> RpcAttribute:
    """Parse the arguments of an `@rpc` decorator.

    Args:
        decorator (ast.expr): The decorator, either `rpc` or a call of it.

    Raises:
        MalformedAttributeError: If the arguments do not match the annotation grammar.

    Returns:
        RpcAttribute: The parsed annotation.
    """
    if not isinstance(decorator, ast.Call):
        return RpcAttribute()

    if decorator.args:
        raise MalformedAttributeError("@rpc only accepts keyword arguments", decorator.args[0])

    options: dict[str, ast.keyword] = {}
    for keyword in decorator.keywords:
        if keyword.arg is None:
            raise MalformedAttributeError("@rpc does not accept '**' arguments", keyword.value)
        if keyword.arg in options:
            raise MalformedAttributeError(f"@rpc argument '{keyword.arg}' given more than once", keyword.value)
        options[keyword.arg] = keyword

    name_override: str | None = None
    has_metadata = False
    returns: ast.expr | None = None
    deprecated = False

    for option, keyword in options.items():
        if option == NAME_OPTION:
            name_override = _string_option(keyword)
        elif option == META_OPTION:
            has_metadata = _bool_option(keyword)
        elif option == RETURNS_OPTION:
            returns = _type_option(keyword)
        elif option == DEPRECATED_OPTION:
            deprecated = _bool_option(keyword)
        else:
            raise MalformedAttributeError(f"unknown @rpc argument '{option}'", keyword.value)

    return RpcAttribute(
        name_override=name_override,
        has_metadata=has_metadata,
        returns=returns,
        deprecated=deprecated,
    )


def parse_attribute(procedure: ProcedureDef) -> ParsedAttribute | None:
    """Find and parse the schema annotation of a procedure.

    Args:
        procedure (ProcedureDef): The procedure declaration.

    Raises:
        MalformedAttributeError: If the annotation is malformed, or given more than once.

    Returns:
        ParsedAttribute | None: The parsed annotation, or None for a plain procedure.
    """
    found: list[tuple[int, ast.expr]] = [
        (index, decorator)
        for index, decorator in enumerate(procedure.decorator_list)
        if is_marker(decorator, RPC_ATTRIBUTE_NAME)
    ]

    if not found:
        return None

    if len(found) > 1:
        raise MalformedAttributeError("@rpc can only be applied once per procedure", found[1][1])

    decorator_index, decorator = found[0]
    return ParsedAttribute(decorator=decorator, decorator_index=decorator_index, kind=_parse_rpc(decorator))
