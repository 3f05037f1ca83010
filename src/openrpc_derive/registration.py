"""Collection of the schema-annotated procedures of an interface declaration.

The registrations produced here are the only input of the schema synthesizer,
and carry the positions needed by the interface rewriter to strip annotations.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass
from typing import Union

from openrpc_derive.attr import ParsedAttribute, ProcedureDef, RpcAttribute, parse_attribute
from openrpc_derive.errors import DuplicateNameError, MalformedAttributeError, SignatureError
from openrpc_derive.helper import has_decorator

logger = logging.getLogger(__name__)

_NON_INSTANCE_DECORATORS = ("staticmethod", "classmethod")


@dataclass(frozen=True)
class SchemaParameter:
    """A parameter as it appears in the schema.

    Attributes:
        name: The parameter name.
        annotation: The declared type annotation, if any.
        required: False, if the parameter has a default value.
    """

    name: str
    annotation: ast.expr | None
    required: bool = True


@dataclass(frozen=True)
class RegisteredMethod:
    """An annotated procedure, paired with its parsed annotation.

    Attributes:
        index: Position of the procedure in the interface body.
        procedure: The original procedure declaration.
        attr: The parsed annotation.
        params: The schema-visible parameters, without `self` and the metadata argument.
    """

    index: int
    procedure: ProcedureDef
    attr: ParsedAttribute
    params: tuple[SchemaParameter, ...]

    @property
    def declared_name(self) -> str:
        """The name of the procedure in the source."""
        return self.procedure.name

    @property
    def exposed_name(self) -> str:
        """The name of the method in the schema."""
        kind = self.attr.kind
        if isinstance(kind, RpcAttribute):
            return kind.name_override or self.declared_name
        raise AssertionError(kind)


@dataclass(frozen=True)
class StandardRegistration:
    """A method that is called with parameters and answers with a result."""

    method: RegisteredMethod
    has_metadata: bool


# Closed set of registration variants. The synthesizer handles each one explicitly.
MethodRegistration = Union[StandardRegistration]


def _schema_parameters(procedure: ProcedureDef, has_metadata: bool) -> tuple[SchemaParameter, ...]:
    """Extract the schema-visible parameters of a procedure.

    Args:
        procedure (ProcedureDef): The procedure declaration.
        has_metadata (bool): Whether the first parameter after `self` is the metadata argument.

    Raises:
        SignatureError: If the signature cannot be described.

    Returns:
        tuple[SchemaParameter, ...]: The parameters, in declaration order.
    """
    name = procedure.name
    args = procedure.args

    if any(has_decorator(procedure, decorator) for decorator in _NON_INSTANCE_DECORATORS):
        raise SignatureError(f"'{name}' must be an instance method", procedure)

    if args.vararg is not None:
        raise SignatureError(
            f"'{name}' takes '*{args.vararg.arg}', variadic parameters cannot be described", args.vararg
        )

    if args.kwarg is not None:
        raise SignatureError(
            f"'{name}' takes '**{args.kwarg.arg}', variadic parameters cannot be described", args.kwarg
        )

    positional = [*args.posonlyargs, *args.args]
    if not positional:
        raise SignatureError(f"'{name}' must take 'self' as its first parameter", procedure)

    # Defaults belong to the trailing positional parameters.
    first_default = len(positional) - len(args.defaults)
    params = [
        SchemaParameter(name=arg.arg, annotation=arg.annotation, required=position < first_default)
        for position, arg in enumerate(positional)
    ][1:]
    params.extend(
        SchemaParameter(name=arg.arg, annotation=arg.annotation, required=default is None)
        for arg, default in zip(args.kwonlyargs, args.kw_defaults)
    )

    if has_metadata:
        if not params:
            raise SignatureError(f"'{name}' is annotated with meta=True, but takes no metadata parameter", procedure)
        params = params[1:]

    return tuple(params)


def _registration_for(method: RegisteredMethod) -> MethodRegistration:
    kind = method.attr.kind
    if isinstance(kind, RpcAttribute):
        return StandardRegistration(method=method, has_metadata=kind.has_metadata)
    raise AssertionError(kind)


def _has_metadata(attr: ParsedAttribute) -> bool:
    kind = attr.kind
    if isinstance(kind, RpcAttribute):
        return kind.has_metadata
    raise AssertionError(kind)


def build_registrations(interface: ast.ClassDef) -> list[MethodRegistration]:
    """Collect the registrations of all annotated procedures of an interface.

    Plain procedures and other members are skipped. Order follows the
    declaration order, and determines the order of methods in the schema.

    Args:
        interface (ast.ClassDef): The interface declaration.

    Raises:
        MalformedAttributeError: If an annotation is malformed.
        SignatureError: If an annotated procedure cannot be described.
        DuplicateNameError: If two procedures expose the same name.

    Returns:
        list[MethodRegistration]: The registrations, in declaration order.
    """
    registrations: list[MethodRegistration] = []
    exposed: dict[str, RegisteredMethod] = {}

    for index, member in enumerate(interface.body):
        if not isinstance(member, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue

        try:
            attr = parse_attribute(member)
        except MalformedAttributeError as e:
            raise MalformedAttributeError(f"{interface.name}.{member.name}: {e.message}", member) from e

        if attr is None:
            logger.debug("Skipping '%s.%s': not annotated with @rpc.", interface.name, member.name)
            continue

        method = RegisteredMethod(
            index=index,
            procedure=member,
            attr=attr,
            params=_schema_parameters(member, _has_metadata(attr)),
        )

        previous = exposed.get(method.exposed_name)
        if previous is not None:
            raise DuplicateNameError(
                f"{interface.name}.{member.name}: method name '{method.exposed_name}' "
                f"is already used by '{previous.declared_name}'",
                member,
            )
        exposed[method.exposed_name] = method

        registrations.append(_registration_for(method))

    logger.debug("Registered %d method(s) of '%s'.", len(registrations), interface.name)
    return registrations
