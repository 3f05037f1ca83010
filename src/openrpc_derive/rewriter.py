"""Rewriting of `@document_rpc` interfaces and implementations.

An interface is rewritten into three parts:

* the interface itself, with its `@rpc` annotations stripped and a `schema()`
  signature added,
* a companion namespace `openrpc_schema_<Interface>` holding `gen_schema()`,
* a module level re-export `gen_schema = openrpc_schema_<Interface>.gen_schema`.

An implementation gets a `schema()` method that delegates to the companion of
the interface it implements. The companion is found by name only (see
`helper.companion_name`), so the interface has to be processed as well and its
companion has to be reachable from the implementation's module. This is not
checked here.
"""

from __future__ import annotations

import ast
import copy
import logging
from dataclasses import dataclass, field

from openrpc_derive.errors import (
    InterfaceError,
    NotAnInterfaceImplementationError,
    ReservedNameError,
    UnsupportedTargetError,
)
from openrpc_derive.helper import (
    DOCUMENT_MODULE,
    DOCUMENT_RPC_NAME,
    DOCUMENT_TYPE_NAME,
    MARKERS_MODULE,
    METADATA_CAPABILITY_NAME,
    METADATA_TYPE_NAME,
    SCHEMA_ACCESSOR_NAME,
    SCHEMA_FN_NAME,
    companion_name,
    companion_reference,
    dotted_name,
    import_from,
    parse_stmt,
    refers_to,
    scope_names,
    unsubscript,
    without_marker,
)
from openrpc_derive.registration import MethodRegistration, RegisteredMethod, StandardRegistration, build_registrations
from openrpc_derive.schema_gen import synthesize_schema_routine

logger = logging.getLogger(__name__)

PROTOCOL_BASES = ("Protocol",)
ABSTRACT_BASES = ("ABC",)
ABSTRACT_METACLASSES = ("ABCMeta",)
NON_INTERFACE_BASES = ("object", "Generic")
ABC_MODULE = "abc"


@dataclass
class GeneratedCode:
    """Emittable output of processing one declaration.

    Attributes:
        imports: Import statements the body depends on.
        body: The statements replacing the processed declaration.
    """

    imports: list[ast.stmt] = field(default_factory=list)
    body: list[ast.stmt] = field(default_factory=list)

    def to_source(self) -> str:
        """Emit the code as source text."""
        module = ast.Module(body=[*self.imports, *self.body], type_ignores=[])
        return ast.unparse(ast.fix_missing_locations(module))


def _derives_from(declaration: ast.ClassDef, names: tuple[str, ...]) -> bool:
    return any(refers_to(unsubscript(base), name) for base in declaration.bases for name in names)


def is_abstract_base(declaration: ast.ClassDef) -> bool:
    """Check whether a class is an abstract base class, i.e. derives from `ABC` or uses `metaclass=ABCMeta`."""
    if _derives_from(declaration, ABSTRACT_BASES):
        return True

    return any(
        keyword.arg == "metaclass" and any(refers_to(keyword.value, name) for name in ABSTRACT_METACLASSES)
        for keyword in declaration.keywords
    )


def is_interface(declaration: ast.ClassDef) -> bool:
    """Check whether a class declares an interface, i.e. is a `Protocol` or an abstract base class."""
    return _derives_from(declaration, PROTOCOL_BASES) or is_abstract_base(declaration)


def implemented_interface(implementation: ast.ClassDef) -> ast.expr | None:
    """Find the reference to the interface a class implements.

    This is the first base class that is a plain (optionally qualified or
    subscripted) name, ignoring `object` and `Generic`.

    Args:
        implementation (ast.ClassDef): The implementation class.

    Returns:
        ast.expr | None: The `Name` or `Attribute` referring to the interface, or None.
    """
    for base in implementation.bases:
        reference = unsubscript(base)
        if dotted_name(reference) is None:
            continue
        if any(refers_to(reference, name) for name in NON_INTERFACE_BASES):
            continue
        return reference

    return None


def _declares(member: ast.stmt, name: str) -> bool:
    if isinstance(member, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
        return member.name == name
    if isinstance(member, ast.Assign):
        return any(isinstance(target, ast.Name) and target.id == name for target in member.targets)
    if isinstance(member, ast.AnnAssign):
        return isinstance(member.target, ast.Name) and member.target.id == name
    return False


def _defines(declaration: ast.ClassDef, name: str) -> ast.stmt | None:
    return next((member for member in declaration.body if _declares(member, name)), None)


def _check_reserved(declaration: ast.ClassDef) -> None:
    existing = _defines(declaration, SCHEMA_ACCESSOR_NAME)
    if existing is not None:
        raise ReservedNameError(
            f"'{declaration.name}' already defines '{SCHEMA_ACCESSOR_NAME}', which is generated by @document_rpc",
            existing,
        )


def _registered_method(registration: MethodRegistration) -> RegisteredMethod:
    if isinstance(registration, StandardRegistration):
        return registration.method
    raise AssertionError(registration)


def _metadata_type(interface: ast.ClassDef, rewritten: ast.ClassDef) -> ast.ClassDef | None:
    """Find the `Metadata` associated type in the rewritten copy of an interface.

    Args:
        interface (ast.ClassDef): The original interface, for error locations.
        rewritten (ast.ClassDef): The copy that is being rewritten.

    Raises:
        InterfaceError: If `Metadata` is declared more than once, or not as a class.

    Returns:
        ast.ClassDef | None: The `Metadata` class of the copy, or None.
    """
    found: list[int] = []
    for index, member in enumerate(rewritten.body):
        if not _declares(member, METADATA_TYPE_NAME):
            continue
        if isinstance(member, ast.ClassDef):
            found.append(index)
        else:
            raise InterfaceError(
                f"'{interface.name}.{METADATA_TYPE_NAME}' must be declared as a nested class, e.g. "
                f"'class {METADATA_TYPE_NAME}(Base): ...' instead of an alias, so that {METADATA_CAPABILITY_NAME} "
                "can be added to its bases",
                interface.body[index],
            )

    if not found:
        return None

    if len(found) > 1:
        raise InterfaceError(
            f"'{interface.name}' declares '{METADATA_TYPE_NAME}' more than once",
            interface.body[found[1]],
        )

    metadata = rewritten.body[found[0]]
    assert isinstance(metadata, ast.ClassDef)
    return metadata


def _inject_metadata_bound(metadata: ast.ClassDef) -> bool:
    """Add the metadata capability as first base of the `Metadata` class, unless it is already there.

    Returns:
        bool: True, if the capability was added.
    """
    if any(refers_to(unsubscript(base), METADATA_CAPABILITY_NAME) for base in metadata.bases):
        return False

    # First, so a Protocol base stays last in the MRO.
    metadata.bases.insert(0, ast.Name(id=METADATA_CAPABILITY_NAME, ctx=ast.Load()))
    return True


def _schema_signature(abstract: bool) -> ast.stmt:
    signature = f"def {SCHEMA_ACCESSOR_NAME}(self) -> {DOCUMENT_TYPE_NAME}: ..."
    if abstract:
        signature = f"@{ABC_MODULE}.abstractmethod\n{signature}"
    return parse_stmt(signature)


def _companion(interface: ast.ClassDef, routine: ast.FunctionDef) -> ast.ClassDef:
    companion = parse_stmt(f'class {companion_name(interface.name)}:\n    """OpenRPC schema of `{interface.name}`."""')
    assert isinstance(companion, ast.ClassDef)

    routine.decorator_list = [ast.Name(id="staticmethod", ctx=ast.Load())]
    companion.body.append(routine)
    return companion


def rewrite_interface(interface: ast.ClassDef) -> GeneratedCode:
    """Rewrite an interface declaration and generate its schema companion.

    Args:
        interface (ast.ClassDef): The interface declaration. It is not modified.

    Raises:
        DeriveError: If the registrations cannot be built, or the interface is malformed.

    Returns:
        GeneratedCode: The rewritten interface, its companion and the `gen_schema` re-export.
    """
    registrations = build_registrations(interface)
    _check_reserved(interface)

    routine = synthesize_schema_routine(
        registrations,
        title=interface.name,
        description=ast.get_docstring(interface),
        scope=interface.name,
        scope_names=scope_names(interface),
    )

    rewritten = copy.deepcopy(interface)
    rewritten.decorator_list = without_marker(rewritten.decorator_list, DOCUMENT_RPC_NAME)

    for registration in registrations:
        method = _registered_method(registration)
        procedure = rewritten.body[method.index]
        assert isinstance(procedure, (ast.FunctionDef, ast.AsyncFunctionDef))
        del procedure.decorator_list[method.attr.decorator_index]

    injected = False
    metadata = _metadata_type(interface, rewritten)
    if metadata is not None:
        injected = _inject_metadata_bound(metadata)

    abstract = is_abstract_base(interface)
    rewritten.body.append(_schema_signature(abstract))

    imports: list[ast.stmt] = [import_from(DOCUMENT_MODULE, DOCUMENT_TYPE_NAME)]
    if abstract:
        imports.append(ast.Import(names=[ast.alias(name=ABC_MODULE)]))
    if injected:
        imports.append(import_from(MARKERS_MODULE, METADATA_CAPABILITY_NAME))

    reexport = parse_stmt(f"{SCHEMA_FN_NAME} = {companion_name(interface.name)}.{SCHEMA_FN_NAME}")

    logger.debug(
        "Rewrote interface '%s' (%d method(s), metadata bound injected: %s).",
        interface.name,
        len(registrations),
        injected,
    )
    return GeneratedCode(imports=imports, body=[rewritten, _companion(interface, routine), reexport])


def rewrite_implementation(implementation: ast.ClassDef) -> GeneratedCode:
    """Add a `schema()` method to an implementation, delegating to its interface's companion.

    Args:
        implementation (ast.ClassDef): The implementation class. It is not modified.

    Raises:
        NotAnInterfaceImplementationError: If the class does not derive from a named interface.
        ReservedNameError: If the class already defines `schema`.

    Returns:
        GeneratedCode: The rewritten implementation.
    """
    interface_ref = implemented_interface(implementation)
    if interface_ref is None:
        raise NotAnInterfaceImplementationError(
            f"'{implementation.name}' does not implement a named interface",
            implementation,
        )
    _check_reserved(implementation)

    rewritten = copy.deepcopy(implementation)
    rewritten.decorator_list = without_marker(rewritten.decorator_list, DOCUMENT_RPC_NAME)

    companion = ast.unparse(companion_reference(interface_ref))
    rewritten.body.append(
        parse_stmt(
            f"def {SCHEMA_ACCESSOR_NAME}(self) -> {DOCUMENT_TYPE_NAME}:\n    return {companion}.{SCHEMA_FN_NAME}()"
        )
    )

    logger.debug("Rewrote implementation '%s' of '%s'.", implementation.name, ast.unparse(interface_ref))
    return GeneratedCode(imports=[import_from(DOCUMENT_MODULE, DOCUMENT_TYPE_NAME)], body=[rewritten])


def process(declaration: ast.stmt) -> GeneratedCode:
    """Process a declaration annotated with `@document_rpc`.

    Args:
        declaration (ast.stmt): The annotated declaration.

    Raises:
        UnsupportedTargetError: If the declaration is not a class.
        DeriveError: If the interface or implementation cannot be rewritten.

    Returns:
        GeneratedCode: The code replacing the declaration.
    """
    if isinstance(declaration, ast.ClassDef):
        if is_interface(declaration):
            return rewrite_interface(declaration)
        return rewrite_implementation(declaration)

    raise UnsupportedTargetError(
        "@document_rpc only works with interface and implementation class declarations",
        declaration,
    )
