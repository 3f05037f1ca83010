"""Naming contract and syntax tree helpers shared by the derivation passes."""

from __future__ import annotations

import ast
import copy

RPC_ATTRIBUTE_NAME = "rpc"
DOCUMENT_RPC_NAME = "document_rpc"

COMPANION_PREFIX = "openrpc_schema_"
SCHEMA_FN_NAME = "gen_schema"
SCHEMA_ACCESSOR_NAME = "schema"
METADATA_TYPE_NAME = "Metadata"

PACKAGE_NAME = "openrpc_derive"
DOCUMENT_MODULE = "openrpc_derive.document"
MARKERS_MODULE = "openrpc_derive.markers"

# Modules a qualified annotation may be referenced through, e.g. `@openrpc_derive.rpc`.
MARKER_MODULES = (PACKAGE_NAME, MARKERS_MODULE)
DOCUMENT_TYPE_NAME = "OpenrpcDocument"
METADATA_CAPABILITY_NAME = "RpcMetadata"


def companion_name(interface_name: str) -> str:
    """Derive the name of the companion namespace holding an interface's schema routine.

    This is the contract between the interface and the implementation rewriters:
    both derive the name independently, so an implementation can always refer to
    the companion generated for its interface.

    E.g. `Calculator` becomes `openrpc_schema_Calculator`.

    Args:
        interface_name (str): The name of the interface class.

    Returns:
        str: The companion name.
    """
    return f"{COMPANION_PREFIX}{interface_name}"


def dotted_name(node: ast.expr) -> str | None:
    """Render a chain of names and attributes as a dotted name.

    E.g. `openrpc_derive.rpc` becomes `"openrpc_derive.rpc"`.

    Args:
        node (ast.expr): The expression.

    Returns:
        str | None: The dotted name, or None if the expression is not a plain name chain.
    """
    if isinstance(node, ast.Name):
        return node.id

    if isinstance(node, ast.Attribute):
        prefix = dotted_name(node.value)
        if prefix is None:
            return None
        return f"{prefix}.{node.attr}"

    return None


def refers_to(node: ast.expr, name: str, modules: tuple[str, ...] | None = None) -> bool:
    """Check whether an expression refers to `name`, bare or qualified.

    Args:
        node (ast.expr): The expression.
        name (str): The unqualified name, e.g. `rpc`.
        modules (tuple[str, ...] | None, optional): The modules a qualified name has to come from.
            Defaults to None, which accepts any qualifier.

    Returns:
        bool: True, if the expression is `name`, or `<module>.name` for an accepted module.
    """
    full_name = dotted_name(node)
    if full_name is None:
        return False
    if full_name == name:
        return True
    if modules is None:
        return full_name.endswith(f".{name}")
    return any(full_name == f"{module}.{name}" for module in modules)


def decorator_target(decorator: ast.expr) -> ast.expr:
    """The decorator itself, without call arguments.

    Args:
        decorator (ast.expr): A decorator expression, e.g. `@rpc(name="x")`.

    Returns:
        ast.expr: The called expression, e.g. `rpc`.
    """
    if isinstance(decorator, ast.Call):
        return decorator.func
    return decorator


def is_decorator(decorator: ast.expr, name: str, modules: tuple[str, ...] | None = None) -> bool:
    """Check whether a decorator is `@name` or `@name(...)`, optionally qualified (see `refers_to`)."""
    return refers_to(decorator_target(decorator), name, modules)


def is_marker(decorator: ast.expr, name: str) -> bool:
    """Check whether a decorator is one of the derivation annotations, e.g. `@rpc` or `@openrpc_derive.rpc`.

    Other frameworks' decorators of the same name, e.g. `@app.rpc`, are not annotations.
    """
    return is_decorator(decorator, name, MARKER_MODULES)


def has_decorator(node: ast.AST, name: str, modules: tuple[str, ...] | None = None) -> bool:
    """Check whether a definition carries a given decorator."""
    decorators: list[ast.expr] = getattr(node, "decorator_list", [])
    return any(is_decorator(decorator, name, modules) for decorator in decorators)


def has_marker(node: ast.AST, name: str) -> bool:
    """Check whether a definition carries a given derivation annotation."""
    return has_decorator(node, name, MARKER_MODULES)


def without_marker(decorators: list[ast.expr], name: str) -> list[ast.expr]:
    """Return the decorators, without the derivation annotation `name`."""
    return [decorator for decorator in decorators if not is_marker(decorator, name)]


def scope_names(declaration: ast.ClassDef) -> set[str]:
    """Names of the nested classes and type aliases declared in a class body.

    Annotations of the class's procedures are evaluated in the class body, so
    they can refer to these names without qualification.

    Args:
        declaration (ast.ClassDef): The class declaration.

    Returns:
        set[str]: The declared names.
    """
    names: set[str] = set()
    for member in declaration.body:
        if isinstance(member, ast.ClassDef):
            names.add(member.name)
        elif isinstance(member, ast.Assign):
            names.update(target.id for target in member.targets if isinstance(target, ast.Name))
        elif isinstance(member, ast.AnnAssign) and member.value is not None and isinstance(member.target, ast.Name):
            names.add(member.target.id)
    return names


def unsubscript(node: ast.expr) -> ast.expr:
    """Strip generic parameters, e.g. `Base[T]` becomes `Base`."""
    if isinstance(node, ast.Subscript):
        return node.value
    return node


def companion_reference(interface_ref: ast.expr) -> ast.expr:
    """Build a reference to the companion of an interface, from a reference to the interface.

    Qualified references keep their prefix, so `api.Calculator` becomes
    `api.openrpc_schema_Calculator`.

    Args:
        interface_ref (ast.expr): A `Name` or `Attribute` referring to the interface.

    Raises:
        TypeError: If the reference is neither a name nor an attribute.

    Returns:
        ast.expr: The reference to the companion.
    """
    if isinstance(interface_ref, ast.Name):
        return ast.Name(id=companion_name(interface_ref.id), ctx=ast.Load())

    if isinstance(interface_ref, ast.Attribute):
        return ast.Attribute(
            value=copy.deepcopy(interface_ref.value),
            attr=companion_name(interface_ref.attr),
            ctx=ast.Load(),
        )

    raise TypeError(f"Unsupported interface reference '{ast.dump(interface_ref)}'.")


def parse_stmt(source: str) -> ast.stmt:
    """Parse a single statement, e.g. a definition template that is filled in afterwards."""
    return ast.parse(source).body[0]


def import_from(module: str, *names: str) -> ast.ImportFrom:
    """Build a `from module import names` statement."""
    return ast.ImportFrom(module=module, names=[ast.alias(name=name) for name in names], level=0)
