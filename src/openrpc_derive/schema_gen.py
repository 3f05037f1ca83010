"""Synthesis of the `gen_schema()` routine from method registrations.

The synthesized routine takes no arguments and builds a fresh `OpenrpcDocument`
on every call, e.g.:

    def gen_schema() -> OpenrpcDocument:
        from openrpc_derive import document as _openrpc
        _document = _openrpc.OpenrpcDocument.new('Calculator')
        _document.add_method(_openrpc.MethodObject(name='add', params=[...], result=...))
        return _document
"""

from __future__ import annotations

import ast
import copy
import logging
from collections.abc import Collection

from openrpc_derive.attr import RpcAttribute
from openrpc_derive.document import RESULT_NAME
from openrpc_derive.helper import DOCUMENT_TYPE_NAME, SCHEMA_FN_NAME, parse_stmt, refers_to
from openrpc_derive.registration import MethodRegistration, RegisteredMethod, SchemaParameter, StandardRegistration

logger = logging.getLogger(__name__)

DOCUMENT_ALIAS = "_openrpc"
DOCUMENT_VAR = "_document"


class _AnnotationResolver(ast.NodeTransformer):
    """Makes annotations resolvable from the module scope the routine runs in.

    String annotations are turned into expressions. Names declared in the body
    of the interface, e.g. a nested `Point` class, are qualified with the
    interface name (`Geo.Point`), since they are only visible in class scope.
    """

    def __init__(self, scope: str | None = None, scope_names: Collection[str] = ()):
        self.scope = scope
        self.scope_names = frozenset(scope_names)

    def visit_Name(self, node: ast.Name) -> ast.AST:
        if self.scope is None or node.id not in self.scope_names:
            return node
        return ast.Attribute(value=ast.Name(id=self.scope, ctx=ast.Load()), attr=node.id, ctx=ast.Load())

    def visit_Constant(self, node: ast.Constant) -> ast.AST:
        if not isinstance(node.value, str):
            return node
        try:
            expression = ast.parse(node.value.strip(), mode="eval").body
        except SyntaxError:
            return node
        return self.visit(expression)

    def visit_Subscript(self, node: ast.Subscript) -> ast.AST:
        # Literal values are strings, not references.
        if refers_to(node.value, "Literal"):
            return node

        # Only the first element of Annotated[...] is a type.
        if refers_to(node.value, "Annotated") and isinstance(node.slice, ast.Tuple) and node.slice.elts:
            node.slice.elts[0] = self.visit(node.slice.elts[0])
            return node

        return self.generic_visit(node)


def _type_expr(annotation: ast.expr, resolver: _AnnotationResolver) -> ast.expr:
    return resolver.visit(copy.deepcopy(annotation))


def _document_attr(name: str) -> ast.Attribute:
    return ast.Attribute(value=ast.Name(id=DOCUMENT_ALIAS, ctx=ast.Load()), attr=name, ctx=ast.Load())


def _call(func: ast.expr, args: list[ast.expr], keywords: dict[str, ast.expr] | None = None) -> ast.Call:
    return ast.Call(
        func=func,
        args=args,
        keywords=[ast.keyword(arg=key, value=value) for key, value in (keywords or {}).items()],
    )


def _descriptor(
    name: str, annotation: ast.expr | None, resolver: _AnnotationResolver, required: bool = True
) -> ast.Call:
    """Synthesize `ContentDescriptorObject.of(name, type, required=...)`.

    Args:
        name (str): The parameter or result name.
        annotation (ast.expr | None): The type annotation, None for an unannotated value.
        resolver (_AnnotationResolver): Makes the annotation resolvable from module scope.
        required (bool, optional): Whether the value must be given. Defaults to True.

    Returns:
        ast.Call: The descriptor construction.
    """
    args: list[ast.expr] = [ast.Constant(name)]
    if annotation is not None:
        args.append(_type_expr(annotation, resolver))

    keywords: dict[str, ast.expr] = {}
    if not required:
        keywords["required"] = ast.Constant(False)

    of = ast.Attribute(value=_document_attr("ContentDescriptorObject"), attr="of", ctx=ast.Load())
    return _call(of, args, keywords)


def _params(params: tuple[SchemaParameter, ...], resolver: _AnnotationResolver) -> ast.List:
    return ast.List(
        elts=[_descriptor(param.name, param.annotation, resolver, param.required) for param in params],
        ctx=ast.Load(),
    )


def _result_annotation(method: RegisteredMethod) -> ast.expr | None:
    kind = method.attr.kind
    if isinstance(kind, RpcAttribute):
        return kind.returns if kind.returns is not None else method.procedure.returns
    raise AssertionError(kind)


def _is_deprecated(method: RegisteredMethod) -> bool:
    kind = method.attr.kind
    if isinstance(kind, RpcAttribute):
        return kind.deprecated
    raise AssertionError(kind)


def _method_object(registration: MethodRegistration, resolver: _AnnotationResolver) -> ast.Call:
    """Synthesize the `MethodObject(...)` construction for one registration.

    Args:
        registration (MethodRegistration): The registration.
        resolver (_AnnotationResolver): Makes annotations resolvable from module scope.

    Raises:
        AssertionError: If the registration variant is unknown.

    Returns:
        ast.Call: The method construction.
    """
    if isinstance(registration, StandardRegistration):
        method = registration.method

        keywords: dict[str, ast.expr] = {"name": ast.Constant(method.exposed_name)}

        description = ast.get_docstring(method.procedure)
        if description:
            keywords["description"] = ast.Constant(description)

        keywords["params"] = _params(method.params, resolver)
        keywords["result"] = _descriptor(RESULT_NAME, _result_annotation(method), resolver)

        if _is_deprecated(method):
            keywords["deprecated"] = ast.Constant(True)

        if registration.has_metadata:
            keywords["requires_metadata"] = ast.Constant(True)

        return _call(_document_attr("MethodObject"), [], keywords)

    raise AssertionError(registration)


def synthesize_schema_routine(
    registrations: list[MethodRegistration],
    title: str,
    description: str | None = None,
    scope: str | None = None,
    scope_names: Collection[str] = (),
) -> ast.FunctionDef:
    """Synthesize the schema construction routine for a list of registrations.

    Args:
        registrations (list[MethodRegistration]): The registrations, in schema order.
        title (str): The title of the document, usually the interface name.
        description (str | None, optional): The description of the document. Defaults to None.
        scope (str | None, optional): Name of the interface the procedures are declared in. Defaults to None.
        scope_names (Collection[str], optional): Names declared in the interface body, which annotations
            may refer to unqualified. They are qualified with `scope`. Defaults to ().

    Returns:
        ast.FunctionDef: The zero-argument `gen_schema` function.
    """
    resolver = _AnnotationResolver(scope, scope_names)

    new_keywords: dict[str, ast.expr] = {}
    if description:
        new_keywords["description"] = ast.Constant(description)

    body: list[ast.stmt] = [
        ast.ImportFrom(module="openrpc_derive", names=[ast.alias(name="document", asname=DOCUMENT_ALIAS)], level=0),
        ast.Assign(
            targets=[ast.Name(id=DOCUMENT_VAR, ctx=ast.Store())],
            value=_call(
                ast.Attribute(value=_document_attr(DOCUMENT_TYPE_NAME), attr="new", ctx=ast.Load()),
                [ast.Constant(title)],
                new_keywords,
            ),
        ),
    ]

    for registration in registrations:
        add_method = ast.Attribute(value=ast.Name(id=DOCUMENT_VAR, ctx=ast.Load()), attr="add_method", ctx=ast.Load())
        body.append(ast.Expr(value=_call(add_method, [_method_object(registration, resolver)])))

    body.append(ast.Return(value=ast.Name(id=DOCUMENT_VAR, ctx=ast.Load())))

    logger.debug("Synthesized schema routine for '%s' with %d method(s).", title, len(registrations))

    routine = parse_stmt(f"def {SCHEMA_FN_NAME}() -> {DOCUMENT_TYPE_NAME}: pass")
    assert isinstance(routine, ast.FunctionDef)
    routine.body = body
    return ast.fix_missing_locations(routine)
